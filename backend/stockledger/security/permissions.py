"""
Permisos por Rol
================

Matriz fija de permisos para los roles por empresa (admin, ops, viewer).
Los endpoints declaran el permiso que requieren con require_permission().
"""
from typing import Dict, FrozenSet
from fastapi import Depends

from ..application.errors import ForbiddenError
from ..domain.enums import UserRole
from .auth import TenantContext, get_tenant

_READ = frozenset({
    "components:read", "skus:read", "bom:read", "transactions:read",
    "locations:read", "lots:read", "forecasts:read", "brands:read", "export",
})
_WRITE = frozenset({
    "components:create", "components:update",
    "skus:create", "skus:update",
    "bom:create", "bom:update", "bom:activate",
    "transactions:create",
    "locations:create", "locations:update",
    "import",
})
_ADMIN = frozenset({
    "components:delete", "skus:delete", "bom:delete", "locations:delete",
    "settings:read", "settings:update", "alerts:read", "alerts:update",
    "brands:manage", "users:manage",
})

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.VIEWER: _READ,
    UserRole.OPS: _READ | _WRITE,
    UserRole.ADMIN: _READ | _WRITE | _ADMIN,
}


def has_permission(role: UserRole, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def require_permission(permission: str):
    """Dependencia FastAPI: devuelve el TenantContext o lanza ForbiddenError."""

    def dependency(tenant: TenantContext = Depends(get_tenant)) -> TenantContext:
        if not has_permission(tenant.role, permission):
            raise ForbiddenError(f"El rol {tenant.role.value} no tiene permiso {permission}")
        return tenant

    return dependency
