"""
API de Componentes
==================

Catálogo de componentes con cantidad en mano y estado de reorden derivados
del ledger. DELETE es una desactivación lógica.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.dtos import Page
from ...application.services_components import ComponentService, ComponentWithStock
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/components", tags=["components"])


class ComponentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    sku_code: str = Field(..., min_length=1, max_length=100)
    brand_id: Optional[int] = None
    category: Optional[str] = None
    unit_of_measure: str = "each"
    cost_per_unit: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_point: int = Field(default=0, ge=0)
    lead_time_days: int = Field(default=0, ge=0)
    notes: Optional[str] = None


class ComponentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    sku_code: Optional[str] = Field(None, min_length=1, max_length=100)
    brand_id: Optional[int] = None
    category: Optional[str] = None
    unit_of_measure: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    lead_time_days: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class ComponentOut(BaseModel):
    id: int
    company_id: int
    brand_id: Optional[int] = None
    name: str
    sku_code: str
    category: Optional[str] = None
    unit_of_measure: str
    cost_per_unit: Decimal
    reorder_point: int
    lead_time_days: int
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    quantity_on_hand: Decimal = Decimal("0")
    reorder_status: str = "ok"

    class Config:
        from_attributes = True


class LocationQuantityOut(BaseModel):
    location_id: int
    location_name: str
    location_type: str
    quantity: Decimal


class ComponentDetailOut(ComponentOut):
    locations: List[LocationQuantityOut] = []


def _out(row: ComponentWithStock) -> ComponentOut:
    out = ComponentOut.model_validate(row.component)
    out.quantity_on_hand = row.quantity_on_hand
    out.reorder_status = row.reorder_status.value
    return out


def _detail(detail: dict) -> ComponentDetailOut:
    out = ComponentDetailOut.model_validate(detail["component"])
    out.quantity_on_hand = detail["quantity_on_hand"]
    out.reorder_status = detail["reorder_status"].value
    out.locations = [LocationQuantityOut(**loc) for loc in detail["locations"]]
    return out


@router.get("", response_model=Page[ComponentOut])
def list_components(
    reorder_status: Optional[str] = Query(None, description="ok, warning o critical"),
    search: Optional[str] = Query(None, description="Busca en nombre y código"),
    is_active: Optional[bool] = Query(True, description="Filtrar por estado activo/inactivo"),
    category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(require_permission("components:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    rows, total = ComponentService(uow).list_components(
        reorder_status_filter=reorder_status,
        search=search,
        is_active=is_active,
        category=category,
        page=page,
        page_size=page_size,
    )
    return Page[ComponentOut](items=[_out(r) for r in rows], total=total, page=page, page_size=page_size)


@router.post("", response_model=ComponentDetailOut, status_code=201)
def create_component(
    payload: ComponentIn,
    tenant: TenantContext = Depends(require_permission("components:create")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    data = payload.model_dump()
    if data["brand_id"] is None and tenant.brand_id is not None:
        data["brand_id"] = tenant.brand_id
    with uow.transaction():
        service = ComponentService(uow)
        component = service.create_component(**data)
    return _detail(service.component_detail(component.id))


@router.get("/{component_id}", response_model=ComponentDetailOut)
def get_component(
    component_id: int,
    tenant: TenantContext = Depends(require_permission("components:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _detail(ComponentService(uow).component_detail(component_id))


@router.patch("/{component_id}", response_model=ComponentDetailOut)
def update_component(
    component_id: int,
    payload: ComponentUpdate,
    tenant: TenantContext = Depends(require_permission("components:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    service = ComponentService(uow)
    with uow.transaction():
        service.update_component(component_id, **payload.model_dump(exclude_unset=True))
    return _detail(service.component_detail(component_id))


@router.delete("/{component_id}", response_model=ComponentOut)
def delete_component(
    component_id: int,
    tenant: TenantContext = Depends(require_permission("components:delete")),
    db: Session = Depends(get_db),
):
    """Desactiva el componente. Falla con 409 si está en un BOM activo."""
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        component = ComponentService(uow).deactivate_component(component_id)
    return ComponentOut.model_validate(component)
