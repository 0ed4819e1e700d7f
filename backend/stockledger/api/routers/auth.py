import logging
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...infrastructure.repositories import UserRepository
from ...security.auth import TenantContext, create_access_token, get_tenant, verify_password
from ...security.permissions import ROLE_PERMISSIONS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CompanyRef(BaseModel):
    id: int
    name: str
    role: str
    is_primary: bool


class MeOut(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    company_id: int
    company_name: str
    brand_id: Optional[int] = None
    role: str
    permissions: List[str]
    companies: List[CompanyRef]


@router.post("/login", response_model=TokenOut)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Autenticación con usuario y clave (formulario OAuth2).

    No se indica si el usuario existe o no: ambos casos devuelven 401.
    """
    user = UserRepository(db).by_username(form_data.username)
    if not user or not user.active or not verify_password(form_data.password, user.password_hash):
        logger.info("Login fallido para %s", form_data.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario/clave inválidos")
    token = create_access_token({"sub": user.username})
    logger.info("Login exitoso: %s", user.username)
    return TokenOut(access_token=token)


@router.get("/me", response_model=MeOut)
def me(tenant: TenantContext = Depends(get_tenant)):
    user = tenant.user
    companies = [
        CompanyRef(id=m.company.id, name=m.company.name, role=m.role, is_primary=m.is_primary)
        for m in sorted(user.memberships, key=lambda m: m.company_id)
        if m.company.active
    ]
    current = next(c for c in companies if c.id == tenant.company_id)
    return MeOut(
        id=user.id,
        username=user.username,
        email=user.email,
        full_name=user.full_name,
        company_id=tenant.company_id,
        company_name=current.name,
        brand_id=tenant.brand_id,
        role=tenant.role.value,
        permissions=sorted(ROLE_PERMISSIONS[tenant.role]),
        companies=companies,
    )
