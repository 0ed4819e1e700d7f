"""
API de Marcas

Listado para cualquier miembro de la empresa; alta y edición solo admin.
La desactivación es lógica (PATCH con active=false).
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import datetime
from sqlalchemy.orm import Session
from typing import Optional

from ...dependencies import get_db
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.dtos import Page
from ...application.services_brands import BrandService
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/brands", tags=["brands"])


class BrandIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class BrandUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    active: Optional[bool] = None


class BrandOut(BaseModel):
    id: int
    company_id: int
    name: str
    active: bool
    created_at: datetime
    component_count: int = 0
    sku_count: int = 0

    class Config:
        from_attributes = True


@router.get("", response_model=Page[BrandOut])
def list_brands(
    search: Optional[str] = Query(None, description="Busca en el nombre"),
    include_inactive: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(require_permission("brands:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    rows, total = BrandService(uow).list_brands(
        search=search, include_inactive=include_inactive, page=page, page_size=page_size,
    )
    items = []
    for brand, components, skus in rows:
        out = BrandOut.model_validate(brand)
        out.component_count = components
        out.sku_count = skus
        items.append(out)
    return Page[BrandOut](items=items, total=total, page=page, page_size=page_size)


@router.post("", response_model=BrandOut, status_code=201)
def create_brand(
    payload: BrandIn,
    tenant: TenantContext = Depends(require_permission("brands:manage")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        brand = BrandService(uow).create_brand(payload.name)
    return BrandOut.model_validate(brand)


@router.patch("/{brand_id}", response_model=BrandOut)
def update_brand(
    brand_id: int,
    payload: BrandUpdate,
    tenant: TenantContext = Depends(require_permission("brands:manage")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        brand = BrandService(uow).update_brand(brand_id, **payload.model_dump(exclude_unset=True))
    return BrandOut.model_validate(brand)
