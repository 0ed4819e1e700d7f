from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from ...dependencies import get_db
from ...domain.enums import SalesChannel
from ...domain.models_bom import BOMLine
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.dtos import LotAllocationOut, Page
from ...application.services_bom import BOMService, get_active_bom_version
from ...application.services_lots import lot_availability_preview
from ...application.services_skus import SKUService, SKUSummary
from ...security.auth import TenantContext
from ...security.permissions import require_permission
from .bom_versions import BOMVersionIn, BOMVersionOut, bom_version_out

router = APIRouter(prefix="/skus", tags=["skus"])


class SKUIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    internal_code: str = Field(..., min_length=1, max_length=100)
    sales_channel: SalesChannel = SalesChannel.GENERIC
    brand_id: Optional[int] = None
    notes: Optional[str] = None


class SKUUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    internal_code: Optional[str] = Field(None, min_length=1, max_length=100)
    sales_channel: Optional[SalesChannel] = None
    brand_id: Optional[int] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class SKUOut(BaseModel):
    id: int
    company_id: int
    brand_id: Optional[int] = None
    name: str
    internal_code: str
    sales_channel: str
    notes: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    active_bom_version_id: Optional[int] = None
    unit_bom_cost: Optional[Decimal] = None
    max_buildable_units: Optional[int] = None
    finished_goods_on_hand: Decimal = Decimal("0")

    class Config:
        from_attributes = True


class ComponentLotAvailabilityOut(BaseModel):
    component_id: int
    component_name: str
    sku_code: str
    quantity_required: Decimal
    available_quantity: Decimal
    has_lots: bool
    is_pooled: bool
    is_sufficient: bool
    selected_lots: List[LotAllocationOut]


def _out(summary: SKUSummary) -> SKUOut:
    out = SKUOut.model_validate(summary.sku)
    out.active_bom_version_id = summary.active_bom_version_id
    out.unit_bom_cost = summary.unit_bom_cost
    out.max_buildable_units = summary.max_buildable_units
    out.finished_goods_on_hand = summary.finished_goods_on_hand
    return out


def _data(payload: BaseModel) -> dict:
    data = payload.model_dump(exclude_unset=True)
    if data.get("sales_channel") is not None:
        data["sales_channel"] = data["sales_channel"].value
    return data


@router.get("", response_model=Page[SKUOut])
def list_skus(
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(True),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(require_permission("skus:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    rows, total = SKUService(uow).list_skus(search=search, is_active=is_active, page=page, page_size=page_size)
    return Page[SKUOut](items=[_out(r) for r in rows], total=total, page=page, page_size=page_size)


@router.post("", response_model=SKUOut, status_code=201)
def create_sku(
    payload: SKUIn,
    tenant: TenantContext = Depends(require_permission("skus:create")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    data = payload.model_dump()
    data["sales_channel"] = payload.sales_channel.value
    if data["brand_id"] is None and tenant.brand_id is not None:
        data["brand_id"] = tenant.brand_id
    service = SKUService(uow)
    with uow.transaction():
        sku = service.create_sku(**data)
    return _out(service.sku_summary(sku.id))


@router.get("/{sku_id}", response_model=SKUOut)
def get_sku(
    sku_id: int,
    tenant: TenantContext = Depends(require_permission("skus:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _out(SKUService(uow).sku_summary(sku_id))


@router.patch("/{sku_id}", response_model=SKUOut)
def update_sku(
    sku_id: int,
    payload: SKUUpdate,
    tenant: TenantContext = Depends(require_permission("skus:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    service = SKUService(uow)
    with uow.transaction():
        service.update_sku(sku_id, **_data(payload))
    return _out(service.sku_summary(sku_id))


@router.get("/{sku_id}/lot-availability", response_model=List[ComponentLotAvailabilityOut])
def get_lot_availability(
    sku_id: int,
    units: Decimal = Query(..., description="Unidades a construir"),
    allow_expired: bool = Query(False),
    tenant: TenantContext = Depends(require_permission("lots:read")),
    db: Session = Depends(get_db),
):
    """
    Vista previa de los lotes que consumiría un build de `units` unidades
    con el BOM activo. Con units <= 0 o sin BOM activo devuelve lista vacía.
    """
    uow = UnitOfWork(db, company_id=tenant.company_id)
    SKUService(uow).get_sku(sku_id)
    version = get_active_bom_version(db, tenant.company_id, sku_id)
    if version is None or units <= 0:
        return []
    lines = (
        db.query(BOMLine)
        .options(joinedload(BOMLine.component))
        .filter(BOMLine.bom_version_id == version.id)
        .order_by(BOMLine.id)
        .all()
    )
    return lot_availability_preview(db, tenant.company_id, lines, units, allow_expired=allow_expired)


@router.get("/{sku_id}/bom-versions", response_model=List[BOMVersionOut])
def list_bom_versions(
    sku_id: int,
    tenant: TenantContext = Depends(require_permission("bom:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return [bom_version_out(db, v) for v in BOMService(uow).list_versions(sku_id)]


@router.post("/{sku_id}/bom-versions", response_model=BOMVersionOut, status_code=201)
def create_bom_version(
    sku_id: int,
    payload: BOMVersionIn,
    tenant: TenantContext = Depends(require_permission("bom:create")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        version = BOMService(uow).create_version(
            sku_id,
            payload.version_name,
            [line.model_dump() for line in payload.lines],
            notes=payload.notes,
            activate=payload.activate,
        )
    return bom_version_out(db, version)
