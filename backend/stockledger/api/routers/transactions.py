"""
API de Transacciones
====================

Un endpoint POST por tipo de transacción; todos delegan en TransactionEngine
dentro de una unidad de trabajo. El ledger no expone update ni delete.
"""
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import date, date as date_type
from decimal import Decimal
from sqlalchemy.orm import Session
from typing import Dict, List, Optional

from ...dependencies import get_db
from ...domain.enums import SalesChannel, TransactionType
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.dtos import LotAllocationIn, Page, ShortageItemOut, TransactionOut
from ...application.errors import ValidationError
from ...application.services_transactions import TransactionEngine
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/transactions", tags=["transactions"])


class ReceiptIn(BaseModel):
    component_id: int
    quantity: Decimal = Field(..., gt=0)
    date: Optional[date_type] = None
    supplier: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    update_component_cost: bool = False
    location_id: Optional[int] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date_type] = None
    notes: Optional[str] = None


class InitialIn(BaseModel):
    component_id: int
    quantity: Decimal = Field(..., gt=0)
    date: Optional[date_type] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    update_component_cost: bool = False
    location_id: Optional[int] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date_type] = None
    notes: Optional[str] = None


class BuildIn(BaseModel):
    sku_id: int
    units_to_build: Decimal = Field(..., gt=0)
    date: Optional[date_type] = None
    location_id: Optional[int] = None
    allow_insufficient_inventory: bool = False
    allow_expired_lots: bool = False
    lot_overrides: Optional[Dict[int, List[LotAllocationIn]]] = None
    output_to_finished_goods: bool = True
    output_location_id: Optional[int] = None
    output_quantity: Optional[Decimal] = Field(None, gt=0)
    sales_channel: Optional[SalesChannel] = None
    notes: Optional[str] = None


class TransferIn(BaseModel):
    component_id: int
    quantity: Decimal = Field(..., gt=0)
    from_location_id: int
    to_location_id: int
    date: Optional[date_type] = None
    notes: Optional[str] = None


class AdjustmentIn(BaseModel):
    component_id: Optional[int] = None
    sku_id: Optional[int] = None
    quantity: Decimal
    reason: str
    date: Optional[date_type] = None
    location_id: Optional[int] = None
    notes: Optional[str] = None


class OutboundIn(BaseModel):
    sku_id: int
    quantity: Decimal = Field(..., gt=0)
    date: Optional[date_type] = None
    location_id: Optional[int] = None
    sales_channel: Optional[SalesChannel] = None
    notes: Optional[str] = None


class BuildOut(TransactionOut):
    warning: Optional[str] = None
    insufficient_items: List[ShortageItemOut] = []


def _engine(tenant: TenantContext, db: Session) -> TransactionEngine:
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return TransactionEngine(uow, user_id=tenant.user_id)


@router.post("/receipt", response_model=TransactionOut, status_code=201)
def create_receipt(
    payload: ReceiptIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    engine = _engine(tenant, db)
    with engine.uow.transaction():
        txn = engine.receipt(**payload.model_dump())
    return TransactionOut.model_validate(txn)


@router.post("/initial", response_model=TransactionOut, status_code=201)
def create_initial(
    payload: InitialIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    engine = _engine(tenant, db)
    with engine.uow.transaction():
        txn = engine.initial(**payload.model_dump())
    return TransactionOut.model_validate(txn)


@router.post("/build", response_model=BuildOut, status_code=201)
def create_build(
    payload: BuildIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    """
    Construye unidades de un SKU con su BOM activo.

    Con faltantes y sin permiso de inventario negativo responde 400 con
    insufficient_items; si se permite, responde 201 con warning.
    """
    engine = _engine(tenant, db)
    overrides = None
    if payload.lot_overrides:
        overrides = {
            component_id: [a.model_dump() for a in allocations]
            for component_id, allocations in payload.lot_overrides.items()
        }
    with engine.uow.transaction():
        result = engine.build(
            payload.sku_id,
            payload.units_to_build,
            date=payload.date,
            location_id=payload.location_id,
            allow_insufficient_inventory=payload.allow_insufficient_inventory,
            allow_expired_lots=payload.allow_expired_lots,
            lot_overrides=overrides,
            output_to_finished_goods=payload.output_to_finished_goods,
            output_location_id=payload.output_location_id,
            output_quantity=payload.output_quantity,
            sales_channel=payload.sales_channel.value if payload.sales_channel else None,
            notes=payload.notes,
        )
    out = BuildOut.model_validate(result.transaction)
    out.warning = result.warning
    out.insufficient_items = [ShortageItemOut.model_validate(item) for item in result.insufficient_items]
    return out


@router.post("/transfer", response_model=TransactionOut, status_code=201)
def create_transfer(
    payload: TransferIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    engine = _engine(tenant, db)
    with engine.uow.transaction():
        txn = engine.transfer(**payload.model_dump())
    return TransactionOut.model_validate(txn)


@router.post("/adjustment", response_model=TransactionOut, status_code=201)
def create_adjustment(
    payload: AdjustmentIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    """Ajuste de componente (component_id) o de producto terminado (sku_id)."""
    if (payload.component_id is None) == (payload.sku_id is None):
        raise ValidationError(
            "Indique component_id o sku_id",
            details=[{"field": "component_id", "message": "Exactamente uno de component_id o sku_id"}],
        )
    engine = _engine(tenant, db)
    data = payload.model_dump(exclude={"component_id", "sku_id"})
    with engine.uow.transaction():
        if payload.sku_id is not None:
            txn = engine.adjust_finished_goods(payload.sku_id, **data)
        else:
            txn = engine.adjustment(payload.component_id, **data)
    return TransactionOut.model_validate(txn)


@router.post("/outbound", response_model=TransactionOut, status_code=201)
def create_outbound(
    payload: OutboundIn,
    tenant: TenantContext = Depends(require_permission("transactions:create")),
    db: Session = Depends(get_db),
):
    engine = _engine(tenant, db)
    data = payload.model_dump()
    data["sales_channel"] = payload.sales_channel.value if payload.sales_channel else None
    with engine.uow.transaction():
        txn = engine.outbound(**data)
    return TransactionOut.model_validate(txn)


@router.get("", response_model=Page[TransactionOut])
def list_transactions(
    type: Optional[TransactionType] = Query(None),
    component_id: Optional[int] = Query(None),
    sku_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(require_permission("transactions:read")),
    db: Session = Depends(get_db),
):
    engine = _engine(tenant, db)
    items, total = engine.list_transactions(
        type=type.value if type else None,
        component_id=component_id,
        sku_id=sku_id,
        location_id=location_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
    )
    return Page[TransactionOut](
        items=[TransactionOut.model_validate(t) for t in items], total=total, page=page, page_size=page_size,
    )


@router.get("/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    tenant: TenantContext = Depends(require_permission("transactions:read")),
    db: Session = Depends(get_db),
):
    return TransactionOut.model_validate(_engine(tenant, db).get_transaction(transaction_id))
