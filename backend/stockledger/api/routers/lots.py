from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from datetime import date, date as date_type, datetime
from decimal import Decimal
from sqlalchemy.orm import Session, joinedload
from typing import List, Optional

from ...dependencies import get_db
from ...domain.enums import ExpiryStatus
from ...domain.models_inventory import Component, Lot
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.dtos import Page
from ...application.services_ledger import ZERO, to_decimal
from ...application.services_lots import expiry_status, lot_trace
from ...application.services_settings import get_company_settings
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/lots", tags=["lots"])


class LotOut(BaseModel):
    id: int
    component_id: int
    component_name: str
    component_sku_code: str
    lot_number: str
    received_quantity: Decimal
    current_balance: Decimal
    expiry_date: Optional[date] = None
    expiry_status: str
    supplier: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class LotTraceOut(BaseModel):
    transaction_id: int
    transaction_type: str
    date: date_type
    location_id: Optional[int] = None
    quantity_change: Decimal
    cost_per_unit: Optional[Decimal] = None


def _lot_out(lot: Lot, warning_days: int, today: date) -> LotOut:
    return LotOut(
        id=lot.id,
        component_id=lot.component_id,
        component_name=lot.component.name,
        component_sku_code=lot.component.sku_code,
        lot_number=lot.lot_number,
        received_quantity=lot.received_quantity,
        current_balance=to_decimal(lot.balance.quantity) if lot.balance else ZERO,
        expiry_date=lot.expiry_date,
        expiry_status=expiry_status(lot.expiry_date, warning_days, today).value,
        supplier=lot.supplier,
        notes=lot.notes,
        created_at=lot.created_at,
    )


@router.get("", response_model=Page[LotOut])
def list_lots(
    component_id: Optional[int] = Query(None),
    status: Optional[ExpiryStatus] = Query(None, description="ok, expiring_soon o expired"),
    include_empty: bool = Query(False, description="Incluir lotes sin saldo"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    tenant: TenantContext = Depends(require_permission("lots:read")),
    db: Session = Depends(get_db),
):
    """
    Lista lotes ordenados por vencimiento (sin vencimiento al final).

    El estado de vencimiento depende de la fecha actual y de los días de aviso
    de la empresa, por eso el filtro por estado se aplica en memoria.
    """
    uow = UnitOfWork(db, company_id=tenant.company_id)
    warning_days = get_company_settings(db, tenant.company_id).expiry_warning_days
    today = date.today()

    query = uow.tenant.query(Lot).options(joinedload(Lot.component), joinedload(Lot.balance))
    if component_id is not None:
        uow.tenant.get(Component, component_id, "Componente")
        query = query.filter(Lot.component_id == component_id)
    lots = query.order_by(Lot.expiry_date.is_(None), Lot.expiry_date, Lot.created_at, Lot.id).all()

    rows = []
    for lot in lots:
        out = _lot_out(lot, warning_days, today)
        if not include_empty and out.current_balance <= 0:
            continue
        if status is not None and out.expiry_status != status.value:
            continue
        rows.append(out)
    start = (page - 1) * page_size
    return Page[LotOut](items=rows[start:start + page_size], total=len(rows), page=page, page_size=page_size)


@router.get("/{lot_id}", response_model=LotOut)
def get_lot(
    lot_id: int,
    tenant: TenantContext = Depends(require_permission("lots:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    lot = uow.tenant.get(Lot, lot_id, "Lote")
    warning_days = get_company_settings(db, tenant.company_id).expiry_warning_days
    return _lot_out(lot, warning_days, date.today())


@router.get("/{lot_id}/trace", response_model=List[LotTraceOut])
def get_lot_trace(
    lot_id: int,
    tenant: TenantContext = Depends(require_permission("lots:read")),
    db: Session = Depends(get_db),
):
    """Movimientos del lote en orden cronológico."""
    return [
        LotTraceOut(
            transaction_id=txn.id,
            transaction_type=txn.type,
            date=txn.date,
            location_id=line.location_id,
            quantity_change=line.quantity_change,
            cost_per_unit=line.cost_per_unit,
        )
        for line, txn in lot_trace(db, tenant.company_id, lot_id)
    ]
