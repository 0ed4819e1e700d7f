"""
API de Versiones de BOM
=======================

Ciclo de vida draft -> active -> superseded. Solo los borradores son
editables; activar reemplaza a la versión activa del mismo SKU.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...domain.models_bom import BOMVersion
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.services_bom import BOMService, line_cost
from ...application.services_ledger import ZERO, component_quantities
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/bom-versions", tags=["bom"])


class BOMLineIn(BaseModel):
    component_id: int
    quantity_per_unit: Decimal = Field(..., gt=0)
    notes: Optional[str] = None


class BOMVersionIn(BaseModel):
    version_name: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None
    lines: List[BOMLineIn]
    activate: bool = False


class BOMVersionUpdate(BaseModel):
    version_name: Optional[str] = Field(None, min_length=1, max_length=100)
    notes: Optional[str] = None
    lines: Optional[List[BOMLineIn]] = None


class BOMCloneIn(BaseModel):
    version_name: Optional[str] = Field(None, min_length=1, max_length=100)


class BOMLineOut(BaseModel):
    id: int
    component_id: int
    component_name: str
    component_sku_code: str
    quantity_per_unit: Decimal
    cost_per_unit: Decimal
    line_cost: Decimal
    quantity_on_hand: Decimal
    notes: Optional[str] = None


class BOMVersionOut(BaseModel):
    id: int
    sku_id: int
    version_name: str
    state: str
    is_active: bool
    effective_start_date: Optional[datetime] = None
    effective_end_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    unit_cost: Decimal
    lines: List[BOMLineOut]


def bom_version_out(db: Session, version: BOMVersion) -> BOMVersionOut:
    """Serializa la versión con costos y existencias calculados al momento."""
    lines = list(version.lines)
    on_hand = component_quantities(db, [line.component_id for line in lines])
    out_lines = [
        BOMLineOut(
            id=line.id,
            component_id=line.component_id,
            component_name=line.component.name,
            component_sku_code=line.component.sku_code,
            quantity_per_unit=line.quantity_per_unit,
            cost_per_unit=line.component.cost_per_unit,
            line_cost=line_cost(line),
            quantity_on_hand=on_hand.get(line.component_id, ZERO),
            notes=line.notes,
        )
        for line in lines
    ]
    return BOMVersionOut(
        id=version.id,
        sku_id=version.sku_id,
        version_name=version.version_name,
        state=version.state,
        is_active=version.is_active,
        effective_start_date=version.effective_start_date,
        effective_end_date=version.effective_end_date,
        notes=version.notes,
        created_at=version.created_at,
        unit_cost=sum((line.line_cost for line in out_lines), ZERO),
        lines=out_lines,
    )


@router.get("/{version_id}", response_model=BOMVersionOut)
def get_bom_version(
    version_id: int,
    tenant: TenantContext = Depends(require_permission("bom:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return bom_version_out(db, BOMService(uow).get_version(version_id))


@router.patch("/{version_id}", response_model=BOMVersionOut)
def update_bom_version(
    version_id: int,
    payload: BOMVersionUpdate,
    tenant: TenantContext = Depends(require_permission("bom:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    lines = [line.model_dump() for line in payload.lines] if payload.lines is not None else None
    with uow.transaction():
        version = BOMService(uow).update_version(
            version_id, version_name=payload.version_name, notes=payload.notes, lines=lines,
        )
    db.refresh(version)
    return bom_version_out(db, version)


@router.post("/{version_id}/activate", response_model=BOMVersionOut)
def activate_bom_version(
    version_id: int,
    tenant: TenantContext = Depends(require_permission("bom:activate")),
    db: Session = Depends(get_db),
):
    """
    Activa la versión. La activa anterior del SKU queda superseded.
    Activar la versión ya activa no cambia nada; una superseded da 409.
    """
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        version = BOMService(uow).activate_version(version_id)
    return bom_version_out(db, version)


@router.post("/{version_id}/clone", response_model=BOMVersionOut, status_code=201)
def clone_bom_version(
    version_id: int,
    payload: Optional[BOMCloneIn] = None,
    tenant: TenantContext = Depends(require_permission("bom:create")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        clone = BOMService(uow).clone_version(version_id, version_name=payload.version_name if payload else None)
    return bom_version_out(db, clone)
