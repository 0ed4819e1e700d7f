"""
Ledger de Cantidades
====================

La cantidad en mano de un componente es SIEMPRE la suma de sus líneas de
transacción (opcionalmente filtrada por ubicación). No existe caché: cada
lectura re-agrega, de modo que el resultado no puede divergir del ledger.

Lo mismo aplica al producto terminado con FinishedGoodsLine.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..domain.models_inventory import TransactionLine, FinishedGoodsLine, Location

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Convierte resultados de agregados (Decimal, float, None) a Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def current_quantity(db: Session, component_id: int, location_id: Optional[int] = None) -> Decimal:
    query = db.query(func.sum(TransactionLine.quantity_change)).filter(
        TransactionLine.component_id == component_id
    )
    if location_id is not None:
        query = query.filter(TransactionLine.location_id == location_id)
    return to_decimal(query.scalar())


def component_quantities(
    db: Session,
    component_ids: Iterable[int],
    location_id: Optional[int] = None,
) -> Dict[int, Decimal]:
    """Cantidades de varios componentes en una sola consulta; los ausentes quedan en 0."""
    ids = list(component_ids)
    if not ids:
        return {}
    query = db.query(
        TransactionLine.component_id,
        func.sum(TransactionLine.quantity_change),
    ).filter(TransactionLine.component_id.in_(ids))
    if location_id is not None:
        query = query.filter(TransactionLine.location_id == location_id)
    totals = {cid: to_decimal(total) for cid, total in query.group_by(TransactionLine.component_id).all()}
    return {cid: totals.get(cid, ZERO) for cid in ids}


def quantities_by_location(db: Session, component_id: int) -> List[dict]:
    """Desglose por ubicación (solo ubicaciones con saldo distinto de cero)."""
    rows = (
        db.query(
            Location.id,
            Location.name,
            Location.type,
            func.sum(TransactionLine.quantity_change),
        )
        .join(Location, Location.id == TransactionLine.location_id)
        .filter(TransactionLine.component_id == component_id)
        .group_by(Location.id, Location.name, Location.type)
        .order_by(Location.name)
        .all()
    )
    result = []
    for loc_id, name, loc_type, total in rows:
        qty = to_decimal(total)
        if qty != 0:
            result.append({"location_id": loc_id, "location_name": name, "location_type": loc_type, "quantity": qty})
    return result


def sku_quantity(db: Session, sku_id: int, location_id: Optional[int] = None) -> Decimal:
    query = db.query(func.sum(FinishedGoodsLine.quantity_change)).filter(FinishedGoodsLine.sku_id == sku_id)
    if location_id is not None:
        query = query.filter(FinishedGoodsLine.location_id == location_id)
    return to_decimal(query.scalar())


def sku_quantities(db: Session, sku_ids: Iterable[int]) -> Dict[int, Decimal]:
    ids = list(sku_ids)
    if not ids:
        return {}
    rows = (
        db.query(FinishedGoodsLine.sku_id, func.sum(FinishedGoodsLine.quantity_change))
        .filter(FinishedGoodsLine.sku_id.in_(ids))
        .group_by(FinishedGoodsLine.sku_id)
        .all()
    )
    totals = {sid: to_decimal(total) for sid, total in rows}
    return {sid: totals.get(sid, ZERO) for sid in ids}
