"""
Asignación de Lotes (FIFO por vencimiento)
==========================================

Selección de lotes para consumo:
- Candidatos: lotes del componente con saldo positivo
- Orden: vencimiento ascendente, lotes sin vencimiento al final,
  empate por orden de creación
- Se consume cada lote hasta agotarlo; el último puede ser parcial
- Lotes vencidos (vencimiento < hoy) se excluyen salvo allow_expired

También incluye la validación de asignaciones manuales, la clasificación
por vencimiento y la vista previa de disponibilidad para un build.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..domain.enums import ExpiryStatus
from ..domain.models_inventory import Component, Lot, LotBalance, TransactionLine, Transaction
from .errors import InsufficientInventoryError, NotFoundError, ShortageItem, ValidationError
from .services_ledger import ZERO, to_decimal, current_quantity


@dataclass
class LotAllocation:
    lot_id: int
    lot_number: str
    quantity: Decimal
    expiry_date: Optional[date] = None


@dataclass
class AvailableLot:
    lot: Lot
    available: Decimal
    is_expired: bool


# ===== VENCIMIENTO =====

def is_lot_expired(expiry_date: Optional[date], today: Optional[date] = None) -> bool:
    if expiry_date is None:
        return False
    return expiry_date < (today or date.today())


def is_lot_expiring_soon(expiry_date: Optional[date], warning_days: int, today: Optional[date] = None) -> bool:
    if expiry_date is None:
        return False
    today = today or date.today()
    return today <= expiry_date <= today + timedelta(days=warning_days)


def expiry_status(expiry_date: Optional[date], warning_days: int, today: Optional[date] = None) -> ExpiryStatus:
    if is_lot_expired(expiry_date, today):
        return ExpiryStatus.EXPIRED
    if is_lot_expiring_soon(expiry_date, warning_days, today):
        return ExpiryStatus.EXPIRING_SOON
    return ExpiryStatus.OK


def lot_balance(db: Session, lot_id: int) -> Decimal:
    balance = db.get(LotBalance, lot_id)
    return to_decimal(balance.quantity) if balance else ZERO


def unlotted_quantity(db: Session, company_id: int, component_id: int) -> Decimal:
    """Stock del componente que no pertenece a ningún lote (vencidos incluidos)."""
    in_lots = (
        db.query(func.sum(LotBalance.quantity))
        .join(Lot, Lot.id == LotBalance.lot_id)
        .filter(Lot.company_id == company_id, Lot.component_id == component_id)
        .scalar()
    )
    return current_quantity(db, component_id) - to_decimal(in_lots)


# ===== SELECCIÓN FIFO =====

def available_lots(
    db: Session,
    company_id: int,
    component_id: int,
    allow_expired: bool = True,
    today: Optional[date] = None,
    for_update: bool = False,
) -> List[AvailableLot]:
    today = today or date.today()
    query = (
        db.query(Lot, LotBalance.quantity)
        .join(LotBalance, LotBalance.lot_id == Lot.id)
        .filter(
            Lot.company_id == company_id,
            Lot.component_id == component_id,
            LotBalance.quantity > 0,
        )
        .order_by(Lot.expiry_date.is_(None), Lot.expiry_date, Lot.created_at, Lot.id)
    )
    if for_update:
        query = query.with_for_update()

    result = []
    for lot, qty in query.all():
        expired = is_lot_expired(lot.expiry_date, today)
        if expired and not allow_expired:
            continue
        result.append(AvailableLot(lot=lot, available=to_decimal(qty), is_expired=expired))
    return result


def allocate_fifo(lots: Sequence[AvailableLot], quantity_needed: Decimal) -> Tuple[List[LotAllocation], Decimal]:
    """Recorre los lotes en orden acumulando min(disponible, restante). Devuelve (asignaciones, faltante)."""
    remaining = Decimal(quantity_needed)
    allocations: List[LotAllocation] = []
    for candidate in lots:
        if remaining <= 0:
            break
        take = min(candidate.available, remaining)
        if take <= 0:
            continue
        allocations.append(LotAllocation(
            lot_id=candidate.lot.id,
            lot_number=candidate.lot.lot_number,
            quantity=take,
            expiry_date=candidate.lot.expiry_date,
        ))
        remaining -= take
    return allocations, max(remaining, ZERO)


def select_lots_for_consumption(
    db: Session,
    company_id: int,
    component_id: int,
    quantity_needed: Decimal,
    allow_expired: bool = False,
    today: Optional[date] = None,
    for_update: bool = False,
) -> List[LotAllocation]:
    """
    Selecciona lotes FIFO por vencimiento para cubrir quantity_needed.

    Raises:
        InsufficientInventoryError: si los lotes candidatos no alcanzan
    """
    lots = available_lots(db, company_id, component_id, allow_expired=allow_expired, today=today, for_update=for_update)
    allocations, remaining = allocate_fifo(lots, quantity_needed)
    if remaining > 0:
        component = db.get(Component, component_id)
        available = sum((lot.available for lot in lots), ZERO)
        raise InsufficientInventoryError(
            f"Lotes insuficientes para {component.sku_code if component else component_id}",
            items=[ShortageItem(
                component_id=component_id,
                component_name=component.name if component else "",
                sku_code=component.sku_code if component else "",
                required=Decimal(quantity_needed),
                available=available,
                shortage=remaining,
            )],
        )
    return allocations


def validate_manual_allocations(
    db: Session,
    company_id: int,
    component_id: int,
    quantity_needed: Decimal,
    allocations: Sequence[dict],
) -> List[LotAllocation]:
    """
    Valida asignaciones manuales {lot_id, quantity} para un componente.

    Reporta todos los problemas juntos: lote inexistente (o de otra empresa),
    lote de otro componente, lote repetido, saldo insuficiente y suma
    distinta de la cantidad requerida.
    """
    details: List[Dict[str, str]] = []
    result: List[LotAllocation] = []
    seen = set()
    total = ZERO

    for i, alloc in enumerate(allocations):
        field = f"lot_overrides[{component_id}][{i}]"
        lot_id = alloc.get("lot_id")
        qty = Decimal(str(alloc.get("quantity", 0)))
        total += qty

        if qty <= 0:
            details.append({"field": field, "message": "La cantidad debe ser mayor a 0"})
            continue
        if lot_id in seen:
            details.append({"field": field, "message": f"Lote {lot_id} asignado más de una vez"})
            continue
        seen.add(lot_id)

        lot = db.query(Lot).filter(Lot.id == lot_id, Lot.company_id == company_id).first()
        if lot is None:
            details.append({"field": field, "message": f"Lote {lot_id} no encontrado"})
            continue
        if lot.component_id != component_id:
            details.append({"field": field, "message": f"El lote {lot.lot_number} no pertenece al componente"})
            continue
        available = lot_balance(db, lot.id)
        if available < qty:
            details.append({
                "field": field,
                "message": f"El lote {lot.lot_number} solo tiene {available} disponibles (solicitado {qty})",
            })
            continue
        result.append(LotAllocation(lot_id=lot.id, lot_number=lot.lot_number, quantity=qty, expiry_date=lot.expiry_date))

    if total != Decimal(quantity_needed):
        details.append({
            "field": f"lot_overrides[{component_id}]",
            "message": f"Las asignaciones suman {total} pero se requieren {quantity_needed}",
        })

    if details:
        raise ValidationError("Asignación manual de lotes inválida", details=details)
    return result


# ===== CONSULTAS =====

def expiring_lots(db: Session, company_id: int, warning_days: int, today: Optional[date] = None) -> List[AvailableLot]:
    """Lotes con saldo que vencen dentro de la ventana de aviso."""
    today = today or date.today()
    limit = today + timedelta(days=warning_days)
    rows = (
        db.query(Lot, LotBalance.quantity)
        .join(LotBalance, LotBalance.lot_id == Lot.id)
        .filter(
            Lot.company_id == company_id,
            LotBalance.quantity > 0,
            Lot.expiry_date.isnot(None),
            Lot.expiry_date >= today,
            Lot.expiry_date <= limit,
        )
        .order_by(Lot.expiry_date, Lot.id)
        .all()
    )
    return [AvailableLot(lot=lot, available=to_decimal(qty), is_expired=False) for lot, qty in rows]


def expired_lot_count(db: Session, company_id: int, today: Optional[date] = None) -> int:
    today = today or date.today()
    return (
        db.query(Lot)
        .join(LotBalance, LotBalance.lot_id == Lot.id)
        .filter(
            Lot.company_id == company_id,
            LotBalance.quantity > 0,
            Lot.expiry_date.isnot(None),
            Lot.expiry_date < today,
        )
        .count()
    )


def lot_trace(db: Session, company_id: int, lot_id: int) -> List[Tuple[TransactionLine, Transaction]]:
    """Líneas de transacción que movieron el lote, en orden cronológico."""
    lot = db.query(Lot).filter(Lot.id == lot_id, Lot.company_id == company_id).first()
    if lot is None:
        raise NotFoundError("Lote", lot_id)
    return (
        db.query(TransactionLine, Transaction)
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .filter(TransactionLine.lot_id == lot_id, Transaction.company_id == company_id)
        .order_by(Transaction.date, Transaction.id)
        .all()
    )


def lot_availability_preview(
    db: Session,
    company_id: int,
    bom_lines: Sequence,
    units: Decimal,
    allow_expired: bool = False,
    today: Optional[date] = None,
) -> List[dict]:
    """
    Vista previa por componente de un build de `units` unidades.

    Un componente sin lotes con saldo se considera "pooled": su
    disponibilidad es la cantidad en mano del ledger. No lanza excepciones;
    los faltantes se reportan con is_sufficient=False.
    """
    units = Decimal(units)
    if units <= 0:
        return []

    result = []
    for line in bom_lines:
        component = line.component
        required = to_decimal(line.quantity_per_unit) * units
        lots = available_lots(db, company_id, component.id, allow_expired=allow_expired, today=today)
        has_lots = len(lots) > 0

        if has_lots:
            available = sum((lot.available for lot in lots), ZERO)
            allocations, _ = allocate_fifo(lots, required)
        else:
            available = current_quantity(db, component.id)
            allocations = []

        result.append({
            "component_id": component.id,
            "component_name": component.name,
            "sku_code": component.sku_code,
            "quantity_required": required,
            "available_quantity": available,
            "has_lots": has_lots,
            "selected_lots": allocations,
            "is_pooled": not has_lots,
            "is_sufficient": available >= required,
        })
    return result
