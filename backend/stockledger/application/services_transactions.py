"""
Motor de Transacciones
======================

Único punto de escritura del ledger. Un método por tipo de transacción:
receipt, initial, build, transfer, adjustment, outbound.

PRINCIPIOS:
- Toda la validación (existencia, empresa, estado activo, política de
  inventario negativo, BOM activo, lotes) termina ANTES del primer insert
- Cada método corre dentro de una unidad de trabajo; el llamador hace
  commit y cualquier excepción deja el ledger sin cambios
- Las líneas son append-only: no existe update ni delete
- Las filas que se leen para decidir (componentes, saldos de lote) se
  bloquean con SELECT ... FOR UPDATE en la misma transacción
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import joinedload

from ..domain.enums import TransactionType
from ..domain.models_bom import SKU, BOMLine
from ..domain.models_inventory import Component, Lot, LotBalance, Transaction, TransactionLine, FinishedGoodsLine
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import InsufficientInventoryError, InternalError, ShortageItem, ValidationError
from .services_bom import calculate_bom_unit_cost, check_availability, get_active_bom_version, insufficient_items
from .services_ledger import ZERO, to_decimal, current_quantity, sku_quantity
from .services_locations import LocationService
from .services_lots import allocate_fifo, available_lots, unlotted_quantity, validate_manual_allocations
from .services_settings import get_company_settings

logger = logging.getLogger(__name__)

QTY = Decimal("0.0001")


@dataclass
class BuildResult:
    transaction: Transaction
    unit_bom_cost: Decimal
    total_bom_cost: Decimal
    insufficient_items: List[ShortageItem] = field(default_factory=list)

    @property
    def warning(self) -> Optional[str]:
        if not self.insufficient_items:
            return None
        codes = ", ".join(item.sku_code for item in self.insufficient_items)
        return f"Build registrado con inventario insuficiente: {codes}"


def _quantity(value, field_name: str, allow_negative: bool = False) -> Decimal:
    try:
        qty = Decimal(str(value)).quantize(QTY)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError("Cantidad inválida", details=[{"field": field_name, "message": "Debe ser numérica"}])
    if allow_negative:
        if qty == 0:
            raise ValidationError("La cantidad no puede ser 0", details=[{"field": field_name, "message": "No puede ser 0"}])
    elif qty <= 0:
        raise ValidationError("La cantidad debe ser mayor a 0", details=[{"field": field_name, "message": "Debe ser mayor a 0"}])
    return qty


class TransactionEngine:
    """
    Servicio de escritura del ledger para una empresa.

    Uso típico desde la API:
        uow = UnitOfWork(db, company_id=tenant.company_id)
        with uow.transaction():
            txn = TransactionEngine(uow, user_id=user.id).receipt(...)
    """

    def __init__(self, uow: UnitOfWork, user_id: Optional[int] = None):
        if uow.tenant is None:
            raise InternalError("TransactionEngine requiere una unidad de trabajo con empresa")
        self.uow = uow
        self.user_id = user_id
        self.locations = LocationService(uow)
        self._settings = None

    @property
    def db(self):
        return self.uow.db

    @property
    def tenant(self):
        return self.uow.tenant

    @property
    def settings(self):
        if self._settings is None:
            self._settings = get_company_settings(self.db, self.uow.company_id)
        return self._settings

    def _allow_negative(self, override: bool = False) -> bool:
        return override or self.settings.allow_negative_inventory

    # ===== VALIDACIONES =====

    def _get_active_component(self, component_id: int, for_update: bool = False) -> Component:
        if for_update:
            component = self.tenant.get_for_update(Component, component_id, "Componente")
        else:
            component = self.tenant.get(Component, component_id, "Componente")
        if not component.is_active:
            raise ValidationError(
                f"El componente {component.sku_code} está inactivo",
                details=[{"field": "component_id", "message": "Componente inactivo"}],
            )
        return component

    def _get_active_sku(self, sku_id: int, for_update: bool = False) -> SKU:
        if for_update:
            sku = self.tenant.get_for_update(SKU, sku_id, "SKU")
        else:
            sku = self.tenant.get(SKU, sku_id, "SKU")
        if not sku.is_active:
            raise ValidationError(
                f"El SKU {sku.internal_code} está inactivo",
                details=[{"field": "sku_id", "message": "SKU inactivo"}],
            )
        return sku

    def _resolve_location(self, location_id: Optional[int]) -> int:
        if location_id is None:
            return self.locations.get_default_location_id()
        return self.locations.get_active_location(location_id).id

    def _shortage(self, component: Component, required: Decimal, available: Decimal) -> ShortageItem:
        return ShortageItem(
            component_id=component.id,
            component_name=component.name,
            sku_code=component.sku_code,
            required=required,
            available=available,
            shortage=max(ZERO, required - available),
        )

    # ===== ESCRITURA =====

    def _new_transaction(self, type: TransactionType, txn_date: Optional[date], **fields) -> Transaction:
        txn = Transaction(type=type.value, date=txn_date or date.today(), created_by_id=self.user_id, **fields)
        self.tenant.add(txn)
        self.db.flush()
        return txn

    def _add_line(
        self,
        txn: Transaction,
        component_id: int,
        location_id: int,
        quantity_change: Decimal,
        cost_per_unit: Optional[Decimal],
        lot_id: Optional[int] = None,
    ) -> TransactionLine:
        line = TransactionLine(
            transaction_id=txn.id,
            component_id=component_id,
            location_id=location_id,
            lot_id=lot_id,
            quantity_change=quantity_change,
            cost_per_unit=cost_per_unit,
        )
        self.db.add(line)
        if lot_id is not None:
            self._apply_lot_delta(lot_id, quantity_change)
        return line

    def _apply_lot_delta(self, lot_id: int, delta: Decimal):
        balance = self.db.query(LotBalance).filter(LotBalance.lot_id == lot_id).with_for_update().first()
        if balance is None:
            balance = LotBalance(lot_id=lot_id, quantity=ZERO)
            self.db.add(balance)
        new_quantity = to_decimal(balance.quantity) + delta
        if new_quantity < 0:
            raise InternalError(f"El saldo del lote {lot_id} quedaría negativo")
        balance.quantity = new_quantity

    def _log(self, txn: Transaction, line_count: int):
        logger.info(
            "Transacción registrada: type=%s id=%s company=%s lines=%s",
            txn.type, txn.id, txn.company_id, line_count,
        )

    # ===== ENTRADAS =====

    def _inbound(
        self,
        type: TransactionType,
        component_id: int,
        quantity,
        txn_date: Optional[date],
        cost_per_unit=None,
        update_component_cost: bool = False,
        location_id: Optional[int] = None,
        lot_number: Optional[str] = None,
        expiry_date: Optional[date] = None,
        supplier: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        qty = _quantity(quantity, "quantity")
        component = self._get_active_component(component_id, for_update=True)
        location_id = self._resolve_location(location_id)

        if cost_per_unit is not None:
            cost = Decimal(str(cost_per_unit))
            if cost < 0:
                raise ValidationError("El costo no puede ser negativo", details=[{"field": "cost_per_unit", "message": "Debe ser >= 0"}])
        else:
            cost = to_decimal(component.cost_per_unit)

        lot = None
        lot_number = lot_number.strip() if lot_number else None
        if lot_number:
            lot = (
                self.tenant.query(Lot)
                .filter(Lot.component_id == component.id, Lot.lot_number == lot_number)
                .with_for_update()
                .first()
            )

        txn = self._new_transaction(type, txn_date, location_id=location_id, supplier=supplier, notes=notes)

        if lot_number:
            if lot is None:
                lot = Lot(
                    component_id=component.id,
                    lot_number=lot_number,
                    received_quantity=qty,
                    expiry_date=expiry_date,
                    supplier=supplier,
                )
                self.tenant.add(lot)
                self.db.flush()
            else:
                lot.received_quantity = to_decimal(lot.received_quantity) + qty
                if lot.expiry_date is None and expiry_date is not None:
                    lot.expiry_date = expiry_date

        self._add_line(txn, component.id, location_id, qty, cost, lot_id=lot.id if lot else None)

        # Último costo conocido (sin promedio ponderado)
        if update_component_cost and cost_per_unit is not None:
            component.cost_per_unit = cost

        self.db.flush()
        self._log(txn, 1)
        return txn

    def receipt(
        self,
        component_id: int,
        quantity,
        date: Optional[date] = None,
        supplier: Optional[str] = None,
        cost_per_unit=None,
        update_component_cost: bool = False,
        location_id: Optional[int] = None,
        lot_number: Optional[str] = None,
        expiry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Registra una recepción de compra.

        Con lot_number crea el lote (o suma al existente del mismo componente).
        El costo de la línea es el indicado o, si no se indica, el costo
        vigente del componente. update_component_cost sobreescribe el costo
        del componente con el de esta recepción.
        """
        return self._inbound(
            TransactionType.RECEIPT, component_id, quantity, date,
            cost_per_unit=cost_per_unit, update_component_cost=update_component_cost,
            location_id=location_id, lot_number=lot_number, expiry_date=expiry_date,
            supplier=supplier, notes=notes,
        )

    def initial(
        self,
        component_id: int,
        quantity,
        date: Optional[date] = None,
        cost_per_unit=None,
        update_component_cost: bool = False,
        location_id: Optional[int] = None,
        lot_number: Optional[str] = None,
        expiry_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Carga de inventario inicial; mismas reglas que una recepción."""
        return self._inbound(
            TransactionType.INITIAL, component_id, quantity, date,
            cost_per_unit=cost_per_unit, update_component_cost=update_component_cost,
            location_id=location_id, lot_number=lot_number, expiry_date=expiry_date,
            notes=notes,
        )

    # ===== BUILD =====

    def _plan_consumption(
        self,
        line: BOMLine,
        required: Decimal,
        overrides: Optional[List[dict]],
        allow_expired_lots: bool,
        allow_negative: bool = False,
    ) -> List[Tuple[Optional[int], Decimal]]:
        """
        Partes (lot_id, cantidad) que cubren `required`; lot_id None = stock sin lote.

        El resto no cubierto por lotes solo puede salir del stock sin lote. Lo
        que exceda ese stock (por ejemplo, lo retenido en lotes vencidos) es
        faltante salvo que se permita inventario negativo.
        """
        if overrides:
            allocations = validate_manual_allocations(
                self.db, self.uow.company_id, line.component_id, required, overrides
            )
            return [(a.lot_id, a.quantity) for a in allocations]

        lots = available_lots(
            self.db, self.uow.company_id, line.component_id,
            allow_expired=allow_expired_lots, for_update=True,
        )
        allocations, remaining = allocate_fifo(lots, required)
        parts = [(a.lot_id, a.quantity) for a in allocations]
        if remaining > 0:
            loose = max(unlotted_quantity(self.db, self.uow.company_id, line.component_id), ZERO)
            if remaining > loose and not allow_negative:
                raise InsufficientInventoryError(
                    f"Stock utilizable insuficiente para {line.component.sku_code}",
                    items=[self._shortage(line.component, required, required - remaining + loose)],
                )
            parts.append((None, remaining))
        return parts

    def build(
        self,
        sku_id: int,
        units_to_build,
        date: Optional[date] = None,
        location_id: Optional[int] = None,
        allow_insufficient_inventory: bool = False,
        allow_expired_lots: bool = False,
        lot_overrides: Optional[Dict[int, List[dict]]] = None,
        output_to_finished_goods: bool = True,
        output_location_id: Optional[int] = None,
        output_quantity=None,
        sales_channel: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BuildResult:
        """
        Construye unidades de un SKU consumiendo componentes según su BOM activo.

        - Verifica faltantes en la ubicación del build; si hay faltantes y no se
          permite inventario negativo, lanza InsufficientInventoryError con el detalle
        - Por componente consume los lotes indicados en lot_overrides o, si no hay,
          lotes FIFO por vencimiento y el resto como stock sin lote
        - Guarda el costo unitario y total del BOM como snapshot
        - Salvo output_to_finished_goods=False, registra la entrada de producto terminado

        Por cada línea del BOM, las líneas de consumo suman exactamente
        unidades × cantidad_por_unidad.
        """
        units = _quantity(units_to_build, "units_to_build")
        sku = self._get_active_sku(sku_id)
        version = get_active_bom_version(self.db, self.uow.company_id, sku.id)
        if version is None:
            raise ValidationError(
                f"El SKU {sku.internal_code} no tiene BOM activo",
                details=[{"field": "sku_id", "message": "Sin BOM activo"}],
            )
        location_id = self._resolve_location(location_id)

        lines = (
            self.db.query(BOMLine)
            .options(joinedload(BOMLine.component))
            .filter(BOMLine.bom_version_id == version.id)
            .order_by(BOMLine.id)
            .all()
        )
        if not lines:
            raise ValidationError("El BOM activo no tiene líneas", details=[{"field": "sku_id", "message": "BOM vacío"}])

        component_ids = [line.component_id for line in lines]
        self.tenant.query(Component).filter(Component.id.in_(component_ids)).with_for_update().all()

        overrides = {int(k): v for k, v in (lot_overrides or {}).items()}
        unknown = set(overrides) - set(component_ids)
        if unknown:
            raise ValidationError(
                "Asignación de lotes para componentes fuera del BOM",
                details=[{"field": f"lot_overrides[{cid}]", "message": "El componente no está en el BOM"} for cid in sorted(unknown)],
            )

        short = insufficient_items(check_availability(self.db, version.id, units, location_id))
        if short and not self._allow_negative(allow_insufficient_inventory):
            logger.warning(
                "Build rechazado por faltantes: sku=%s company=%s faltantes=%s",
                sku.id, self.uow.company_id, [(s.sku_code, str(s.shortage)) for s in short],
            )
            raise InsufficientInventoryError(
                f"Inventario insuficiente para construir {units} unidades de {sku.internal_code}",
                items=short,
            )

        plan = []
        for line in lines:
            required = (to_decimal(line.quantity_per_unit) * units).quantize(QTY)
            parts = self._plan_consumption(
                line, required, overrides.get(line.component_id), allow_expired_lots,
                allow_negative=self._allow_negative(allow_insufficient_inventory),
            )
            if sum((qty for _, qty in parts), ZERO) != required:
                raise InternalError(f"El consumo planificado no cuadra para el componente {line.component_id}")
            plan.append((line, parts))

        unit_cost = calculate_bom_unit_cost(self.db, version.id)
        total_cost = unit_cost * units

        output_location = None
        output_qty = None
        if output_to_finished_goods:
            output_location = self._resolve_location(output_location_id)
            output_qty = _quantity(output_quantity, "output_quantity") if output_quantity is not None else units

        # --- A partir de aquí solo escrituras ---
        txn = self._new_transaction(
            TransactionType.BUILD, date,
            location_id=location_id,
            sku_id=sku.id,
            bom_version_id=version.id,
            units_built=units,
            unit_bom_cost=unit_cost,
            total_bom_cost=total_cost,
            sales_channel=sales_channel,
            notes=notes,
        )
        line_count = 0
        for line, parts in plan:
            cost = to_decimal(line.component.cost_per_unit)
            for lot_id, qty in parts:
                self._add_line(txn, line.component_id, location_id, -qty, cost, lot_id=lot_id)
                line_count += 1

        if output_to_finished_goods:
            self.db.add(FinishedGoodsLine(
                transaction_id=txn.id,
                sku_id=sku.id,
                location_id=output_location,
                quantity_change=output_qty,
                cost_per_unit=unit_cost,
            ))

        self.db.flush()
        self._log(txn, line_count)
        return BuildResult(transaction=txn, unit_bom_cost=unit_cost, total_bom_cost=total_cost, insufficient_items=short)

    # ===== MOVIMIENTOS =====

    def transfer(
        self,
        component_id: int,
        quantity,
        from_location_id: int,
        to_location_id: int,
        date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Mueve cantidad entre ubicaciones: -cantidad en origen, +cantidad en destino."""
        if from_location_id == to_location_id:
            raise ValidationError(
                "Origen y destino deben ser distintos",
                details=[{"field": "to_location_id", "message": "Debe ser distinta a from_location_id"}],
            )
        qty = _quantity(quantity, "quantity")
        component = self._get_active_component(component_id, for_update=True)
        source = self.locations.get_active_location(from_location_id)
        target = self.locations.get_active_location(to_location_id)

        available = current_quantity(self.db, component.id, source.id)
        if available < qty and not self._allow_negative():
            raise InsufficientInventoryError(
                f"Stock insuficiente de {component.sku_code} en {source.name}",
                items=[self._shortage(component, qty, available)],
            )

        cost = to_decimal(component.cost_per_unit)
        txn = self._new_transaction(
            TransactionType.TRANSFER, date,
            from_location_id=source.id, to_location_id=target.id, notes=notes,
        )
        self._add_line(txn, component.id, source.id, -qty, cost)
        self._add_line(txn, component.id, target.id, qty, cost)
        self.db.flush()
        self._log(txn, 2)
        return txn

    def adjustment(
        self,
        component_id: int,
        quantity,
        reason: str,
        date: Optional[date] = None,
        location_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Ajuste con signo. El motivo es obligatorio.

        Un ajuste negativo descuenta primero de los lotes con saldo (FIFO,
        vencidos incluidos) y el resto como stock sin lote.
        """
        qty = _quantity(quantity, "quantity", allow_negative=True)
        if not reason or not reason.strip():
            raise ValidationError("El motivo del ajuste es obligatorio", details=[{"field": "reason", "message": "Requerido"}])
        component = self._get_active_component(component_id, for_update=True)
        location_id = self._resolve_location(location_id)

        parts: List[Tuple[Optional[int], Decimal]] = [(None, qty)]
        if qty < 0:
            available = current_quantity(self.db, component.id, location_id)
            if available + qty < 0 and not self._allow_negative():
                raise InsufficientInventoryError(
                    f"El ajuste dejaría en negativo a {component.sku_code}",
                    items=[self._shortage(component, -qty, available)],
                )
            lots = available_lots(self.db, self.uow.company_id, component.id, allow_expired=True, for_update=True)
            allocations, remaining = allocate_fifo(lots, -qty)
            parts = [(a.lot_id, -a.quantity) for a in allocations]
            if remaining > 0:
                parts.append((None, -remaining))

        cost = to_decimal(component.cost_per_unit)
        txn = self._new_transaction(TransactionType.ADJUSTMENT, date, location_id=location_id, reason=reason.strip(), notes=notes)
        for lot_id, part in parts:
            self._add_line(txn, component.id, location_id, part, cost, lot_id=lot_id)
        self.db.flush()
        self._log(txn, len(parts))
        return txn

    def outbound(
        self,
        sku_id: int,
        quantity,
        date: Optional[date] = None,
        location_id: Optional[int] = None,
        sales_channel: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """Salida de producto terminado (envío/venta). Por defecto desde la ubicación de producto terminado."""
        qty = _quantity(quantity, "quantity")
        sku = self._get_active_sku(sku_id, for_update=True)
        if location_id is None:
            location_id = self.locations.finished_goods_location_id()
        else:
            location_id = self.locations.get_active_location(location_id).id

        available = sku_quantity(self.db, sku.id, location_id)
        if available < qty and not self._allow_negative():
            raise InsufficientInventoryError(
                f"Producto terminado insuficiente para {sku.internal_code}",
                items=[ShortageItem(
                    component_id=sku.id,
                    component_name=sku.name,
                    sku_code=sku.internal_code,
                    required=qty,
                    available=available,
                    shortage=max(ZERO, qty - available),
                )],
            )

        version = get_active_bom_version(self.db, self.uow.company_id, sku.id)
        cost = calculate_bom_unit_cost(self.db, version.id) if version else None

        txn = self._new_transaction(
            TransactionType.OUTBOUND, date,
            location_id=location_id, sku_id=sku.id, sales_channel=sales_channel or sku.sales_channel, notes=notes,
        )
        self.db.add(FinishedGoodsLine(
            transaction_id=txn.id, sku_id=sku.id, location_id=location_id,
            quantity_change=-qty, cost_per_unit=cost,
        ))
        self.db.flush()
        self._log(txn, 1)
        return txn

    def adjust_finished_goods(
        self,
        sku_id: int,
        quantity,
        reason: str,
        date: Optional[date] = None,
        location_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        qty = _quantity(quantity, "quantity", allow_negative=True)
        if not reason or not reason.strip():
            raise ValidationError("El motivo del ajuste es obligatorio", details=[{"field": "reason", "message": "Requerido"}])
        sku = self._get_active_sku(sku_id, for_update=True)
        location_id = self._resolve_location(location_id)
        if qty < 0:
            available = sku_quantity(self.db, sku.id, location_id)
            if available + qty < 0 and not self._allow_negative():
                raise InsufficientInventoryError(
                    f"El ajuste dejaría en negativo a {sku.internal_code}",
                    items=[ShortageItem(sku.id, sku.name, sku.internal_code, -qty, available, -qty - available)],
                )
        txn = self._new_transaction(
            TransactionType.ADJUSTMENT, date, location_id=location_id, sku_id=sku.id, reason=reason.strip(), notes=notes,
        )
        self.db.add(FinishedGoodsLine(transaction_id=txn.id, sku_id=sku.id, location_id=location_id, quantity_change=qty))
        self.db.flush()
        self._log(txn, 1)
        return txn

    # ===== LECTURA =====

    def get_transaction(self, transaction_id: int) -> Transaction:
        return self.tenant.get(Transaction, transaction_id, "Transacción")

    def list_transactions(
        self,
        type: Optional[str] = None,
        component_id: Optional[int] = None,
        sku_id: Optional[int] = None,
        location_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Transaction], int]:
        query = self.tenant.query(Transaction)
        if type:
            query = query.filter(Transaction.type == type)
        if component_id is not None:
            sub = self.db.query(TransactionLine.transaction_id).filter(TransactionLine.component_id == component_id)
            query = query.filter(Transaction.id.in_(sub))
        if sku_id is not None:
            query = query.filter(Transaction.sku_id == sku_id)
        if location_id is not None:
            query = query.filter(
                (Transaction.location_id == location_id)
                | (Transaction.from_location_id == location_id)
                | (Transaction.to_location_id == location_id)
            )
        if date_from is not None:
            query = query.filter(Transaction.date >= date_from)
        if date_to is not None:
            query = query.filter(Transaction.date <= date_to)
        total = query.count()
        items = (
            query.order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total
