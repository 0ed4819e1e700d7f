"""
BOM: Costeo, Disponibilidad y Ciclo de Vida
===========================================

Costeo:
- Costo unitario = Σ cantidad_por_unidad × costo vigente del componente
- Se calcula al momento de consultar; el build guarda su propio snapshot

Disponibilidad:
- requerido = unidades × cantidad_por_unidad
- faltante = max(0, requerido - disponible)

Ciclo de vida de una versión:
    draft -> active -> superseded
Activar una versión reemplaza atómicamente a la activa del mismo SKU.
Solo las versiones en draft se pueden editar.
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..domain.enums import BOMState
from ..domain.models_bom import SKU, BOMVersion, BOMLine
from ..domain.models_inventory import Component
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ConflictError, NotFoundError, ShortageItem, ValidationError
from .services_ledger import ZERO, to_decimal, component_quantities

logger = logging.getLogger(__name__)


# ===== COSTEO =====

def _load_lines(db: Session, bom_version_id: int) -> List[BOMLine]:
    return (
        db.query(BOMLine)
        .options(joinedload(BOMLine.component))
        .filter(BOMLine.bom_version_id == bom_version_id)
        .order_by(BOMLine.id)
        .all()
    )


def line_cost(line: BOMLine) -> Decimal:
    return to_decimal(line.quantity_per_unit) * to_decimal(line.component.cost_per_unit)


def calculate_bom_unit_cost(db: Session, bom_version_id: int) -> Decimal:
    return sum((line_cost(line) for line in _load_lines(db, bom_version_id)), ZERO)


def calculate_bom_unit_costs(db: Session, bom_version_ids: Iterable[int]) -> Dict[int, Decimal]:
    ids = list(bom_version_ids)
    if not ids:
        return {}
    totals = {vid: ZERO for vid in ids}
    lines = (
        db.query(BOMLine)
        .options(joinedload(BOMLine.component))
        .filter(BOMLine.bom_version_id.in_(ids))
        .all()
    )
    for line in lines:
        totals[line.bom_version_id] += line_cost(line)
    return totals


def get_active_bom_version(db: Session, company_id: int, sku_id: int) -> Optional[BOMVersion]:
    return (
        db.query(BOMVersion)
        .filter(
            BOMVersion.company_id == company_id,
            BOMVersion.sku_id == sku_id,
            BOMVersion.is_active == True,
        )
        .first()
    )


# ===== DISPONIBILIDAD =====

def check_availability(
    db: Session,
    bom_version_id: int,
    units_to_build: Decimal,
    location_id: Optional[int] = None,
) -> List[ShortageItem]:
    """Un ítem por línea del BOM (incluye los que no tienen faltante)."""
    units = Decimal(units_to_build)
    lines = _load_lines(db, bom_version_id)
    on_hand = component_quantities(db, [line.component_id for line in lines], location_id)

    items = []
    for line in lines:
        required = to_decimal(line.quantity_per_unit) * units
        available = on_hand.get(line.component_id, ZERO)
        items.append(ShortageItem(
            component_id=line.component_id,
            component_name=line.component.name,
            sku_code=line.component.sku_code,
            required=required,
            available=available,
            shortage=max(ZERO, required - available),
        ))
    return items


def insufficient_items(items: Iterable[ShortageItem]) -> List[ShortageItem]:
    return [item for item in items if item.shortage > 0]


def max_buildable_units(
    db: Session,
    company_id: int,
    sku_id: int,
    location_id: Optional[int] = None,
) -> Optional[int]:
    """min(floor(en_mano / cantidad_por_unidad)) sobre las líneas del BOM activo; None sin BOM activo."""
    version = get_active_bom_version(db, company_id, sku_id)
    if version is None:
        return None
    lines = _load_lines(db, version.id)
    if not lines:
        return None
    on_hand = component_quantities(db, [line.component_id for line in lines], location_id)
    buildable = None
    for line in lines:
        qpu = to_decimal(line.quantity_per_unit)
        if qpu <= 0:
            continue
        units = max(ZERO, on_hand.get(line.component_id, ZERO)) / qpu
        units = int(units.to_integral_value(rounding=ROUND_FLOOR))
        buildable = units if buildable is None else min(buildable, units)
    return buildable


# ===== CICLO DE VIDA =====

class BOMService:
    """Creación, clonación, edición y activación de versiones de BOM."""

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @property
    def tenant(self):
        return self.uow.tenant

    def get_version(self, version_id: int) -> BOMVersion:
        return self.tenant.get(BOMVersion, version_id, "Versión de BOM")

    def list_versions(self, sku_id: int) -> List[BOMVersion]:
        self.tenant.get(SKU, sku_id, "SKU")
        return self.tenant.query(BOMVersion).filter(BOMVersion.sku_id == sku_id).order_by(BOMVersion.id).all()

    def _validate_lines(self, lines: List[dict]) -> List[BOMLine]:
        details = []
        seen = set()
        result = []
        for i, data in enumerate(lines):
            field = f"lines[{i}]"
            component_id = data.get("component_id")
            qty = Decimal(str(data.get("quantity_per_unit", 0)))
            if component_id in seen:
                details.append({"field": field, "message": f"Componente {component_id} repetido en el BOM"})
                continue
            seen.add(component_id)
            component = self.tenant.find(Component, component_id)
            if component is None:
                details.append({"field": field, "message": f"Componente {component_id} no encontrado"})
                continue
            if not component.is_active:
                details.append({"field": field, "message": f"El componente {component.sku_code} está inactivo"})
                continue
            if qty <= 0:
                details.append({"field": field, "message": "La cantidad por unidad debe ser mayor a 0"})
                continue
            result.append(BOMLine(component_id=component_id, quantity_per_unit=qty, notes=data.get("notes")))
        if not lines:
            details.append({"field": "lines", "message": "El BOM debe tener al menos una línea"})
        if details:
            raise ValidationError("Líneas de BOM inválidas", details=details)
        return result

    def create_version(
        self,
        sku_id: int,
        version_name: str,
        lines: List[dict],
        notes: Optional[str] = None,
        activate: bool = False,
    ) -> BOMVersion:
        self.tenant.get(SKU, sku_id, "SKU")
        version = BOMVersion(
            sku_id=sku_id,
            version_name=version_name,
            notes=notes,
            state=BOMState.DRAFT.value,
            is_active=False,
        )
        version.lines = self._validate_lines(lines)
        self.tenant.add(version)
        self.uow.db.flush()
        if activate:
            self.activate_version(version.id)
        return version

    def clone_version(self, version_id: int, version_name: Optional[str] = None) -> BOMVersion:
        source = self.get_version(version_id)
        clone = BOMVersion(
            sku_id=source.sku_id,
            version_name=version_name or f"{source.version_name} (copia)",
            notes=f"Clonado desde {source.version_name}",
            state=BOMState.DRAFT.value,
            is_active=False,
        )
        clone.lines = [
            BOMLine(component_id=line.component_id, quantity_per_unit=line.quantity_per_unit, notes=line.notes)
            for line in source.lines
        ]
        self.tenant.add(clone)
        self.uow.db.flush()
        return clone

    def update_version(
        self,
        version_id: int,
        version_name: Optional[str] = None,
        notes: Optional[str] = None,
        lines: Optional[List[dict]] = None,
    ) -> BOMVersion:
        version = self.get_version(version_id)
        if version.state != BOMState.DRAFT.value:
            raise ConflictError(f"La versión {version.version_name} no es editable (estado {version.state})")
        if version_name is not None:
            version.version_name = version_name
        if notes is not None:
            version.notes = notes
        if lines is not None:
            new_lines = self._validate_lines(lines)
            version.lines.clear()
            self.uow.db.flush()
            version.lines.extend(new_lines)
        self.uow.db.flush()
        return version

    def activate_version(self, version_id: int) -> BOMVersion:
        """
        Activa una versión reemplazando a la activa del mismo SKU.

        - draft -> active: la activa anterior pasa a superseded con fecha de fin
        - active: sin cambios (idempotente)
        - superseded: ConflictError
        Una activación concurrente que viole el índice único también es ConflictError.
        """
        version = self.tenant.get_for_update(BOMVersion, version_id, "Versión de BOM")
        if version.state == BOMState.ACTIVE.value and version.is_active:
            return version
        if version.state == BOMState.SUPERSEDED.value:
            raise ConflictError(f"La versión {version.version_name} fue reemplazada y no puede reactivarse")
        if not version.lines:
            raise ValidationError("No se puede activar un BOM sin líneas", details=[
                {"field": "lines", "message": "El BOM debe tener al menos una línea"}
            ])

        now = datetime.now()
        current = (
            self.tenant.query(BOMVersion)
            .filter(BOMVersion.sku_id == version.sku_id, BOMVersion.is_active == True, BOMVersion.id != version.id)
            .with_for_update()
            .all()
        )
        try:
            for previous in current:
                previous.is_active = False
                previous.state = BOMState.SUPERSEDED.value
                previous.effective_end_date = now
            # La desactivación debe llegar a la BD antes que la activación (índice único parcial)
            self.uow.db.flush()

            version.is_active = True
            version.state = BOMState.ACTIVE.value
            version.effective_start_date = now
            version.effective_end_date = None
            self.uow.db.flush()
        except IntegrityError as e:
            raise ConflictError("Otra versión del BOM fue activada en paralelo; reintente") from e

        logger.info(
            "BOM activado: version=%s sku=%s company=%s reemplazadas=%s",
            version.id, version.sku_id, version.company_id, [p.id for p in current],
        )
        return version
