"""
Servicio de Componentes
=======================

Alta, edición y desactivación de componentes, y el listado con cantidad en
mano y estado de reorden derivados del ledger.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_

from ..domain.enums import ReorderStatus
from ..domain.models_bom import BOMLine, BOMVersion
from ..domain.models_inventory import Component
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ConflictError, ValidationError
from .services_brands import BrandService
from .services_forecast import reorder_status
from .services_ledger import ZERO, component_quantities, quantities_by_location
from .services_settings import get_company_settings

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name", "sku_code", "category", "unit_of_measure", "cost_per_unit",
    "reorder_point", "lead_time_days", "notes", "brand_id",
)


@dataclass
class ComponentWithStock:
    component: Component
    quantity_on_hand: Decimal
    reorder_status: ReorderStatus


class ComponentService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @property
    def tenant(self):
        return self.uow.tenant

    def get_component(self, component_id: int) -> Component:
        return self.tenant.get(Component, component_id, "Componente")

    def _check_values(self, data: dict):
        details = []
        for key in ("cost_per_unit", "reorder_point", "lead_time_days"):
            value = data.get(key)
            if value is not None and value < 0:
                details.append({"field": key, "message": "No puede ser negativo"})
        for key in ("name", "sku_code"):
            if key in data and data[key] is not None and not str(data[key]).strip():
                details.append({"field": key, "message": "Requerido"})
        if details:
            raise ValidationError("Datos de componente inválidos", details=details)

    def _sku_code_taken(self, sku_code: str, exclude_id: Optional[int] = None) -> bool:
        query = self.tenant.query(Component).filter(Component.sku_code == sku_code)
        if exclude_id is not None:
            query = query.filter(Component.id != exclude_id)
        return query.first() is not None

    def create_component(self, **data) -> Component:
        self._check_values(data)
        BrandService(self.uow).resolve_brand_id(data.get("brand_id"))
        if self._sku_code_taken(data["sku_code"]):
            raise ConflictError(f"Ya existe un componente con código {data['sku_code']}")
        component = Component(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
        component.is_active = True
        self.tenant.add(component)
        self.uow.db.flush()
        return component

    def update_component(self, component_id: int, **data) -> Component:
        component = self.get_component(component_id)
        self._check_values(data)
        BrandService(self.uow).resolve_brand_id(data.get("brand_id"))
        sku_code = data.get("sku_code")
        if sku_code and sku_code != component.sku_code and self._sku_code_taken(sku_code, exclude_id=component.id):
            raise ConflictError(f"Ya existe un componente con código {sku_code}")
        for key in EDITABLE_FIELDS:
            if data.get(key) is not None:
                setattr(component, key, data[key])
        if data.get("is_active") is True:
            component.is_active = True
        elif data.get("is_active") is False:
            self.deactivate_component(component_id)
        self.uow.db.flush()
        return component

    def active_bom_versions_using(self, component_id: int) -> List[BOMVersion]:
        return (
            self.tenant.query(BOMVersion)
            .join(BOMLine, BOMLine.bom_version_id == BOMVersion.id)
            .filter(BOMLine.component_id == component_id, BOMVersion.is_active == True)
            .all()
        )

    def deactivate_component(self, component_id: int) -> Component:
        """Desactivación lógica; el historial del ledger se conserva."""
        component = self.get_component(component_id)
        in_use = self.active_bom_versions_using(component.id)
        if in_use:
            names = ", ".join(v.version_name for v in in_use)
            raise ConflictError(f"El componente {component.sku_code} está en BOMs activos: {names}")
        component.is_active = False
        self.uow.db.flush()
        return component

    def list_components(
        self,
        reorder_status_filter: Optional[str] = None,
        search: Optional[str] = None,
        is_active: Optional[bool] = True,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[ComponentWithStock], int]:
        """
        Lista componentes con cantidad en mano y estado de reorden.

        El estado se deriva del ledger, así que el filtro por estado se aplica
        después de calcularlo y antes de paginar.
        """
        if reorder_status_filter is not None and reorder_status_filter not in {s.value for s in ReorderStatus}:
            raise ValidationError(
                "Estado de reorden inválido",
                details=[{"field": "reorder_status", "message": "Debe ser ok, warning o critical"}],
            )
        query = self.tenant.query(Component)
        if is_active is not None:
            query = query.filter(Component.is_active == is_active)
        if category:
            query = query.filter(Component.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(Component.name.ilike(pattern), Component.sku_code.ilike(pattern)))
        components = query.order_by(Component.name, Component.id).all()

        multiplier = get_company_settings(self.uow.db, self.uow.company_id).reorder_warning_multiplier
        on_hand = component_quantities(self.uow.db, [c.id for c in components])
        rows = []
        for c in components:
            qty = on_hand.get(c.id, ZERO)
            status = reorder_status(qty, c.reorder_point or 0, multiplier)
            if reorder_status_filter and status.value != reorder_status_filter:
                continue
            rows.append(ComponentWithStock(component=c, quantity_on_hand=qty, reorder_status=status))

        total = len(rows)
        start = (page - 1) * page_size
        return rows[start:start + page_size], total

    def component_detail(self, component_id: int) -> dict:
        component = self.get_component(component_id)
        multiplier = get_company_settings(self.uow.db, self.uow.company_id).reorder_warning_multiplier
        qty = component_quantities(self.uow.db, [component.id])[component.id]
        return {
            "component": component,
            "quantity_on_hand": qty,
            "reorder_status": reorder_status(qty, component.reorder_point or 0, multiplier),
            "locations": quantities_by_location(self.uow.db, component.id),
        }
