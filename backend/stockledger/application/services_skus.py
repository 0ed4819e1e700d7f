from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_

from ..domain.enums import SalesChannel
from ..domain.models_bom import SKU, BOMVersion
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ConflictError, ValidationError
from .services_brands import BrandService
from .services_bom import calculate_bom_unit_costs, max_buildable_units
from .services_ledger import ZERO, sku_quantities

EDITABLE_FIELDS = ("name", "internal_code", "sales_channel", "notes", "brand_id")
SALES_CHANNELS = {c.value for c in SalesChannel}


@dataclass
class SKUSummary:
    sku: SKU
    active_bom_version_id: Optional[int]
    unit_bom_cost: Optional[Decimal]
    max_buildable_units: Optional[int]
    finished_goods_on_hand: Decimal


class SKUService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @property
    def tenant(self):
        return self.uow.tenant

    def get_sku(self, sku_id: int) -> SKU:
        return self.tenant.get(SKU, sku_id, "SKU")

    def _check(self, data: dict):
        channel = data.get("sales_channel")
        if channel is not None and channel not in SALES_CHANNELS:
            raise ValidationError(
                "Canal de venta inválido",
                details=[{"field": "sales_channel", "message": f"Debe ser uno de: {', '.join(sorted(SALES_CHANNELS))}"}],
            )

    def _code_taken(self, code: str, exclude_id: Optional[int] = None) -> bool:
        query = self.tenant.query(SKU).filter(SKU.internal_code == code)
        if exclude_id is not None:
            query = query.filter(SKU.id != exclude_id)
        return query.first() is not None

    def create_sku(self, **data) -> SKU:
        self._check(data)
        BrandService(self.uow).resolve_brand_id(data.get("brand_id"))
        if self._code_taken(data["internal_code"]):
            raise ConflictError(f"Ya existe un SKU con código {data['internal_code']}")
        sku = SKU(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None})
        sku.is_active = True
        self.tenant.add(sku)
        self.uow.db.flush()
        return sku

    def update_sku(self, sku_id: int, **data) -> SKU:
        sku = self.get_sku(sku_id)
        self._check(data)
        BrandService(self.uow).resolve_brand_id(data.get("brand_id"))
        code = data.get("internal_code")
        if code and code != sku.internal_code and self._code_taken(code, exclude_id=sku.id):
            raise ConflictError(f"Ya existe un SKU con código {code}")
        for key in EDITABLE_FIELDS:
            if data.get(key) is not None:
                setattr(sku, key, data[key])
        if data.get("is_active") is not None:
            sku.is_active = data["is_active"]
        self.uow.db.flush()
        return sku

    def list_skus(
        self,
        search: Optional[str] = None,
        is_active: Optional[bool] = True,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[SKUSummary], int]:
        query = self.tenant.query(SKU)
        if is_active is not None:
            query = query.filter(SKU.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(SKU.name.ilike(pattern), SKU.internal_code.ilike(pattern)))
        total = query.count()
        skus = query.order_by(SKU.name, SKU.id).offset((page - 1) * page_size).limit(page_size).all()
        return [self._summary(s, batch) for s, batch in self._with_batch(skus)], total

    def _with_batch(self, skus: List[SKU]):
        ids = [s.id for s in skus]
        active = {
            v.sku_id: v.id
            for v in self.tenant.query(BOMVersion).filter(BOMVersion.sku_id.in_(ids), BOMVersion.is_active == True).all()
        } if ids else {}
        batch = {
            "active": active,
            "costs": calculate_bom_unit_costs(self.uow.db, active.values()),
            "fg": sku_quantities(self.uow.db, ids),
        }
        return [(s, batch) for s in skus]

    def _summary(self, sku: SKU, batch: dict) -> SKUSummary:
        version_id = batch["active"].get(sku.id)
        return SKUSummary(
            sku=sku,
            active_bom_version_id=version_id,
            unit_bom_cost=batch["costs"].get(version_id) if version_id else None,
            max_buildable_units=max_buildable_units(self.uow.db, self.uow.company_id, sku.id) if version_id else None,
            finished_goods_on_hand=batch["fg"].get(sku.id, ZERO),
        )

    def sku_summary(self, sku_id: int) -> SKUSummary:
        sku = self.get_sku(sku_id)
        return self._summary(sku, self._with_batch([sku])[0][1])
