"""
Servicio de Marcas
==================

Las marcas agrupan componentes y SKUs dentro de una empresa. Toda referencia
a una marca (alta, edición, importación) se resuelve contra la empresa
activa: una marca de otra empresa se trata como inexistente.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func

from ..domain.models import Brand
from ..domain.models_bom import SKU
from ..domain.models_inventory import Component
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)


class BrandService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @property
    def tenant(self):
        return self.uow.tenant

    def get_brand(self, brand_id: int) -> Brand:
        return self.tenant.get(Brand, brand_id, "Marca")

    def resolve_brand_id(self, brand_id: Optional[int]) -> Optional[int]:
        """Valida que la marca sea de la empresa y esté activa."""
        if brand_id is None:
            return None
        brand = self.get_brand(brand_id)
        if not brand.active:
            raise ValidationError(
                f"La marca {brand.name} está inactiva",
                details=[{"field": "brand_id", "message": "Marca inactiva"}],
            )
        return brand.id

    def by_name(self, name: str) -> Optional[Brand]:
        return self.tenant.query(Brand).filter(Brand.name == name).first()

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        query = self.tenant.query(Brand).filter(Brand.name == name)
        if exclude_id is not None:
            query = query.filter(Brand.id != exclude_id)
        return query.first() is not None

    def _clean_name(self, name) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Nombre de marca requerido", details=[{"field": "name", "message": "Requerido"}])
        return name

    def list_brands(
        self,
        search: Optional[str] = None,
        include_inactive: bool = False,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Tuple[Brand, int, int]], int]:
        """Marcas de la empresa con la cantidad de componentes y SKUs asociados."""
        query = self.tenant.query(Brand)
        if not include_inactive:
            query = query.filter(Brand.active == True)
        if search:
            query = query.filter(Brand.name.ilike(f"%{search}%"))
        total = query.count()
        brands = query.order_by(Brand.name).offset((page - 1) * page_size).limit(page_size).all()

        ids = [b.id for b in brands]
        component_counts = dict(
            self.tenant.query(Component)
            .with_entities(Component.brand_id, func.count(Component.id))
            .filter(Component.brand_id.in_(ids))
            .group_by(Component.brand_id)
            .all()
        ) if ids else {}
        sku_counts = dict(
            self.tenant.query(SKU)
            .with_entities(SKU.brand_id, func.count(SKU.id))
            .filter(SKU.brand_id.in_(ids))
            .group_by(SKU.brand_id)
            .all()
        ) if ids else {}
        return [(b, component_counts.get(b.id, 0), sku_counts.get(b.id, 0)) for b in brands], total

    def create_brand(self, name: str) -> Brand:
        name = self._clean_name(name)
        if self._name_taken(name):
            raise ConflictError(f"Ya existe una marca llamada {name}")
        brand = Brand(name=name, active=True)
        self.tenant.add(brand)
        self.uow.db.flush()
        logger.info("Marca creada: id=%s company=%s", brand.id, self.uow.company_id)
        return brand

    def update_brand(self, brand_id: int, name: Optional[str] = None, active: Optional[bool] = None) -> Brand:
        brand = self.get_brand(brand_id)
        if name is not None:
            name = self._clean_name(name)
            if name != brand.name and self._name_taken(name, exclude_id=brand.id):
                raise ConflictError(f"Ya existe una marca llamada {name}")
            brand.name = name
        if active is not None:
            brand.active = active
        self.uow.db.flush()
        return brand
