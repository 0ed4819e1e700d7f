"""
Servicio de Ubicaciones
=======================

Cada empresa tiene exactamente una ubicación por defecto, usada cuando una
transacción no indica ubicación. La ubicación por defecto no se puede
desactivar.
"""
import logging
from typing import List, Optional

from sqlalchemy import update

from ..domain.enums import LocationType
from ..domain.models_inventory import Location
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_NAME = "Main Warehouse"


class LocationService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @property
    def tenant(self):
        return self.uow.tenant

    def list_locations(self, include_inactive: bool = False) -> List[Location]:
        query = self.tenant.query(Location)
        if not include_inactive:
            query = query.filter(Location.is_active == True)
        return query.order_by(Location.is_default.desc(), Location.name).all()

    def get_location(self, location_id: int) -> Location:
        return self.tenant.get(Location, location_id, "Ubicación")

    def get_active_location(self, location_id: int) -> Location:
        location = self.get_location(location_id)
        if not location.is_active:
            raise ValidationError(
                f"La ubicación {location.name} está inactiva",
                details=[{"field": "location_id", "message": "Ubicación inactiva"}],
            )
        return location

    def get_default_location(self) -> Optional[Location]:
        return self.tenant.query(Location).filter(
            Location.is_default == True, Location.is_active == True
        ).first()

    def get_default_location_id(self) -> int:
        location = self.get_default_location()
        if location is None:
            raise ValidationError(
                "La empresa no tiene ubicación por defecto configurada",
                details=[{"field": "location_id", "message": "Indique una ubicación"}],
            )
        return location.id

    def ensure_default_location(self) -> Location:
        """Promueve la ubicación activa más antigua o crea "Main Warehouse" si no hay ninguna."""
        default = self.get_default_location()
        if default is not None:
            return default

        oldest = self.tenant.query(Location).filter(Location.is_active == True).order_by(Location.created_at, Location.id).first()
        if oldest is not None:
            oldest.is_default = True
            self.uow.db.flush()
            return oldest

        location = Location(name=DEFAULT_LOCATION_NAME, type=LocationType.WAREHOUSE.value, is_default=True, is_active=True)
        self.tenant.add(location)
        self.uow.db.flush()
        logger.info("Ubicación por defecto creada para company=%s", self.uow.company_id)
        return location

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        query = self.tenant.query(Location).filter(Location.name == name)
        if exclude_id is not None:
            query = query.filter(Location.id != exclude_id)
        return query.first() is not None

    def create_location(self, name: str, type: str = LocationType.WAREHOUSE.value, is_default: bool = False, notes: Optional[str] = None) -> Location:
        if self._name_taken(name):
            raise ConflictError(f"Ya existe una ubicación llamada {name}")
        location = Location(name=name, type=type, is_default=False, is_active=True, notes=notes)
        self.tenant.add(location)
        self.uow.db.flush()
        if is_default or self.get_default_location() is None:
            self.set_default_location(location.id)
        return location

    def update_location(self, location_id: int, **fields) -> Location:
        location = self.get_location(location_id)
        name = fields.get("name")
        if name is not None and name != location.name:
            if self._name_taken(name, exclude_id=location.id):
                raise ConflictError(f"Ya existe una ubicación llamada {name}")
            location.name = name
        if fields.get("type") is not None:
            location.type = fields["type"]
        if "notes" in fields and fields["notes"] is not None:
            location.notes = fields["notes"]
        if fields.get("is_active") is False:
            self.deactivate_location(location_id)
        elif fields.get("is_active") is True:
            location.is_active = True
        self.uow.db.flush()
        return location

    def set_default_location(self, location_id: int) -> Location:
        """Quita la marca de las demás y marca esta, en la misma transacción."""
        location = self.get_active_location(location_id)
        self.uow.db.execute(
            update(Location)
            .where(Location.company_id == self.uow.company_id, Location.id != location.id)
            .values(is_default=False)
        )
        location.is_default = True
        self.uow.db.flush()
        return location

    def deactivate_location(self, location_id: int) -> Location:
        location = self.get_location(location_id)
        if location.is_default:
            raise ConflictError("No se puede desactivar la ubicación por defecto")
        location.is_active = False
        self.uow.db.flush()
        return location

    def finished_goods_location_id(self) -> int:
        """Primera ubicación activa de producto terminado; si no hay, la de por defecto."""
        fg = (
            self.tenant.query(Location)
            .filter(Location.type == LocationType.FINISHED_GOODS.value, Location.is_active == True)
            .order_by(Location.id)
            .first()
        )
        return fg.id if fg else self.get_default_location_id()
