from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import datetime
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...domain.enums import LocationType
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.services_locations import LocationService
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/locations", tags=["locations"])


class LocationIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: LocationType = LocationType.WAREHOUSE
    is_default: bool = False
    notes: Optional[str] = None


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[LocationType] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class LocationOut(BaseModel):
    id: int
    company_id: int
    name: str
    type: str
    is_default: bool
    is_active: bool
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


@router.get("", response_model=List[LocationOut])
def list_locations(
    include_inactive: bool = Query(False, description="Incluir ubicaciones desactivadas"),
    tenant: TenantContext = Depends(require_permission("locations:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return LocationService(uow).list_locations(include_inactive=include_inactive)


@router.post("", response_model=LocationOut, status_code=201)
def create_location(
    payload: LocationIn,
    tenant: TenantContext = Depends(require_permission("locations:create")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        location = LocationService(uow).create_location(
            name=payload.name, type=payload.type.value, is_default=payload.is_default, notes=payload.notes,
        )
    return LocationOut.model_validate(location)


@router.patch("/{location_id}", response_model=LocationOut)
def update_location(
    location_id: int,
    payload: LocationUpdate,
    tenant: TenantContext = Depends(require_permission("locations:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("type") is not None:
        fields["type"] = fields["type"].value
    with uow.transaction():
        location = LocationService(uow).update_location(location_id, **fields)
    return LocationOut.model_validate(location)


@router.delete("/{location_id}", response_model=LocationOut)
def delete_location(
    location_id: int,
    tenant: TenantContext = Depends(require_permission("locations:delete")),
    db: Session = Depends(get_db),
):
    """Desactivación lógica. La ubicación por defecto no se puede desactivar."""
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        location = LocationService(uow).deactivate_location(location_id)
    return LocationOut.model_validate(location)


@router.post("/{location_id}/default", response_model=LocationOut)
def set_default_location(
    location_id: int,
    tenant: TenantContext = Depends(require_permission("locations:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        location = LocationService(uow).set_default_location(location_id)
    return LocationOut.model_validate(location)
