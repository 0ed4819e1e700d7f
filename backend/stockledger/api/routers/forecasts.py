from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...domain.company_settings import CompanySettingsUpdate
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.services_forecast import ComponentForecast, ForecastService
from ...application.services_settings import get_company_settings, update_company_settings
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/forecasts", tags=["forecasts"])


class ForecastOut(BaseModel):
    component_id: int
    component_name: str
    sku_code: str
    quantity_on_hand: Decimal
    average_daily_consumption: Decimal
    days_until_runout: Optional[int] = None
    runout_date: Optional[date] = None
    recommended_reorder_qty: Optional[int] = None
    recommended_reorder_date: Optional[date] = None
    lead_time_days: int
    reorder_point: int
    reorder_status: str


class ForecastConfig(BaseModel):
    lookback_days: int
    safety_days: int
    excluded_transaction_types: List[str]


class ForecastConfigUpdate(BaseModel):
    lookback_days: Optional[int] = None
    safety_days: Optional[int] = None
    excluded_transaction_types: Optional[List[str]] = None


def _out(f: ComponentForecast) -> ForecastOut:
    return ForecastOut(
        component_id=f.component_id,
        component_name=f.component_name,
        sku_code=f.sku_code,
        quantity_on_hand=f.quantity_on_hand,
        average_daily_consumption=f.average_daily_consumption,
        days_until_runout=f.days_until_runout,
        runout_date=f.runout_date,
        recommended_reorder_qty=f.recommended_reorder_qty,
        recommended_reorder_date=f.recommended_reorder_date,
        lead_time_days=f.lead_time_days,
        reorder_point=f.reorder_point,
        reorder_status=f.reorder_status.value,
    )


def _config(settings) -> ForecastConfig:
    return ForecastConfig(
        lookback_days=settings.forecast_lookback_days,
        safety_days=settings.forecast_safety_days,
        excluded_transaction_types=settings.forecast_excluded_transaction_types,
    )


@router.get("", response_model=List[ForecastOut])
def list_forecasts(
    lookback_days: Optional[int] = Query(None, ge=7, le=365),
    safety_days: Optional[int] = Query(None, ge=0, le=90),
    tenant: TenantContext = Depends(require_permission("forecasts:read")),
    db: Session = Depends(get_db),
):
    """Forecast de consumo de los componentes activos, los que se agotan antes primero."""
    uow = UnitOfWork(db, company_id=tenant.company_id)
    forecasts = ForecastService(uow).component_forecasts(lookback_days=lookback_days, safety_days=safety_days)
    return [_out(f) for f in forecasts]


# /config se declara antes que /{component_id}
@router.get("/config", response_model=ForecastConfig)
def get_forecast_config(
    tenant: TenantContext = Depends(require_permission("forecasts:read")),
    db: Session = Depends(get_db),
):
    return _config(get_company_settings(db, tenant.company_id))


@router.put("/config", response_model=ForecastConfig)
def update_forecast_config(
    payload: ForecastConfigUpdate,
    tenant: TenantContext = Depends(require_permission("settings:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    update = CompanySettingsUpdate(
        forecast_lookback_days=payload.lookback_days,
        forecast_safety_days=payload.safety_days,
        forecast_excluded_transaction_types=payload.excluded_transaction_types,
    )
    with uow.transaction():
        settings = update_company_settings(uow, update)
    return _config(settings)


@router.get("/{component_id}", response_model=ForecastOut)
def get_forecast(
    component_id: int,
    lookback_days: Optional[int] = Query(None, ge=7, le=365),
    safety_days: Optional[int] = Query(None, ge=0, le=90),
    tenant: TenantContext = Depends(require_permission("forecasts:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _out(ForecastService(uow).component_forecast(component_id, lookback_days=lookback_days, safety_days=safety_days))
