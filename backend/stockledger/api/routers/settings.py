from fastapi import APIRouter, Depends
from pydantic import BaseModel
from datetime import datetime
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...domain.company_settings import CompanySettings, CompanySettingsUpdate
from ...domain.enums import AlertMode
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.services_alerts import AlertService
from ...application.services_settings import get_company_settings, update_company_settings
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(prefix="/settings", tags=["settings"])


class AlertConfigIn(BaseModel):
    slack_webhook_url: Optional[str] = None
    email_addresses: Optional[List[str]] = None
    enable_slack: Optional[bool] = None
    enable_email: Optional[bool] = None
    alert_mode: Optional[AlertMode] = None


class AlertConfigOut(BaseModel):
    slack_webhook_url: Optional[str] = None
    email_addresses: List[str] = []
    enable_slack: bool = False
    enable_email: bool = False
    alert_mode: str = AlertMode.DAILY_DIGEST.value
    last_digest_sent: Optional[datetime] = None


def _alert_out(config) -> AlertConfigOut:
    if config is None:
        return AlertConfigOut()
    return AlertConfigOut(
        slack_webhook_url=config.slack_webhook_url,
        email_addresses=config.email_addresses or [],
        enable_slack=bool(config.enable_slack),
        enable_email=bool(config.enable_email),
        alert_mode=config.alert_mode,
        last_digest_sent=config.last_digest_sent,
    )


# ===== CONFIGURACIÓN DE EMPRESA =====

@router.get("", response_model=CompanySettings)
def get_settings(
    tenant: TenantContext = Depends(require_permission("settings:read")),
    db: Session = Depends(get_db),
):
    """Configuración efectiva (guardada combinada con los valores por defecto)."""
    return get_company_settings(db, tenant.company_id)


@router.patch("", response_model=CompanySettings)
def update_settings(
    payload: CompanySettingsUpdate,
    tenant: TenantContext = Depends(require_permission("settings:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    with uow.transaction():
        settings = update_company_settings(uow, payload)
    return settings


# ===== ALERTAS =====

@router.get("/alerts", response_model=AlertConfigOut)
def get_alert_config(
    tenant: TenantContext = Depends(require_permission("alerts:read")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _alert_out(AlertService(uow).get_config())


@router.put("/alerts", response_model=AlertConfigOut)
def update_alert_config(
    payload: AlertConfigIn,
    tenant: TenantContext = Depends(require_permission("alerts:update")),
    db: Session = Depends(get_db),
):
    uow = UnitOfWork(db, company_id=tenant.company_id)
    fields = payload.model_dump()
    if payload.alert_mode is not None:
        fields["alert_mode"] = payload.alert_mode.value
    with uow.transaction():
        config = AlertService(uow).upsert_config(**fields)
    return _alert_out(config)


@router.post("/alerts/test")
def send_test_alert(
    tenant: TenantContext = Depends(require_permission("alerts:update")),
    db: Session = Depends(get_db),
):
    """Envía un mensaje de prueba al webhook de Slack configurado."""
    uow = UnitOfWork(db, company_id=tenant.company_id)
    AlertService(uow).send_test_message()
    return {"status": "sent"}
