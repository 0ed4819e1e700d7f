import hmac
import logging
from fastapi import APIRouter, Depends, Header, HTTPException, status
from pydantic import BaseModel
from typing import Dict, List, Optional

from ...config import settings
from ...dependencies import get_session_factory
from ...application.services_alerts import run_all_company_alerts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


class AlertRunOut(BaseModel):
    companies_processed: int
    companies_with_alerts: int
    total_alerts: int
    total_recoveries: int
    errors: Dict[int, List[str]]


@router.post("/alerts", response_model=AlertRunOut)
def run_alerts(
    x_cron_secret: Optional[str] = Header(default=None),
    session_factory=Depends(get_session_factory),
):
    """
    Job de alertas de stock bajo para todas las empresas.

    Lo invoca el scheduler externo con la cabecera X-Cron-Secret. Sin secreto
    configurado el endpoint queda deshabilitado.
    """
    if not settings.cron_secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron no configurado")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        logger.warning("Invocación de cron con secreto inválido")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Secreto inválido")
    summary = run_all_company_alerts(session_factory=session_factory)
    return AlertRunOut(
        companies_processed=summary.companies_processed,
        companies_with_alerts=summary.companies_with_alerts,
        total_alerts=summary.total_alerts,
        total_recoveries=summary.total_recoveries,
        errors=summary.errors,
    )
