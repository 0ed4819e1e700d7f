"""
Alertas de Stock Bajo
=====================

Evaluación por empresa:
- Solo componentes activos con punto de reorden > 0
- Se compara el estado actual con el último guardado (ComponentAlertState)
- Alertan las transiciones ok->warning, ok->critical y warning->critical
- Volver a ok cuenta como recuperación (no alerta)

Job batch (run_all_company_alerts):
- Recorre secuencialmente las empresas con algún canal habilitado
- Cada empresa corre en su propia sesión con un tiempo máximo
- Un timeout o error en una empresa se registra y el job continúa
"""
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..config import settings
from ..domain.enums import AlertMode, ReorderStatus
from ..domain.models import Company
from ..domain.models_alerts import AlertConfig, ComponentAlertState
from ..domain.models_inventory import Component
from ..infrastructure.mailer import EmailService
from ..infrastructure.slack import (
    LowStockAlert, SlackClient, SlackWebhookError,
    format_daily_digest, format_low_stock_alert, format_test_message, is_valid_slack_webhook_url,
)
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ValidationError
from .services_forecast import reorder_status
from .services_ledger import ZERO, component_quantities
from .services_settings import get_company_settings

logger = logging.getLogger(__name__)

ALERTING_TRANSITIONS = {
    (ReorderStatus.OK.value, ReorderStatus.WARNING.value),
    (ReorderStatus.OK.value, ReorderStatus.CRITICAL.value),
    (ReorderStatus.WARNING.value, ReorderStatus.CRITICAL.value),
}
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class AlertEvaluation:
    company_id: int
    evaluated: int = 0
    alerts: List[LowStockAlert] = field(default_factory=list)
    recoveries: int = 0
    # Estado previo de cada componente que alertó, para revertir si no se entrega
    previous: Dict[int, Tuple[str, Optional[datetime]]] = field(default_factory=dict, repr=False)


@dataclass
class DeliveryResult:
    slack_sent: int = 0
    emails_sent: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class CompanyAlertResult:
    company_id: int
    alerts: int = 0
    recoveries: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class AlertRunSummary:
    companies_processed: int = 0
    companies_with_alerts: int = 0
    total_alerts: int = 0
    total_recoveries: int = 0
    errors: Dict[int, List[str]] = field(default_factory=dict)
    results: List[CompanyAlertResult] = field(default_factory=list)


class AlertService:
    def __init__(
        self,
        uow: UnitOfWork,
        slack_client: Optional[SlackClient] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.uow = uow
        self.slack = slack_client or SlackClient()
        self.email = email_service or EmailService()

    # ===== CONFIGURACIÓN =====

    def get_config(self) -> Optional[AlertConfig]:
        return self.uow.companies.alert_config(self.uow.company_id)

    def upsert_config(self, **fields) -> AlertConfig:
        config = self.get_config()
        if config is None:
            config = AlertConfig(
                company_id=self.uow.company_id,
                enable_slack=False,
                enable_email=False,
                alert_mode=AlertMode.DAILY_DIGEST.value,
            )
            self.uow.db.add(config)
        for key in ("slack_webhook_url", "email_addresses", "enable_slack", "enable_email", "alert_mode"):
            if fields.get(key) is not None:
                setattr(config, key, fields[key])

        details = []
        if config.slack_webhook_url and not is_valid_slack_webhook_url(config.slack_webhook_url):
            details.append({"field": "slack_webhook_url", "message": "Debe ser https://hooks.slack.com/services/..."})
        if config.enable_slack and not config.slack_webhook_url:
            details.append({"field": "slack_webhook_url", "message": "Requerido para habilitar Slack"})
        emails = config.email_addresses or []
        for i, address in enumerate(emails):
            if not EMAIL_RE.match(address):
                details.append({"field": f"email_addresses[{i}]", "message": f"Email inválido: {address}"})
        if config.enable_email and not emails:
            details.append({"field": "email_addresses", "message": "Requerido para habilitar email"})
        if config.alert_mode not in {m.value for m in AlertMode}:
            details.append({"field": "alert_mode", "message": "Debe ser daily_digest o per_transition"})
        if details:
            raise ValidationError("Configuración de alertas inválida", details=details)

        self.uow.db.flush()
        return config

    # ===== EVALUACIÓN =====

    def evaluate_low_stock_alerts(self, now: Optional[datetime] = None) -> AlertEvaluation:
        now = now or datetime.now()
        company_id = self.uow.company_id
        result = AlertEvaluation(company_id=company_id)
        multiplier = get_company_settings(self.uow.db, company_id).reorder_warning_multiplier

        components = (
            self.uow.tenant.query(Component)
            .filter(Component.is_active == True, Component.reorder_point > 0)
            .order_by(Component.name)
            .all()
        )
        on_hand = component_quantities(self.uow.db, [c.id for c in components])
        states = {
            s.component_id: s
            for s in self.uow.db.query(ComponentAlertState).filter(ComponentAlertState.company_id == company_id).all()
        }

        for component in components:
            qty = on_hand.get(component.id, ZERO)
            status = reorder_status(qty, component.reorder_point, multiplier).value
            state = states.get(component.id)
            previous = state.last_status if state else ReorderStatus.OK.value

            if state is None:
                state = ComponentAlertState(company_id=company_id, component_id=component.id, last_status=previous)
                self.uow.db.add(state)

            if (previous, status) in ALERTING_TRANSITIONS:
                result.previous[component.id] = (previous, state.last_alert_sent)
                result.alerts.append(LowStockAlert(
                    component_id=component.id,
                    component_name=component.name,
                    sku_code=component.sku_code,
                    status=status,
                    quantity_on_hand=qty,
                    reorder_point=component.reorder_point,
                    lead_time_days=component.lead_time_days or 0,
                ))
                state.last_alert_sent = now
            elif status == ReorderStatus.OK.value and previous != ReorderStatus.OK.value:
                result.recoveries += 1

            state.last_status = status
            result.evaluated += 1

        self.uow.db.flush()
        return result

    # ===== ENVÍO =====

    def deliver(self, evaluation: AlertEvaluation, config: AlertConfig, now: Optional[datetime] = None) -> DeliveryResult:
        """
        Envía por los canales habilitados. Los errores de envío se acumulan, no se propagan.

        Una alerta que no salió por ningún canal vuelve a su estado anterior,
        así la próxima corrida la reintenta.
        """
        delivery = DeliveryResult()
        if not evaluation.alerts:
            return delivery
        now = now or datetime.now()
        company = self.uow.companies.get(evaluation.company_id)
        base_url = settings.alert_base_url.rstrip("/")
        all_ids = {a.component_id for a in evaluation.alerts}
        delivered = set()
        attempted = False

        if config.enable_slack and config.slack_webhook_url:
            attempted = True
            if config.alert_mode == AlertMode.PER_TRANSITION.value:
                batches = [(format_low_stock_alert(a, base_url), {a.component_id}) for a in evaluation.alerts]
            else:
                batches = [(format_daily_digest(evaluation.alerts, base_url, company.name if company else ""), all_ids)]
            for message, ids in batches:
                try:
                    self.slack.send(config.slack_webhook_url, message)
                    delivery.slack_sent += 1
                    delivered |= ids
                except SlackWebhookError as e:
                    logger.error("Error enviando alerta a Slack company=%s: %s", evaluation.company_id, e)
                    delivery.errors.append(f"slack: {e}")

        if config.enable_email and config.email_addresses:
            attempted = True
            sent = self.email.send_low_stock_alerts(
                config.email_addresses, evaluation.alerts, base_url, company.name if company else None
            )
            if sent:
                delivery.emails_sent += 1
                delivered |= all_ids
            else:
                delivery.errors.append("email: no se pudo enviar")

        if attempted:
            self._restore_undelivered(evaluation, all_ids - delivered)
        if config.alert_mode == AlertMode.DAILY_DIGEST.value and (delivery.slack_sent or delivery.emails_sent):
            config.last_digest_sent = now
        self.uow.db.flush()
        return delivery

    def _restore_undelivered(self, evaluation: AlertEvaluation, component_ids: Iterable[int]):
        ids = [cid for cid in component_ids if cid in evaluation.previous]
        if not ids:
            return
        states = (
            self.uow.db.query(ComponentAlertState)
            .filter(ComponentAlertState.company_id == evaluation.company_id, ComponentAlertState.component_id.in_(ids))
            .all()
        )
        for state in states:
            state.last_status, state.last_alert_sent = evaluation.previous[state.component_id]
        logger.warning("Alertas no entregadas company=%s componentes=%s", evaluation.company_id, sorted(ids))

    def send_test_message(self) -> None:
        config = self.get_config()
        if config is None or not config.slack_webhook_url:
            raise ValidationError(
                "No hay webhook de Slack configurado",
                details=[{"field": "slack_webhook_url", "message": "Requerido"}],
            )
        try:
            self.slack.send(config.slack_webhook_url, format_test_message())
        except SlackWebhookError as e:
            raise ValidationError(str(e), details=[{"field": "slack_webhook_url", "message": str(e)}]) from e


# ===== JOB BATCH =====

def process_company_alerts(
    session_factory: Callable[[], Session],
    company_id: int,
    slack_client: Optional[SlackClient] = None,
    email_service: Optional[EmailService] = None,
) -> CompanyAlertResult:
    """Evalúa y envía las alertas de una empresa en su propia sesión."""
    uow = UnitOfWork(session_factory(), company_id=company_id)
    try:
        service = AlertService(uow, slack_client=slack_client, email_service=email_service)
        config = service.get_config()
        evaluation = service.evaluate_low_stock_alerts()
        delivery = service.deliver(evaluation, config) if config else DeliveryResult()
        uow.commit()
        return CompanyAlertResult(
            company_id=company_id,
            alerts=len(evaluation.alerts),
            recoveries=evaluation.recoveries,
            errors=delivery.errors,
        )
    except Exception:
        uow.rollback()
        raise
    finally:
        uow.db.close()


def _companies_with_alerts_enabled(session_factory: Callable[[], Session]) -> List[int]:
    db = session_factory()
    try:
        rows = (
            db.query(AlertConfig.company_id)
            .join(Company, Company.id == AlertConfig.company_id)
            .filter(Company.active == True)
            .filter((AlertConfig.enable_slack == True) | (AlertConfig.enable_email == True))
            .order_by(AlertConfig.company_id)
            .all()
        )
        return [r[0] for r in rows]
    finally:
        db.close()


def run_all_company_alerts(
    session_factory: Optional[Callable[[], Session]] = None,
    timeout_seconds: Optional[float] = None,
    slack_client: Optional[SlackClient] = None,
    email_service: Optional[EmailService] = None,
) -> AlertRunSummary:
    """
    Corre las alertas de todas las empresas, una tras otra.

    Cada empresa tiene timeout_seconds para terminar; al vencerse se registra
    el error y se pasa a la siguiente (el trabajo abandonado no confirma nada
    que no haya terminado por sí mismo).
    """
    if session_factory is None:
        from ..db import SessionLocal
        session_factory = SessionLocal
    timeout = timeout_seconds if timeout_seconds is not None else settings.alert_tenant_timeout_seconds

    summary = AlertRunSummary()
    company_ids = _companies_with_alerts_enabled(session_factory)
    logger.info("Job de alertas iniciado: %s empresas", len(company_ids))

    for company_id in company_ids:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"alerts-{company_id}")
        future = executor.submit(process_company_alerts, session_factory, company_id, slack_client, email_service)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.error("Timeout de alertas para company=%s tras %ss", company_id, timeout)
            summary.errors[company_id] = [f"timeout tras {timeout}s"]
            continue
        except Exception as e:
            logger.exception("Error procesando alertas de company=%s", company_id)
            summary.errors[company_id] = [str(e)]
            continue
        finally:
            executor.shutdown(wait=False)

        summary.companies_processed += 1
        summary.results.append(result)
        summary.total_alerts += result.alerts
        summary.total_recoveries += result.recoveries
        if result.alerts:
            summary.companies_with_alerts += 1
        if result.errors:
            summary.errors[company_id] = result.errors

    logger.info(
        "Job de alertas terminado: procesadas=%s con_alertas=%s alertas=%s errores=%s",
        summary.companies_processed, summary.companies_with_alerts, summary.total_alerts, len(summary.errors),
    )
    return summary
