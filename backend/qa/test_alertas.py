"""
Tests de Alertas de Stock Bajo

Cubre:
- Transiciones que alertan (ok->warning, ok->critical, warning->critical)
- Recuperaciones y ausencia de alertas repetidas
- Validación de la configuración de canales
- Envío por Slack (por transición / resumen diario) y email
- Job batch: timeout o error de una empresa no detiene a las demás
"""
import threading
import httpx
import pytest
from decimal import Decimal

from stockledger.application import services_alerts
from stockledger.application.errors import ValidationError
from stockledger.application.services_alerts import (
    AlertService, CompanyAlertResult, run_all_company_alerts,
)
from stockledger.domain.enums import AlertMode
from stockledger.domain.models_alerts import AlertConfig, ComponentAlertState
from stockledger.infrastructure.slack import (
    SlackClient, SlackWebhookError, format_daily_digest, is_valid_slack_webhook_url,
)
from stockledger.infrastructure.unit_of_work import UnitOfWork

WEBHOOK = "https://hooks.slack.com/services/T000/B000/abcXYZ123"


class FakeSlack(SlackClient):
    def __init__(self, fail: bool = False):
        super().__init__()
        self.sent = []
        self.fail = fail

    def send(self, webhook_url, message):
        if self.fail:
            raise SlackWebhookError("Slack respondió 500", status_code=500)
        self.sent.append((webhook_url, message))


class FakeEmail:
    def __init__(self):
        self.sent = []

    def send_low_stock_alerts(self, to_emails, alerts, base_url, company_name=None):
        self.sent.append((to_emails, alerts))
        return True


@pytest.fixture
def slack():
    return FakeSlack()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def alerts(uow, slack, email):
    return AlertService(uow, slack_client=slack, email_service=email)


class TestTransiciones:
    """Evaluación contra el último estado guardado"""

    def test_primera_corrida_alerta_criticos(self, uow, alerts, make_component, receive):
        low = make_component(name="Botella", reorder_point=10)
        make_component(name="Sin control", reorder_point=0)
        receive(low, 5)

        evaluation = alerts.evaluate_low_stock_alerts()
        uow.commit()

        assert evaluation.evaluated == 1
        assert [(a.component_id, a.status) for a in evaluation.alerts] == [(low.id, "critical")]

    def test_sin_cambios_no_repite(self, uow, alerts, make_component, receive):
        low = make_component(reorder_point=10)
        receive(low, 5)
        alerts.evaluate_low_stock_alerts()
        uow.commit()

        again = alerts.evaluate_low_stock_alerts()
        assert again.alerts == []

    def test_mejora_parcial_no_alerta_y_recuperacion_cuenta(self, db, uow, alerts, make_component, receive):
        component = make_component(reorder_point=10)
        receive(component, 5)
        alerts.evaluate_low_stock_alerts()
        uow.commit()

        receive(component, 7)  # 12 -> warning
        evaluation = alerts.evaluate_low_stock_alerts()
        uow.commit()
        assert evaluation.alerts == []

        receive(component, 100)  # ok
        evaluation = alerts.evaluate_low_stock_alerts()
        uow.commit()
        assert evaluation.recoveries == 1
        state = db.query(ComponentAlertState).filter(ComponentAlertState.component_id == component.id).one()
        assert state.last_status == "ok"

    def test_warning_a_critical_alerta(self, uow, alerts, engine_tx, make_component, receive):
        component = make_component(reorder_point=10)
        receive(component, 12)
        first = alerts.evaluate_low_stock_alerts()
        uow.commit()
        assert [a.status for a in first.alerts] == ["warning"]

        engine_tx.adjustment(component.id, Decimal("-4"), reason="Merma")
        uow.commit()
        second = alerts.evaluate_low_stock_alerts()
        assert [a.status for a in second.alerts] == ["critical"]


class TestConfiguracion:
    """upsert_config"""

    def test_configuracion_valida(self, uow, alerts):
        config = alerts.upsert_config(slack_webhook_url=WEBHOOK, enable_slack=True, email_addresses=["ops@acme.com"])
        uow.commit()
        assert config.enable_slack is True
        assert config.enable_email is False
        assert config.alert_mode == AlertMode.DAILY_DIGEST.value

    def test_webhook_invalido(self, alerts):
        with pytest.raises(ValidationError) as exc:
            alerts.upsert_config(slack_webhook_url="https://example.com/hook")
        assert exc.value.details[0]["field"] == "slack_webhook_url"

    def test_habilitar_canal_sin_destino(self, alerts):
        with pytest.raises(ValidationError) as exc:
            alerts.upsert_config(enable_slack=True, enable_email=True)
        fields = {d["field"] for d in exc.value.details}
        assert fields == {"slack_webhook_url", "email_addresses"}

    def test_email_invalido(self, alerts):
        with pytest.raises(ValidationError):
            alerts.upsert_config(email_addresses=["no-es-email"])


class TestEnvio:
    """deliver()"""

    @pytest.fixture
    def two_critical(self, make_component, receive):
        a = make_component(name="A", reorder_point=10)
        b = make_component(name="B", reorder_point=10)
        receive(a, 1)
        receive(b, 2)
        return a, b

    def test_resumen_diario(self, uow, alerts, slack, two_critical):
        config = alerts.upsert_config(slack_webhook_url=WEBHOOK, enable_slack=True)
        evaluation = alerts.evaluate_low_stock_alerts()
        delivery = alerts.deliver(evaluation, config)

        assert delivery.slack_sent == 1
        assert len(slack.sent) == 1
        assert "2 critical" in slack.sent[0][1]["text"]
        assert config.last_digest_sent is not None

    def test_por_transicion(self, uow, alerts, slack, two_critical):
        config = alerts.upsert_config(
            slack_webhook_url=WEBHOOK, enable_slack=True, alert_mode=AlertMode.PER_TRANSITION.value,
        )
        delivery = alerts.deliver(alerts.evaluate_low_stock_alerts(), config)
        assert delivery.slack_sent == 2
        assert config.last_digest_sent is None

    def test_email(self, uow, alerts, slack, email, two_critical):
        config = alerts.upsert_config(email_addresses=["ops@acme.com"], enable_email=True)
        delivery = alerts.deliver(alerts.evaluate_low_stock_alerts(), config)
        assert delivery.emails_sent == 1
        assert email.sent[0][0] == ["ops@acme.com"]
        assert slack.sent == []

    def test_error_de_slack_se_acumula(self, uow, email, two_critical):
        service = AlertService(uow, slack_client=FakeSlack(fail=True), email_service=email)
        config = service.upsert_config(slack_webhook_url=WEBHOOK, enable_slack=True)
        delivery = service.deliver(service.evaluate_low_stock_alerts(), config)
        assert delivery.slack_sent == 0
        assert delivery.errors and delivery.errors[0].startswith("slack:")

    def test_alerta_no_entregada_se_reintenta(self, db, uow, email, two_critical):
        a, _ = two_critical
        failing = AlertService(uow, slack_client=FakeSlack(fail=True), email_service=email)
        config = failing.upsert_config(slack_webhook_url=WEBHOOK, enable_slack=True)
        failing.deliver(failing.evaluate_low_stock_alerts(), config)
        uow.commit()

        state = db.query(ComponentAlertState).filter(ComponentAlertState.component_id == a.id).one()
        assert state.last_status == "ok"
        assert state.last_alert_sent is None
        assert config.last_digest_sent is None

        slack = FakeSlack()
        working = AlertService(uow, slack_client=slack, email_service=email)
        retry = working.evaluate_low_stock_alerts()
        assert len(retry.alerts) == 2
        working.deliver(retry, config)
        uow.commit()
        assert len(slack.sent) == 1
        assert state.last_status == "critical"
        assert state.last_alert_sent is not None
        assert working.evaluate_low_stock_alerts().alerts == []

    def test_email_cubre_lo_que_slack_no_entrego(self, db, uow, email, two_critical):
        service = AlertService(uow, slack_client=FakeSlack(fail=True), email_service=email)
        config = service.upsert_config(
            slack_webhook_url=WEBHOOK, enable_slack=True, email_addresses=["ops@acme.com"], enable_email=True,
        )
        delivery = service.deliver(service.evaluate_low_stock_alerts(), config)
        uow.commit()
        assert delivery.emails_sent == 1
        assert {s.last_status for s in db.query(ComponentAlertState).all()} == {"critical"}

    def test_mensaje_de_prueba_sin_webhook(self, alerts):
        with pytest.raises(ValidationError):
            alerts.send_test_message()


class TestSlackClient:
    """Cliente HTTP del webhook"""

    def test_envio_exitoso(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="ok")

        SlackClient(transport=httpx.MockTransport(handler)).send(WEBHOOK, {"text": "hola"})
        assert seen[0].url == WEBHOOK
        assert b"hola" in seen[0].content

    def test_respuesta_de_error(self):
        client = SlackClient(transport=httpx.MockTransport(lambda request: httpx.Response(404, text="no_service")))
        with pytest.raises(SlackWebhookError) as exc:
            client.send(WEBHOOK, {"text": "hola"})
        assert exc.value.status_code == 404

    def test_url_invalida(self):
        assert not is_valid_slack_webhook_url("http://hooks.slack.com/services/T/B/x")
        with pytest.raises(SlackWebhookError):
            SlackClient().send("https://example.com", {"text": "x"})

    def test_resumen_limita_lineas(self):
        from stockledger.infrastructure.slack import LowStockAlert
        items = [LowStockAlert(i, f"C{i}", f"S{i}", "critical", 0, 10, 1) for i in range(12)]
        digest = format_daily_digest(items, "http://app", "Acme")
        assert "...and 2 more" in str(digest["blocks"])


class TestJobBatch:
    """run_all_company_alerts"""

    def _enable(self, db, company_id):
        db.add(AlertConfig(company_id=company_id, slack_webhook_url=WEBHOOK, enable_slack=True,
                           enable_email=False, alert_mode=AlertMode.DAILY_DIGEST.value))
        db.commit()

    def test_procesa_empresas_habilitadas(self, db, session_factory, company, other_company, make_component, receive, slack):
        self._enable(db, company.id)
        low = make_component(reorder_point=10)
        receive(low, 1)

        summary = run_all_company_alerts(session_factory=session_factory, timeout_seconds=10, slack_client=slack)

        assert summary.companies_processed == 1
        assert summary.total_alerts == 1
        assert summary.companies_with_alerts == 1
        assert summary.errors == {}
        assert len(slack.sent) == 1
        fresh = session_factory()
        try:
            state = fresh.query(ComponentAlertState).filter(ComponentAlertState.component_id == low.id).one()
            assert state.last_status == "critical"
        finally:
            fresh.close()

    def test_timeout_de_una_empresa_no_detiene_el_job(self, db, session_factory, company, other_company, monkeypatch):
        self._enable(db, company.id)
        self._enable(db, other_company.id)
        slow_id, fast_id = company.id, other_company.id
        release = threading.Event()

        def fake_process(session_factory, company_id, slack_client=None, email_service=None):
            if company_id == slow_id:
                release.wait(5)
                return CompanyAlertResult(company_id=company_id)
            return CompanyAlertResult(company_id=company_id, alerts=2)

        monkeypatch.setattr(services_alerts, "process_company_alerts", fake_process)
        try:
            summary = run_all_company_alerts(session_factory=session_factory, timeout_seconds=0.2)
        finally:
            release.set()

        assert summary.companies_processed == 1
        assert summary.total_alerts == 2
        assert "timeout" in summary.errors[slow_id][0]
        assert fast_id not in summary.errors

    def test_error_de_una_empresa_se_registra(self, db, session_factory, company, other_company, monkeypatch):
        self._enable(db, company.id)
        self._enable(db, other_company.id)
        failing_id = company.id

        def fake_process(session_factory, company_id, slack_client=None, email_service=None):
            if company_id == failing_id:
                raise RuntimeError("BD caída")
            return CompanyAlertResult(company_id=company_id, recoveries=1)

        monkeypatch.setattr(services_alerts, "process_company_alerts", fake_process)
        summary = run_all_company_alerts(session_factory=session_factory, timeout_seconds=5)

        assert summary.errors[failing_id] == ["BD caída"]
        assert summary.companies_processed == 1
        assert summary.total_recoveries == 1

    def test_empresas_sin_canales_no_se_procesan(self, db, session_factory, company, monkeypatch):
        calls = []
        monkeypatch.setattr(services_alerts, "process_company_alerts", lambda *args, **kwargs: calls.append(args))
        summary = run_all_company_alerts(session_factory=session_factory)
        assert calls == []
        assert summary.companies_processed == 0
