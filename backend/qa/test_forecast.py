"""
Tests de Clasificación de Reorden, Forecast y Configuración por Empresa
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from stockledger.application.errors import ValidationError
from stockledger.application.services_components import ComponentService
from stockledger.application.services_forecast import (
    ForecastService, average_daily_consumption, reorder_recommendation, reorder_status, runout,
)
from stockledger.application.services_settings import get_company_settings, update_company_settings
from stockledger.domain.company_settings import CompanySettings, CompanySettingsUpdate, merge_company_settings
from stockledger.domain.enums import ReorderStatus

TODAY = date.today()


class TestEstadoReorden:
    """ok / warning / critical"""

    @pytest.mark.parametrize("on_hand, reorder_point, expected", [
        (0, 0, ReorderStatus.OK),
        (-5, 0, ReorderStatus.OK),
        (10, 10, ReorderStatus.CRITICAL),
        (3, 10, ReorderStatus.CRITICAL),
        (15, 10, ReorderStatus.WARNING),
        (Decimal("15.01"), 10, ReorderStatus.OK),
    ])
    def test_umbrales(self, on_hand, reorder_point, expected):
        assert reorder_status(on_hand, reorder_point, 1.5) == expected

    def test_multiplicador_configurable(self):
        assert reorder_status(19, 10, 2.0) == ReorderStatus.WARNING
        assert reorder_status(19, 10, 1.5) == ReorderStatus.OK

    def test_listado_filtra_por_estado(self, uow, make_component, receive):
        critical = make_component(reorder_point=10)
        warning = make_component(reorder_point=10)
        ok = make_component(reorder_point=10)
        receive(critical, 5)
        receive(warning, 12)
        receive(ok, 50)

        rows, total = ComponentService(uow).list_components(reorder_status_filter="critical")
        assert total == 1
        assert rows[0].component.id == critical.id
        assert rows[0].quantity_on_hand == Decimal("5")

        rows, total = ComponentService(uow).list_components(reorder_status_filter="warning")
        assert [r.component.id for r in rows] == [warning.id]

    def test_estado_invalido(self, uow):
        with pytest.raises(ValidationError):
            ComponentService(uow).list_components(reorder_status_filter="bajo")


class TestCalculosForecast:
    """Funciones puras de quiebre y recomendación"""

    def test_sin_consumo(self):
        assert runout(Decimal("10"), Decimal("0"), TODAY) == (None, None)
        assert reorder_recommendation(Decimal("0"), 5, 7, None, TODAY) == (None, None)

    def test_quiebre_redondea_hacia_abajo(self):
        days, when = runout(Decimal("10"), Decimal("3"), TODAY)
        assert days == 3
        assert when == TODAY + timedelta(days=3)

    def test_sin_stock_quiebra_hoy(self):
        assert runout(Decimal("-2"), Decimal("1"), TODAY) == (0, TODAY)

    def test_recomendacion(self):
        qty, when = reorder_recommendation(Decimal("1.5"), 5, 7, TODAY + timedelta(days=70), TODAY)
        assert qty == 18
        assert when == TODAY + timedelta(days=58)

    def test_fecha_de_pedido_nunca_antes_de_hoy(self):
        _, when = reorder_recommendation(Decimal("1"), 10, 7, TODAY + timedelta(days=3), TODAY)
        assert when == TODAY


class TestForecastService:
    """Consumo promedio desde el ledger"""

    @pytest.fixture
    def consumed(self, uow, engine_tx, make_component, make_sku, receive):
        component = make_component(lead_time_days=5, reorder_point=20)
        receive(component, 100, date=TODAY - timedelta(days=20))
        sku = make_sku(lines=[(component, 1)])
        engine_tx.build(sku.id, Decimal("30"), date=TODAY - timedelta(days=5))
        engine_tx.adjustment(component.id, Decimal("-15"), reason="Merma", date=TODAY - timedelta(days=2))
        uow.commit()
        return component

    def test_consumo_excluye_tipos_configurados(self, db, consumed):
        assert average_daily_consumption(db, consumed.id, 30, today=TODAY) == Decimal("1")
        assert average_daily_consumption(db, consumed.id, 30, excluded_types=[], today=TODAY) == Decimal("1.5")

    def test_consumo_fuera_de_ventana(self, db, consumed):
        assert average_daily_consumption(db, consumed.id, 3, today=TODAY) == Decimal("0")

    def test_ventana_cubre_exactamente_los_dias_pedidos(self, db, consumed):
        """Con lookback 5 la ventana es hoy-4..hoy: el build de hace 5 días queda fuera"""
        assert average_daily_consumption(db, consumed.id, 5, excluded_types=[], today=TODAY) == Decimal("3")
        assert average_daily_consumption(db, consumed.id, 6, excluded_types=[], today=TODAY) == Decimal("7.5")

    def test_forecast_de_componente(self, uow, consumed):
        forecast = ForecastService(uow).component_forecast(consumed.id, today=TODAY)
        assert forecast.quantity_on_hand == Decimal("55")
        assert forecast.average_daily_consumption == Decimal("1")
        assert forecast.days_until_runout == 55
        assert forecast.runout_date == TODAY + timedelta(days=55)
        assert forecast.recommended_reorder_qty == 12
        assert forecast.recommended_reorder_date == TODAY + timedelta(days=43)
        assert forecast.reorder_status == ReorderStatus.OK

    def test_orden_por_quiebre(self, uow, consumed, make_component):
        idle = make_component(name="Sin uso")
        forecasts = ForecastService(uow).component_forecasts(today=TODAY)
        assert [f.component_id for f in forecasts] == [consumed.id, idle.id]
        assert forecasts[1].days_until_runout is None


class TestConfiguracionEmpresa:
    """Combinación con defaults y validación de la configuración"""

    def test_defaults(self, db, company):
        settings = get_company_settings(db, company.id)
        assert settings == CompanySettings()
        assert settings.forecast_excluded_transaction_types == ["initial", "adjustment"]

    def test_blob_invalido_cae_a_defaults(self):
        assert merge_company_settings({"reorder_warning_multiplier": "no-numero"}) == CompanySettings()

    def test_claves_desconocidas_se_ignoran(self):
        settings = merge_company_settings({"expiry_warning_days": 10, "legacy": True})
        assert settings.expiry_warning_days == 10

    def test_actualizacion_parcial(self, db, uow, company):
        update_company_settings(uow, CompanySettingsUpdate(expiry_warning_days=45))
        uow.commit()
        settings = get_company_settings(db, company.id)
        assert settings.expiry_warning_days == 45
        assert settings.reorder_warning_multiplier == 1.5

    def test_actualizacion_invalida_no_se_guarda(self, db, uow, company):
        with pytest.raises(ValidationError) as exc:
            update_company_settings(uow, CompanySettingsUpdate(forecast_excluded_transaction_types=["build"]))
        uow.rollback()
        assert exc.value.details[0]["field"] == "forecast_excluded_transaction_types"
        assert get_company_settings(db, company.id) == CompanySettings()
