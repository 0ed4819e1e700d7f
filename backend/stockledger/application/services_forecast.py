"""
Clasificación de Reorden y Forecast
===================================

Estado de reorden (por componente):
- reorder_point == 0: no se controla -> ok
- en_mano <= reorder_point: critical
- en_mano <= reorder_point × multiplicador: warning
- resto: ok

Forecast:
- consumo diario = |Σ líneas negativas en la ventana| / días de ventana,
  excluyendo los tipos de transacción configurados
- días hasta quiebre = floor(en_mano / consumo diario)
- cantidad a pedir = ceil((lead time + días de seguridad) × consumo diario)
- fecha de pedido = fecha de quiebre - lead time - días de seguridad
  (nunca antes de hoy)
"""
import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..domain.enums import ReorderStatus
from ..domain.models_inventory import Component, Transaction, TransactionLine
from ..infrastructure.unit_of_work import UnitOfWork
from .services_ledger import ZERO, to_decimal, component_quantities
from .services_settings import get_company_settings


def reorder_status(on_hand, reorder_point, multiplier: float = 1.5) -> ReorderStatus:
    on_hand = to_decimal(on_hand)
    reorder_point = to_decimal(reorder_point)
    if reorder_point <= 0:
        return ReorderStatus.OK
    if on_hand <= reorder_point:
        return ReorderStatus.CRITICAL
    if on_hand <= reorder_point * Decimal(str(multiplier)):
        return ReorderStatus.WARNING
    return ReorderStatus.OK


def _consumption_query(db: Session, lookback_days: int, excluded_types: Sequence[str], today: Optional[date]):
    today = today or date.today()
    # Ventana de lookback_days días calendario que termina hoy
    start = today - timedelta(days=lookback_days - 1)
    query = (
        db.query(TransactionLine.component_id, func.sum(TransactionLine.quantity_change))
        .join(Transaction, Transaction.id == TransactionLine.transaction_id)
        .filter(
            TransactionLine.quantity_change < 0,
            Transaction.date >= start,
            Transaction.date <= today,
        )
    )
    excluded = [str(getattr(t, "value", t)) for t in excluded_types]
    if excluded:
        query = query.filter(Transaction.type.notin_(excluded))
    return query


def average_daily_consumptions(
    db: Session,
    component_ids: Iterable[int],
    lookback_days: int = 30,
    excluded_types: Sequence[str] = ("initial", "adjustment"),
    location_id: Optional[int] = None,
    today: Optional[date] = None,
) -> Dict[int, Decimal]:
    ids = list(component_ids)
    if not ids or lookback_days <= 0:
        return {cid: ZERO for cid in ids}
    query = _consumption_query(db, lookback_days, excluded_types, today).filter(TransactionLine.component_id.in_(ids))
    if location_id is not None:
        query = query.filter(TransactionLine.location_id == location_id)
    totals = {cid: abs(to_decimal(total)) for cid, total in query.group_by(TransactionLine.component_id).all()}
    days = Decimal(lookback_days)
    return {cid: totals.get(cid, ZERO) / days for cid in ids}


def average_daily_consumption(
    db: Session,
    component_id: int,
    lookback_days: int = 30,
    excluded_types: Sequence[str] = ("initial", "adjustment"),
    location_id: Optional[int] = None,
    today: Optional[date] = None,
) -> Decimal:
    return average_daily_consumptions(db, [component_id], lookback_days, excluded_types, location_id, today)[component_id]


def runout(on_hand, daily_consumption, today: Optional[date] = None) -> Tuple[Optional[int], Optional[date]]:
    """(días hasta quiebre, fecha de quiebre); (None, None) sin consumo."""
    today = today or date.today()
    on_hand = to_decimal(on_hand)
    daily = to_decimal(daily_consumption)
    if daily <= 0:
        return None, None
    if on_hand <= 0:
        return 0, today
    days = int((on_hand / daily).to_integral_value(rounding=ROUND_FLOOR))
    return days, today + timedelta(days=days)


def reorder_recommendation(
    daily_consumption,
    lead_time_days: int,
    safety_days: int,
    runout_date: Optional[date],
    today: Optional[date] = None,
) -> Tuple[Optional[int], Optional[date]]:
    """(cantidad sugerida, fecha sugerida de pedido); (None, None) sin consumo."""
    today = today or date.today()
    daily = to_decimal(daily_consumption)
    if daily <= 0:
        return None, None
    qty = int((Decimal(lead_time_days + safety_days) * daily).to_integral_value(rounding=ROUND_CEILING))
    order_date = None
    if runout_date is not None:
        order_date = max(today, runout_date - timedelta(days=lead_time_days + safety_days))
    return qty, order_date


@dataclass
class ComponentForecast:
    component_id: int
    component_name: str
    sku_code: str
    quantity_on_hand: Decimal
    average_daily_consumption: Decimal
    days_until_runout: Optional[int]
    runout_date: Optional[date]
    recommended_reorder_qty: Optional[int]
    recommended_reorder_date: Optional[date]
    lead_time_days: int
    reorder_point: int
    reorder_status: ReorderStatus


class ForecastService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def component_forecasts(
        self,
        component_ids: Optional[List[int]] = None,
        lookback_days: Optional[int] = None,
        safety_days: Optional[int] = None,
        excluded_types: Optional[Sequence[str]] = None,
        today: Optional[date] = None,
        include_inactive: bool = False,
    ) -> List[ComponentForecast]:
        """Forecast de los componentes activos; los parámetros omitidos salen de la configuración de la empresa."""
        settings = get_company_settings(self.uow.db, self.uow.company_id)
        lookback = lookback_days or settings.forecast_lookback_days
        safety = settings.forecast_safety_days if safety_days is None else safety_days
        excluded = settings.forecast_excluded_transaction_types if excluded_types is None else list(excluded_types)
        today = today or date.today()

        query = self.uow.tenant.query(Component)
        if not include_inactive:
            query = query.filter(Component.is_active == True)
        if component_ids is not None:
            query = query.filter(Component.id.in_(component_ids))
        components = query.order_by(Component.name).all()
        ids = [c.id for c in components]

        on_hand = component_quantities(self.uow.db, ids)
        daily = average_daily_consumptions(self.uow.db, ids, lookback, excluded, today=today)

        result = []
        for c in components:
            qty = on_hand.get(c.id, ZERO)
            rate = daily.get(c.id, ZERO)
            days, runout_date = runout(qty, rate, today)
            reorder_qty, reorder_date = reorder_recommendation(rate, c.lead_time_days or 0, safety, runout_date, today)
            result.append(ComponentForecast(
                component_id=c.id,
                component_name=c.name,
                sku_code=c.sku_code,
                quantity_on_hand=qty,
                average_daily_consumption=rate,
                days_until_runout=days,
                runout_date=runout_date,
                recommended_reorder_qty=reorder_qty,
                recommended_reorder_date=reorder_date,
                lead_time_days=c.lead_time_days or 0,
                reorder_point=c.reorder_point or 0,
                reorder_status=reorder_status(qty, c.reorder_point or 0, settings.reorder_warning_multiplier),
            ))
        # Los que se quiebran antes primero; sin consumo al final
        result.sort(key=lambda f: (f.days_until_runout is None, f.days_until_runout if f.days_until_runout is not None else math.inf))
        return result

    def component_forecast(self, component_id: int, **kwargs) -> ComponentForecast:
        self.uow.tenant.get(Component, component_id, "Componente")
        return self.component_forecasts(component_ids=[component_id], include_inactive=True, **kwargs)[0]
