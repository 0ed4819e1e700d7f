"""
Modelos de Alertas de Stock Bajo
================================

- AlertConfig: canales de notificación por empresa (Slack, email)
- ComponentAlertState: último estado de reorden visto por componente,
  usado para detectar transiciones entre corridas del job
"""
from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import List
from ..db import Base
from .enums import AlertMode, ReorderStatus


class AlertConfig(Base):
    __tablename__ = "alert_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), unique=True, index=True)
    slack_webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    email_addresses: Mapped[List[str] | None] = mapped_column(JSON, nullable=True)
    enable_slack: Mapped[bool] = mapped_column(Boolean, default=False)
    enable_email: Mapped[bool] = mapped_column(Boolean, default=False)
    alert_mode: Mapped[str] = mapped_column(String(30), default=AlertMode.DAILY_DIGEST.value)
    last_digest_sent: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)


class ComponentAlertState(Base):
    __tablename__ = "component_alert_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    component_id: Mapped[int] = mapped_column(ForeignKey("components.id"), unique=True, index=True)
    last_status: Mapped[str] = mapped_column(String(20), default=ReorderStatus.OK.value)
    last_alert_sent: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)
