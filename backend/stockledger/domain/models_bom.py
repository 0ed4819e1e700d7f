"""
Modelos de SKU y BOM
====================

- SKU: producto vendible, construido a partir de componentes
- BOMVersion: receta versionada (draft -> active -> superseded)
- BOMLine: componente y cantidad por unidad

A lo sumo una versión activa por SKU, garantizado por índice único parcial.
"""
from sqlalchemy import Integer, String, Boolean, ForeignKey, Numeric, DateTime, Text, UniqueConstraint, Index, text
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime
from decimal import Decimal
from ..db import Base
from .enums import BOMState, SalesChannel


class SKU(Base):
    __tablename__ = "skus"
    __table_args__ = (UniqueConstraint("company_id", "internal_code", name="uq_sku_company_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    internal_code: Mapped[str] = mapped_column(String(100))
    sales_channel: Mapped[str] = mapped_column(String(30), default=SalesChannel.GENERIC.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    bom_versions = relationship("BOMVersion", back_populates="sku", order_by="BOMVersion.id")


class BOMVersion(Base):
    __tablename__ = "bom_versions"
    __table_args__ = (
        Index(
            "uq_bom_version_active_per_sku",
            "sku_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    sku_id: Mapped[int] = mapped_column(ForeignKey("skus.id"), index=True)
    version_name: Mapped[str] = mapped_column(String(100))
    state: Mapped[str] = mapped_column(String(20), default=BOMState.DRAFT.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    effective_start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    effective_end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    sku = relationship("SKU", back_populates="bom_versions")
    lines = relationship("BOMLine", back_populates="bom_version", cascade="all, delete-orphan", order_by="BOMLine.id")


class BOMLine(Base):
    __tablename__ = "bom_lines"
    __table_args__ = (UniqueConstraint("bom_version_id", "component_id", name="uq_bom_line_component"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bom_version_id: Mapped[int] = mapped_column(ForeignKey("bom_versions.id"), index=True)
    component_id: Mapped[int] = mapped_column(ForeignKey("components.id"), index=True)
    quantity_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    bom_version = relationship("BOMVersion", back_populates="lines")
    component = relationship("Component")
