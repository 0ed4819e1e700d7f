"""
Modelos del Dominio de Inventario
==================================

Entidades del ledger de inventario:
- Location (ubicación física o lógica: bodega, 3PL, FBA, producto terminado)
- Component (materia prima / insumo con costo y punto de reorden)
- Lot y LotBalance (lotes con vencimiento y saldo vigente)
- Transaction, TransactionLine y FinishedGoodsLine (ledger append-only)

La cantidad en mano NUNCA se guarda: es la suma de TransactionLine.quantity_change.
"""
from sqlalchemy import Integer, String, Boolean, ForeignKey, Numeric, Date, DateTime, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime, date as date_type
from decimal import Decimal
from ..db import Base
from .enums import LocationType


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("company_id", "name", name="uq_location_company_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[str] = mapped_column(String(30), default=LocationType.WAREHOUSE.value)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)


class Component(Base):
    __tablename__ = "components"
    __table_args__ = (UniqueConstraint("company_id", "sku_code", name="uq_component_company_sku"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    brand_id: Mapped[int | None] = mapped_column(ForeignKey("brands.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    sku_code: Mapped[str] = mapped_column(String(100))
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit_of_measure: Mapped[str] = mapped_column(String(30), default="each")
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0)  # Último costo conocido
    reorder_point: Mapped[int] = mapped_column(Integer, default=0)
    lead_time_days: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    lots = relationship("Lot", back_populates="component")


class Lot(Base):
    __tablename__ = "lots"
    __table_args__ = (UniqueConstraint("component_id", "lot_number", name="uq_lot_component_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    component_id: Mapped[int] = mapped_column(ForeignKey("components.id"), index=True)
    lot_number: Mapped[str] = mapped_column(String(100))
    received_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0)
    expiry_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    component = relationship("Component", back_populates="lots")
    balance = relationship("LotBalance", back_populates="lot", uselist=False, cascade="all, delete-orphan")


class LotBalance(Base):
    """Saldo vigente por lote; se actualiza en la misma transacción que las líneas."""
    __tablename__ = "lot_balances"

    lot_id: Mapped[int] = mapped_column(ForeignKey("lots.id"), primary_key=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    lot = relationship("Lot", back_populates="balance")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_company_date", "company_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    type: Mapped[str] = mapped_column(String(20), index=True)  # receipt, initial, build, transfer, adjustment, outbound
    date: Mapped[date_type] = mapped_column(Date)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id"), nullable=True)
    from_location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id"), nullable=True)
    to_location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id"), nullable=True)

    # Build / outbound
    sku_id: Mapped[int | None] = mapped_column(ForeignKey("skus.id"), nullable=True, index=True)
    bom_version_id: Mapped[int | None] = mapped_column(ForeignKey("bom_versions.id"), nullable=True)
    units_built: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    unit_bom_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)  # Snapshot al momento del build
    total_bom_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    sales_channel: Mapped[str | None] = mapped_column(String(30), nullable=True)

    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    lines = relationship("TransactionLine", back_populates="transaction", order_by="TransactionLine.id")
    finished_goods_lines = relationship("FinishedGoodsLine", back_populates="transaction", order_by="FinishedGoodsLine.id")


class TransactionLine(Base):
    """Línea append-only del ledger de componentes (positiva = entrada, negativa = salida)."""
    __tablename__ = "transaction_lines"
    __table_args__ = (Index("ix_transaction_lines_component_location", "component_id", "location_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), index=True)
    component_id: Mapped[int] = mapped_column(ForeignKey("components.id"), index=True)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id"), nullable=True)
    lot_id: Mapped[int | None] = mapped_column(ForeignKey("lots.id"), nullable=True, index=True)
    quantity_change: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    transaction = relationship("Transaction", back_populates="lines")
    component = relationship("Component")
    lot = relationship("Lot")


class FinishedGoodsLine(Base):
    """Línea append-only del ledger de producto terminado (SKU)."""
    __tablename__ = "finished_goods_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), index=True)
    sku_id: Mapped[int] = mapped_column(ForeignKey("skus.id"), index=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id"))
    quantity_change: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    transaction = relationship("Transaction", back_populates="finished_goods_lines")
