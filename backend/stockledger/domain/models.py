from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, UniqueConstraint, JSON
from datetime import datetime
from sqlalchemy.orm import relationship, Mapped, mapped_column
from typing import Dict, Any
from ..db import Base
from .enums import UserRole


class Company(Base):
    __tablename__ = "companies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    # Configuración por empresa; se lee siempre a través de domain.company_settings
    settings: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    brands = relationship("Brand", back_populates="company")
    memberships = relationship("UserCompany", back_populates="company")


class Brand(Base):
    __tablename__ = "brands"
    __table_args__ = (UniqueConstraint("company_id", "name", name="uq_brand_company_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    company = relationship("Company", back_populates="brands")


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(200))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    memberships = relationship("UserCompany", back_populates="user", cascade="all, delete-orphan")


class UserCompany(Base):
    """Pertenencia de un usuario a una empresa, con rol por empresa."""
    __tablename__ = "user_companies"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.VIEWER.value)  # admin | ops | viewer
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)

    user = relationship("User", back_populates="memberships")
    company = relationship("Company", back_populates="memberships")
