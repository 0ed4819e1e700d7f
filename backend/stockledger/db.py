import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings


def build_engine(url: str, isolation_level: str | None = None, **kwargs):
    """Crea un engine; el nivel de aislamiento solo se pasa si está configurado."""
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=False, future=True, **kwargs)


if settings.database_url.startswith("sqlite:///./data"):
    os.makedirs("./data", exist_ok=True)

engine = build_engine(settings.database_url, settings.database_isolation_level)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def _import_all_models():
    """Importa todos los modelos para que Base.metadata los registre."""
    from .domain import models  # noqa: F401 - Company, Brand, User, UserCompany
    from .domain import models_inventory  # noqa: F401 - Component, Location, Lot, Transaction, etc.
    from .domain import models_bom  # noqa: F401 - SKU, BOMVersion, BOMLine
    from .domain import models_alerts  # noqa: F401 - AlertConfig, ComponentAlertState


def init_db(bind=None):
    """Crear tablas si no existen (arranque normal)."""
    _import_all_models()
    Base.metadata.create_all(bind=bind or engine)
