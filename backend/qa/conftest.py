"""
Configuración global de pytest para los tests del ledger de inventario

BD SQLite en memoria (una conexión compartida) creada por test, con una
empresa sembrada, su ubicación por defecto y un usuario por rol.
"""
import os
import tempfile
import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Agregar el directorio raíz al path para imports
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

# Antes de importar la app: no tocar la BD ni los logs reales
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "stockledger-test-logs"))

from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.db import build_engine, init_db
from stockledger.domain.enums import LocationType, SalesChannel, UserRole
from stockledger.domain.models import Company, User, UserCompany
from stockledger.domain.models_inventory import Location
from stockledger.infrastructure.unit_of_work import UnitOfWork
from stockledger.application.services_bom import BOMService
from stockledger.application.services_components import ComponentService
from stockledger.application.services_locations import LocationService
from stockledger.application.services_skus import SKUService
from stockledger.application.services_transactions import TransactionEngine
from stockledger.security.auth import get_password_hash

TEST_PASSWORD = "clave-de-prueba"


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def seed_company(db, name: str) -> Company:
    """Empresa activa con su ubicación por defecto."""
    company = Company(name=name, active=True)
    db.add(company)
    db.flush()
    LocationService(UnitOfWork(db, company_id=company.id)).ensure_default_location()
    db.commit()
    return company


def seed_user(db, username: str, company: Company, role: UserRole, is_primary: bool = True) -> User:
    user = User(username=username, password_hash=get_password_hash(TEST_PASSWORD), full_name=username.title(), active=True)
    db.add(user)
    db.flush()
    db.add(UserCompany(user_id=user.id, company_id=company.id, role=role.value, is_primary=is_primary))
    db.commit()
    return user


@pytest.fixture
def company(db):
    return seed_company(db, "Acme Foods")


@pytest.fixture
def other_company(db):
    return seed_company(db, "Globex")


@pytest.fixture
def admin_user(db, company):
    return seed_user(db, "admin", company, UserRole.ADMIN)


@pytest.fixture
def ops_user(db, company):
    return seed_user(db, "ops", company, UserRole.OPS)


@pytest.fixture
def viewer_user(db, company):
    return seed_user(db, "viewer", company, UserRole.VIEWER)


@pytest.fixture
def uow(db, company):
    return UnitOfWork(db, company_id=company.id)


@pytest.fixture
def default_location(db, company):
    return db.query(Location).filter(Location.company_id == company.id, Location.is_default == True).one()


@pytest.fixture
def second_location(uow):
    location = LocationService(uow).create_location("3PL Norte", type=LocationType.THREEPL.value)
    uow.commit()
    return location


@pytest.fixture
def fg_location(uow):
    location = LocationService(uow).create_location("Producto Terminado", type=LocationType.FINISHED_GOODS.value)
    uow.commit()
    return location


@pytest.fixture
def engine_tx(uow, admin_user):
    """Motor de transacciones de la empresa de prueba."""
    return TransactionEngine(uow, user_id=admin_user.id)


@pytest.fixture
def make_component(uow):
    counter = {"n": 0}

    def factory(**fields):
        counter["n"] += 1
        data = {
            "name": f"Componente {counter['n']}",
            "sku_code": f"COMP-{counter['n']:03d}",
            "cost_per_unit": Decimal("1.00"),
        }
        data.update(fields)
        component = ComponentService(uow).create_component(**data)
        uow.commit()
        return component

    return factory


@pytest.fixture
def make_sku(uow):
    """Crea un SKU con un BOM activo: lines = [(component, cantidad_por_unidad), ...]."""
    counter = {"n": 0}

    def factory(lines=(), activate=True, **fields):
        counter["n"] += 1
        data = {
            "name": f"Producto {counter['n']}",
            "internal_code": f"SKU-{counter['n']:03d}",
            "sales_channel": SalesChannel.GENERIC.value,
        }
        data.update(fields)
        sku = SKUService(uow).create_sku(**data)
        if lines:
            BOMService(uow).create_version(
                sku.id,
                "v1",
                [{"component_id": c.id, "quantity_per_unit": Decimal(str(q))} for c, q in lines],
                activate=activate,
            )
        uow.commit()
        return sku

    return factory


@pytest.fixture
def receive(engine_tx, uow):
    """Recepción confirmada (commit) de un componente."""

    def factory(component, quantity, **kwargs):
        txn = engine_tx.receipt(component.id, Decimal(str(quantity)), **kwargs)
        uow.commit()
        return txn

    return factory
