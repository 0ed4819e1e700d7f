"""
Fixtures para tests de integración API.
Usa TestClient de FastAPI contra la app real, con la sesión de BD del test
inyectada en get_db (SQLite en memoria, ver qa/conftest.py).
"""
import pytest
from fastapi.testclient import TestClient

from stockledger.dependencies import get_db, get_session_factory
from stockledger.main import app
from stockledger.domain.enums import UserRole
from stockledger.domain.models import User, UserCompany
from stockledger.security.auth import create_access_token, get_password_hash


@pytest.fixture
def client(db, session_factory):
    """Cliente HTTP sin autenticación."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user, company_id=None):
    headers = {"Authorization": f"Bearer {create_access_token({'sub': user.username})}"}
    if company_id is not None:
        headers["X-Company-Id"] = str(company_id)
    return headers


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def ops_headers(ops_user):
    return auth_headers(ops_user)


@pytest.fixture
def viewer_headers(viewer_user):
    return auth_headers(viewer_user)


@pytest.fixture
def outsider_headers(db, other_company):
    """Administrador de otra empresa, sin membresía en la empresa de prueba."""
    user = User(username="externo", password_hash=get_password_hash("externo"), full_name="Externo", active=True)
    db.add(user)
    db.flush()
    db.add(UserCompany(user_id=user.id, company_id=other_company.id, role=UserRole.ADMIN.value, is_primary=True))
    db.commit()
    return auth_headers(user)
