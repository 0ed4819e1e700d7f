"""
Tests de API - Autenticación, health y empresa activa
"""
TEST_PASSWORD = "clave-de-prueba"


class TestHealthAPI:
    """Tests de endpoints de health"""

    def test_health_ready(self, client):
        """GET /health/ready debe retornar status ok"""
        r = client.get("/health/ready")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}


class TestAuthAPI:
    """Tests de endpoints de autenticación"""

    def test_login_y_me(self, client, admin_user, company):
        r = client.post("/auth/login", data={"username": "admin", "password": TEST_PASSWORD})
        assert r.status_code == 200
        token = r.json()["access_token"]
        assert r.json()["token_type"] == "bearer"

        r = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 200
        data = r.json()
        assert data["username"] == "admin"
        assert data["company_id"] == company.id
        assert data["company_name"] == "Acme Foods"
        assert data["role"] == "admin"
        assert "settings:update" in data["permissions"]

    def test_login_sin_credenciales(self, client):
        """POST /auth/login sin cuerpo: error de validación con formato uniforme"""
        r = client.post("/auth/login")
        assert r.status_code == 400
        assert r.json()["error"] == "ValidationError"

    def test_login_credenciales_invalidas(self, client, admin_user):
        r = client.post("/auth/login", data={"username": "admin", "password": "incorrecta"})
        assert r.status_code == 401

    def test_login_usuario_inexistente(self, client):
        r = client.post("/auth/login", data={"username": "usuario_inexistente_xyz", "password": "x"})
        assert r.status_code == 401

    def test_me_sin_token(self, client):
        r = client.get("/auth/me")
        assert r.status_code == 401

    def test_me_con_token_invalido(self, client):
        r = client.get("/auth/me", headers={"Authorization": "Bearer token_invalido"})
        assert r.status_code == 401

    def test_permisos_de_viewer(self, client, viewer_headers):
        data = client.get("/auth/me", headers=viewer_headers).json()
        assert data["role"] == "viewer"
        assert "transactions:create" not in data["permissions"]


class TestEmpresaActiva:
    """Cabecera X-Company-Id"""

    def test_empresa_ajena_es_not_found(self, client, admin_headers, other_company):
        headers = {**admin_headers, "X-Company-Id": str(other_company.id)}
        r = client.get("/auth/me", headers=headers)
        assert r.status_code == 404
        assert r.json()["error"] == "NotFound"

    def test_cabecera_invalida(self, client, admin_headers):
        r = client.get("/auth/me", headers={**admin_headers, "X-Company-Id": "abc"})
        assert r.status_code == 400
