"""
Tests de API - Componentes, SKUs/BOM, transacciones y CSV

Ejercitan los routers completos: permisos por rol, formato uniforme de
errores y serialización de Decimal.
"""
import io
from decimal import Decimal

import pytest
from openpyxl import Workbook, load_workbook

from stockledger.config import settings
from stockledger.domain.models_bom import BOMVersion


class TestComponentesAPI:

    def test_crear_y_obtener(self, client, ops_headers):
        r = client.post(
            "/components",
            json={"name": "Botella 500ml", "sku_code": "BOT-500", "cost_per_unit": "2.50", "reorder_point": 10},
            headers=ops_headers,
        )
        assert r.status_code == 201
        created = r.json()
        assert Decimal(created["cost_per_unit"]) == Decimal("2.50")
        assert Decimal(created["quantity_on_hand"]) == 0
        assert created["reorder_status"] == "critical"

        r = client.get(f"/components/{created['id']}", headers=ops_headers)
        assert r.status_code == 200
        assert r.json()["sku_code"] == "BOT-500"

    def test_codigo_duplicado_es_conflicto(self, client, ops_headers, make_component):
        make_component(sku_code="DUP")
        r = client.post("/components", json={"name": "Otro", "sku_code": "DUP"}, headers=ops_headers)
        assert r.status_code == 409
        assert r.json()["error"] == "Conflict"

    def test_payload_invalido(self, client, ops_headers):
        r = client.post("/components", json={"name": "", "sku_code": "X", "cost_per_unit": "-1"}, headers=ops_headers)
        assert r.status_code == 400
        fields = {d["field"] for d in r.json()["details"]}
        assert {"name", "cost_per_unit"} <= fields

    def test_filtros_y_paginacion(self, client, viewer_headers, make_component, receive):
        low = make_component(name="Tapa", reorder_point=10)
        ok = make_component(name="Etiqueta", reorder_point=10)
        receive(low, 3)
        receive(ok, 50)

        r = client.get("/components", params={"reorder_status": "critical"}, headers=viewer_headers)
        assert r.status_code == 200
        page = r.json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == low.id

        r = client.get("/components", params={"page": 2, "page_size": 1}, headers=viewer_headers)
        page = r.json()
        assert page["total"] == 2
        assert page["page"] == 2
        assert len(page["items"]) == 1

    def test_viewer_no_puede_crear(self, client, viewer_headers):
        r = client.post("/components", json={"name": "X", "sku_code": "X"}, headers=viewer_headers)
        assert r.status_code == 403
        assert r.json()["error"] == "Forbidden"

    def test_componente_de_otra_empresa(self, client, ops_headers, outsider_headers):
        r = client.post("/components", json={"name": "Ajeno", "sku_code": "AJ-1"}, headers=outsider_headers)
        assert r.status_code == 201
        r = client.get(f"/components/{r.json()['id']}", headers=ops_headers)
        assert r.status_code == 404


class TestSKUsYBOMAPI:

    @pytest.fixture
    def sku(self, make_component, make_sku):
        bottle = make_component(name="Botella", sku_code="BOT", cost_per_unit=Decimal("2"))
        return make_sku(lines=[(bottle, 2)], activate=False, name="Jarabe", internal_code="JAR"), bottle

    def test_crear_version_y_activar(self, client, ops_headers, sku):
        product, bottle = sku
        r = client.post(
            f"/skus/{product.id}/bom-versions",
            json={"version_name": "v2", "lines": [{"component_id": bottle.id, "quantity_per_unit": "3"}]},
            headers=ops_headers,
        )
        assert r.status_code == 201
        version_id = r.json()["id"]

        r = client.post(f"/bom-versions/{version_id}/activate", headers=ops_headers)
        assert r.status_code == 200
        assert r.json()["is_active"] is True

        versions = client.get(f"/skus/{product.id}/bom-versions", headers=ops_headers).json()
        assert [v["is_active"] for v in versions if v["id"] != version_id] == [False]

    def test_activar_version_ajena(self, client, db, outsider_headers, sku):
        product, _ = sku
        version = db.query(BOMVersion).filter(BOMVersion.sku_id == product.id).one()
        r = client.post(f"/bom-versions/{version.id}/activate", headers=outsider_headers)
        assert r.status_code == 404

    def test_disponibilidad_de_lotes(self, client, ops_headers, make_component, make_sku, receive):
        bottle = make_component(name="Botella", sku_code="BOT")
        receive(bottle, 10, lot_number="L-1")
        product = make_sku(lines=[(bottle, 2)])

        r = client.get(f"/skus/{product.id}/lot-availability", params={"units": "3"}, headers=ops_headers)
        assert r.status_code == 200
        [line] = r.json()
        assert Decimal(line["quantity_required"]) == Decimal("6")
        assert line["is_sufficient"] is True
        assert line["selected_lots"][0]["lot_number"] == "L-1"

        r = client.get(f"/skus/{product.id}/lot-availability", params={"units": "0"}, headers=ops_headers)
        assert r.json() == []


class TestTransaccionesAPI:

    def test_recepcion(self, client, ops_headers, make_component):
        component = make_component()
        r = client.post(
            "/transactions/receipt",
            json={"component_id": component.id, "quantity": "25", "lot_number": "L-7", "supplier": "Vidrios SA"},
            headers=ops_headers,
        )
        assert r.status_code == 201
        data = r.json()
        assert data["type"] == "receipt"
        assert Decimal(data["lines"][0]["quantity_change"]) == Decimal("25")
        assert data["lines"][0]["lot_id"] is not None

    def test_build_con_faltantes(self, client, ops_headers, make_component, make_sku, receive):
        bottle = make_component(name="Botella", sku_code="BOT")
        receive(bottle, 3)
        product = make_sku(lines=[(bottle, 2)])

        r = client.post("/transactions/build", json={"sku_id": product.id, "units_to_build": "5"}, headers=ops_headers)
        assert r.status_code == 400
        body = r.json()
        assert body["error"] == "InsufficientInventory"
        [item] = body["insufficient_items"]
        assert item["component_id"] == bottle.id
        assert Decimal(item["required"]) == Decimal("10")
        assert Decimal(item["shortage"]) == Decimal("7")

        r = client.post(
            "/transactions/build",
            json={"sku_id": product.id, "units_to_build": "5", "allow_insufficient_inventory": True},
            headers=ops_headers,
        )
        assert r.status_code == 201
        assert r.json()["warning"]
        assert len(r.json()["insufficient_items"]) == 1

    def test_ajuste_requiere_un_solo_objetivo(self, client, ops_headers, make_component, make_sku):
        component = make_component()
        product = make_sku()
        r = client.post(
            "/transactions/adjustment",
            json={"component_id": component.id, "sku_id": product.id, "quantity": "-1", "reason": "Merma"},
            headers=ops_headers,
        )
        assert r.status_code == 400

    def test_listado(self, client, viewer_headers, make_component, receive):
        component = make_component()
        receive(component, 5)
        receive(component, 7)
        r = client.get("/transactions", headers=viewer_headers)
        assert r.status_code == 200
        assert r.json()["total"] == 2

    def test_viewer_no_registra_transacciones(self, client, viewer_headers, make_component):
        component = make_component()
        r = client.post("/transactions/receipt", json={"component_id": component.id, "quantity": "1"}, headers=viewer_headers)
        assert r.status_code == 403


class TestCSVAPI:

    def test_importar_componentes(self, client, ops_headers):
        content = "Name,SKU Code,Cost Per Unit\nTornillo,T-1,0.10\n,SIN-NOMBRE,1\n"
        r = client.post(
            "/import/components",
            files={"file": ("componentes.csv", content.encode("utf-8"), "text/csv")},
            headers=ops_headers,
        )
        assert r.status_code == 200
        data = r.json()
        assert data["successful"] == 1
        assert data["failed"] == 1

    def test_exportar(self, client, viewer_headers, make_component):
        make_component(sku_code="BOT")
        r = client.get("/export/components", headers=viewer_headers)
        assert r.status_code == 200
        assert r.headers["content-disposition"].startswith("attachment; filename=components-export-")
        assert "BOT" in r.text

    def test_exportacion_desconocida(self, client, viewer_headers):
        r = client.get("/export/facturas", headers=viewer_headers)
        assert r.status_code == 400
        r = client.get("/export/components", params={"format": "pdf"}, headers=viewer_headers)
        assert r.status_code == 400

    def test_exportar_excel(self, client, viewer_headers, make_component):
        make_component(sku_code="BOT")
        r = client.get("/export/components", params={"format": "xlsx"}, headers=viewer_headers)
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert r.headers["content-disposition"].endswith(".xlsx")
        ws = load_workbook(io.BytesIO(r.content)).active
        assert ws["C2"].value == "BOT"

    def test_importar_excel(self, client, ops_headers):
        wb = Workbook()
        wb.active.append(["Name", "SKU Code"])
        wb.active.append(["Tornillo", "T-1"])
        buffer = io.BytesIO()
        wb.save(buffer)
        r = client.post(
            "/import/components",
            files={"file": ("componentes.xlsx", buffer.getvalue(), "application/octet-stream")},
            headers=ops_headers,
        )
        assert r.status_code == 200
        assert r.json()["successful"] == 1


class TestCronAPI:

    def test_sin_secreto_configurado(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)
        assert client.post("/cron/alerts").status_code == 503

    def test_secreto_invalido(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3creto")
        r = client.post("/cron/alerts", headers={"X-Cron-Secret": "otro"})
        assert r.status_code == 401

    def test_ejecucion(self, client, company, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3creto")
        r = client.post("/cron/alerts", headers={"X-Cron-Secret": "s3creto"})
        assert r.status_code == 200
        assert r.json()["companies_processed"] == 0
        assert r.json()["errors"] == {}


class TestMarcasAPI:

    def test_crear_listar_y_desactivar(self, client, admin_headers, viewer_headers):
        r = client.post("/brands", json={"name": "Norte"}, headers=admin_headers)
        assert r.status_code == 201
        brand_id = r.json()["id"]

        page = client.get("/brands", headers=viewer_headers).json()
        assert page["total"] == 1
        assert page["items"][0]["name"] == "Norte"
        assert page["items"][0]["component_count"] == 0

        r = client.patch(f"/brands/{brand_id}", json={"active": False}, headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["active"] is False
        assert client.get("/brands", headers=viewer_headers).json()["total"] == 0

    def test_solo_admin_gestiona(self, client, ops_headers):
        r = client.post("/brands", json={"name": "Norte"}, headers=ops_headers)
        assert r.status_code == 403

    def test_nombre_duplicado(self, client, admin_headers):
        client.post("/brands", json={"name": "Norte"}, headers=admin_headers)
        r = client.post("/brands", json={"name": "Norte"}, headers=admin_headers)
        assert r.status_code == 409

    def test_marca_ajena_en_componente(self, client, admin_headers, ops_headers, outsider_headers):
        foreign_id = client.post("/brands", json={"name": "Globex"}, headers=outsider_headers).json()["id"]

        r = client.post("/components", json={"name": "Botella", "sku_code": "BOT", "brand_id": foreign_id}, headers=ops_headers)
        assert r.status_code == 404
        r = client.patch(f"/brands/{foreign_id}", json={"name": "Robada"}, headers=admin_headers)
        assert r.status_code == 404

    def test_importar_componente_con_marca(self, client, admin_headers, ops_headers):
        client.post("/brands", json={"name": "Norte"}, headers=admin_headers)
        content = "Name,SKU Code,Brand\nTornillo,T-1,Norte\nTuerca,T-2,Inexistente\n"
        r = client.post(
            "/import/components",
            files={"file": ("componentes.csv", content.encode("utf-8"), "text/csv")},
            headers=ops_headers,
        )
        assert r.json()["successful"] == 1
        page = client.get("/brands", headers=admin_headers).json()
        assert page["items"][0]["component_count"] == 1
