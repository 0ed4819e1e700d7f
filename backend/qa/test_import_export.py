"""
Tests de Importación y Exportación CSV
"""
import csv
import io
import pytest
from openpyxl import Workbook, load_workbook
from datetime import date
from decimal import Decimal

from stockledger.application.errors import ValidationError
from stockledger.application.services_bom import get_active_bom_version
from stockledger.application.services_export import ExportService, export_filename
from stockledger.application.services_import import (
    ImportService, import_template, normalize_header, parse_csv, xlsx_to_csv,
)
from stockledger.application.services_ledger import current_quantity
from stockledger.domain.models_bom import SKU
from stockledger.domain.models_inventory import Component, Lot


def read_csv(content: str):
    return list(csv.DictReader(io.StringIO(content)))


class TestParseo:
    """Encabezados y filas"""

    def test_normaliza_encabezados(self):
        assert normalize_header("Lead Time (Days)") == "lead_time_days"
        assert normalize_header(" SKU Code ") == "sku_code"

    def test_ignora_comentarios_y_lineas_vacias(self):
        content = "\ufeffName,SKU Code\n# comentario\n\nTornillo,T-1\n"
        assert parse_csv(content) == [{"name": "Tornillo", "sku_code": "T-1"}]

    def test_campo_multilinea_entre_comillas(self):
        content = 'Name,SKU Code,Notes\nTornillo,T-1,"primera\n\n# no es comentario"\nTuerca,T-2,\n'
        assert parse_csv(content) == [
            {"name": "Tornillo", "sku_code": "T-1", "notes": "primera\n\n# no es comentario"},
            {"name": "Tuerca", "sku_code": "T-2", "notes": ""},
        ]

    def test_plantillas(self):
        rows = read_csv(import_template("components"))
        assert rows[0]["SKU Code"] == "COMP-001"
        with pytest.raises(ValidationError):
            import_template("desconocida")


class TestImportarComponentes:
    """Filas válidas se confirman aunque otras fallen"""

    def test_reporte_por_fila(self, db, uow, company, make_component):
        make_component(sku_code="EXISTE")
        content = (
            "Name,SKU Code,Cost Per Unit,Reorder Point,Lead Time (Days)\n"
            "Tornillo,T-1,0.10,100,7\n"
            ",SIN-NOMBRE,1,0,0\n"
            "Existente,EXISTE,1,0,0\n"
            "Tornillo bis,T-1,1,0,0\n"
            "Tuerca,T-2,-1,0,0\n"
        )
        result = ImportService(uow).import_components(content)

        assert result.total == 5
        assert result.successful == 1
        assert result.skipped == 2
        assert result.failed == 2
        by_row = {r.row_number: r for r in result.results}
        assert by_row[1].success and by_row[1].id is not None
        assert not by_row[2].success and not by_row[2].skipped
        assert by_row[3].skipped
        assert by_row[4].skipped
        assert not by_row[5].success

        created = db.query(Component).filter(Component.company_id == company.id, Component.sku_code == "T-1").one()
        assert created.lead_time_days == 7
        assert created.cost_per_unit == Decimal("0.10")


class TestImportarSKUs:

    def test_sku_con_bom(self, db, uow, company, make_component):
        make_component(sku_code="BOT", cost_per_unit=Decimal("2"))
        make_component(sku_code="TAP", cost_per_unit=Decimal("1"))
        content = (
            "Name,Internal Code,Sales Channel,BOM Component 1,BOM Qty 1,BOM Component 2,BOM Qty 2\n"
            "Jarabe,JAR-1,Amazon,BOT,2,TAP,1\n"
            "Malo,MAL-1,Ebay,,,,\n"
            "Huérfano,HUE-1,Generic,NOEXISTE,1,,\n"
            "Incompleto,INC-1,Generic,BOT,,,\n"
        )
        result = ImportService(uow).import_skus(content)

        assert result.successful == 1
        assert result.failed == 3
        sku = db.query(SKU).filter(SKU.internal_code == "JAR-1").one()
        assert sku.sales_channel == "Amazon"
        version = get_active_bom_version(db, company.id, sku.id)
        assert version is not None
        assert len(version.lines) == 2
        assert db.query(SKU).filter(SKU.internal_code == "HUE-1").first() is None


class TestImportarInventarioInicial:

    def test_cada_fila_es_una_transaccion(self, db, uow, admin_user, make_component, second_location):
        component = make_component(sku_code="BOT", cost_per_unit=Decimal("1"))
        content = (
            "Component SKU Code,Quantity,Cost Per Unit,Date,Location,Lot Number,Expiry Date\n"
            "BOT,100,1.50,2026-01-01,,L-1,2027-01-01\n"
            "BOT,20,,,3PL Norte,,\n"
            "NOEXISTE,5,,,,,\n"
            "BOT,0,,,,,\n"
        )
        result = ImportService(uow, user_id=admin_user.id).import_initial_inventory(content)

        assert result.successful == 2
        assert result.failed == 2
        assert current_quantity(db, component.id) == Decimal("120")
        assert current_quantity(db, component.id, second_location.id) == Decimal("20")
        lot = db.query(Lot).filter(Lot.lot_number == "L-1").one()
        assert lot.expiry_date == date(2027, 1, 1)
        db.refresh(component)
        assert component.cost_per_unit == Decimal("1.50")


class TestExportar:

    def test_componentes(self, uow, make_component, receive):
        component = make_component(name="Botella", sku_code="BOT", reorder_point=10)
        receive(component, 4)
        rows = read_csv(ExportService(uow).export("components"))
        assert len(rows) == 1
        assert rows[0]["SKU Code"] == "BOT"
        assert Decimal(rows[0]["Quantity On Hand"]) == Decimal("4")
        assert rows[0]["Reorder Status"] == "critical"
        assert rows[0]["Active"] == "Yes"

    def test_transacciones_una_fila_por_linea(self, uow, engine_tx, make_component, make_sku, receive):
        component = make_component(sku_code="BOT")
        receive(component, 10, lot_number="L-9", date=date(2026, 1, 5))
        sku = make_sku(lines=[(component, 2)], internal_code="JAR")
        engine_tx.build(sku.id, Decimal("2"), date=date(2026, 1, 6))
        uow.commit()

        rows = read_csv(ExportService(uow).export_transactions())
        assert [r["Type"] for r in rows] == ["build", "receipt"]
        build = rows[0]
        assert build["SKU Code"] == "JAR"
        assert build["Lot Number"] == "L-9"
        assert Decimal(build["Quantity Change"]) == Decimal("-4")
        assert build["Created By"] == "admin"

        rows = read_csv(ExportService(uow).export_transactions(date_from=date(2026, 1, 6)))
        assert [r["Type"] for r in rows] == ["build"]

    def test_nombre_de_archivo(self):
        assert export_filename("skus", date(2026, 3, 1)) == "skus-export-2026-03-01.csv"

    def test_excel(self, uow, make_component, receive):
        component = make_component(name="Botella", sku_code="BOT", reorder_point=10)
        receive(component, 4)
        ws = load_workbook(io.BytesIO(ExportService(uow).export_xlsx("components"))).active
        assert ws.title == "Components"
        assert ws["C1"].value == "SKU Code"
        assert ws["C2"].value == "BOT"
        assert ws["I2"].value == 4
        assert ws.max_row == 2

    def test_tipo_desconocido(self, uow):
        with pytest.raises(ValidationError):
            ExportService(uow).export("facturas")


def workbook_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class TestExcelImport:
    """Libros .xlsx pasan por el mismo parseo que un CSV"""

    def test_convierte_primera_hoja(self):
        content = workbook_bytes([
            ["Name", "SKU Code", "Reorder Point", "Date"],
            ["Tornillo", "T-1", 100.0, date(2026, 1, 2)],
            [None, None, None, None],
            ["Tuerca", "T-2", 2.5, None],
        ])
        assert parse_csv(xlsx_to_csv(content)) == [
            {"name": "Tornillo", "sku_code": "T-1", "reorder_point": "100", "date": "2026-01-02"},
            {"name": "Tuerca", "sku_code": "T-2", "reorder_point": "2.5", "date": ""},
        ]

    def test_importa_componentes(self, db, uow, company):
        content = workbook_bytes([["Name", "SKU Code", "Cost Per Unit"], ["Tornillo", "T-1", 0.5]])
        result = ImportService(uow).import_components(xlsx_to_csv(content))
        assert result.successful == 1
        created = db.query(Component).filter(Component.company_id == company.id).one()
        assert created.cost_per_unit == Decimal("0.5")

    def test_archivo_invalido(self):
        with pytest.raises(ValidationError):
            xlsx_to_csv(b"no es un libro")
