"""
Importación CSV
===============

Tres esquemas fijos: componentes, SKUs (con BOM opcional) e inventario inicial.
También se aceptan libros Excel (.xlsx): la primera hoja se lee como CSV.

- Encabezados normalizados: "Lead Time (Days)" -> lead_time_days
- Se ignoran filas vacías y filas cuya primera celda empieza con "#"
- Cada fila se valida por separado y se reporta con su número (1 = primera
  fila de datos, sin contar el encabezado)
- Códigos ya existentes en la empresa (o repetidos antes en el mismo
  archivo) se omiten, nunca se sobreescriben
- Cada fila válida se confirma en su propia transacción
"""
import csv
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ..domain.enums import SalesChannel
from ..domain.models_bom import SKU
from ..domain.models_inventory import Component, Location
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import InventoryError, ValidationError
from .services_bom import BOMService
from .services_brands import BrandService
from .services_transactions import TransactionEngine

logger = logging.getLogger(__name__)

MAX_BOM_COMPONENTS = 5


# ===== PARSEO =====

def normalize_header(header: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", header.strip().lower()).strip("_")


def parse_csv(content: str) -> List[Dict[str, str]]:
    """Filas como dicts con claves normalizadas; descarta líneas vacías y comentarios."""
    if content.startswith("\ufeff"):
        content = content[1:]
    # Se filtra después de parsear: un campo entre comillas puede abarcar varias líneas
    rows = [
        row for row in csv.reader(io.StringIO(content))
        if any(cell.strip() for cell in row) and not row[0].lstrip().startswith("#")
    ]
    if not rows:
        return []
    headers = [normalize_header(h) for h in rows[0]]
    records = []
    for row in rows[1:]:
        record = {}
        for i, header in enumerate(headers):
            value = row[i].strip() if i < len(row) else ""
            record[header] = value
        records.append(record)
    return records


def _xlsx_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_type):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def xlsx_to_csv(content: bytes) -> str:
    """Primera hoja de un libro Excel como texto CSV, para el mismo flujo de parse_csv."""
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise ValidationError("El archivo no es un libro Excel válido", details=[{"field": "file", "message": str(e)}])
    try:
        sheet = workbook[workbook.sheetnames[0]]
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        for row in sheet.iter_rows(values_only=True):
            if all(v is None for v in row):
                continue
            writer.writerow([_xlsx_cell(v) for v in row])
        return buffer.getvalue()
    finally:
        workbook.close()


def _present(record: Dict[str, str]) -> Dict[str, str]:
    """Descarta celdas vacías para que apliquen los valores por defecto."""
    return {k: v for k, v in record.items() if v is not None and str(v).strip() != ""}


# ===== ESQUEMAS DE FILA =====

class ComponentRow(BaseModel):
    name: str = Field(min_length=1)
    sku_code: str = Field(min_length=1)
    category: Optional[str] = None
    brand: Optional[str] = None
    unit_of_measure: str = "each"
    cost_per_unit: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_point: int = Field(default=0, ge=0)
    lead_time_days: int = Field(default=0, ge=0)
    notes: Optional[str] = None


class SKURow(BaseModel):
    name: str = Field(min_length=1)
    internal_code: str = Field(min_length=1)
    sales_channel: SalesChannel
    notes: Optional[str] = None
    bom: List[Dict] = Field(default_factory=list)


class InitialInventoryRow(BaseModel):
    component_sku_code: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    cost_per_unit: Optional[Decimal] = Field(default=None, ge=0)
    date: Optional[date_type] = None
    location: Optional[str] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date_type] = None
    notes: Optional[str] = None


def _errors(e: PydanticValidationError) -> List[str]:
    messages = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"])
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


# ===== RESULTADOS =====

@dataclass
class RowResult:
    row_number: int
    success: bool
    skipped: bool = False
    id: Optional[int] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class ImportResult:
    results: List[RowResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success and not r.skipped)


# ===== SERVICIO =====

class ImportService:
    def __init__(self, uow: UnitOfWork, user_id: Optional[int] = None):
        self.uow = uow
        self.user_id = user_id

    @property
    def tenant(self):
        return self.uow.tenant

    def _run(self, kind: str, content: str, handler: Callable[[int, Dict[str, str], set], RowResult]) -> ImportResult:
        records = parse_csv(content)
        result = ImportResult()
        seen: set = set()
        for index, record in enumerate(records):
            row_number = index + 1
            try:
                row_result = handler(row_number, record, seen)
                self.uow.commit()
            except InventoryError as e:
                self.uow.rollback()
                errors = [d["message"] for d in getattr(e, "details", [])] or [e.message]
                row_result = RowResult(row_number=row_number, success=False, errors=errors)
            result.results.append(row_result)
        logger.info(
            "Importación %s company=%s: total=%s ok=%s omitidas=%s fallidas=%s",
            kind, self.uow.company_id, result.total, result.successful, result.skipped, result.failed,
        )
        return result

    def import_components(self, content: str) -> ImportResult:
        def handle(row_number: int, record: Dict[str, str], seen: set) -> RowResult:
            try:
                row = ComponentRow(**_present(record))
            except PydanticValidationError as e:
                return RowResult(row_number=row_number, success=False, errors=_errors(e))
            if row.sku_code in seen or self.tenant.query(Component).filter(Component.sku_code == row.sku_code).first():
                return RowResult(row_number=row_number, success=False, skipped=True,
                                 errors=[f"El componente {row.sku_code} ya existe"])
            brand_id = None
            if row.brand:
                brand = BrandService(self.uow).by_name(row.brand)
                if brand is None:
                    return RowResult(row_number=row_number, success=False, errors=[f"Marca {row.brand} no encontrada"])
                brand_id = brand.id
            component = Component(
                name=row.name,
                sku_code=row.sku_code,
                category=row.category,
                brand_id=brand_id,
                unit_of_measure=row.unit_of_measure,
                cost_per_unit=row.cost_per_unit,
                reorder_point=row.reorder_point,
                lead_time_days=row.lead_time_days,
                notes=row.notes,
                is_active=True,
            )
            self.tenant.add(component)
            self.uow.db.flush()
            seen.add(row.sku_code)
            return RowResult(row_number=row_number, success=True, id=component.id)

        return self._run("components", content, handle)

    def import_skus(self, content: str) -> ImportResult:
        def handle(row_number: int, record: Dict[str, str], seen: set) -> RowResult:
            bom = []
            errors = []
            for n in range(1, MAX_BOM_COMPONENTS + 1):
                code = (record.get(f"bom_component_{n}") or "").strip()
                qty = (record.get(f"bom_qty_{n}") or "").strip()
                if not code and not qty:
                    continue
                if not code or not qty:
                    errors.append(f"bom_component_{n} y bom_qty_{n} deben indicarse juntos")
                    continue
                bom.append({"code": code, "quantity_per_unit": qty, "n": n})
            try:
                fields = _present({k: record.get(k) for k in ("name", "internal_code", "sales_channel", "notes")})
                row = SKURow(**fields, bom=bom)
            except PydanticValidationError as e:
                errors = _errors(e) + errors
            if errors:
                return RowResult(row_number=row_number, success=False, errors=errors)

            if row.internal_code in seen or self.tenant.query(SKU).filter(SKU.internal_code == row.internal_code).first():
                return RowResult(row_number=row_number, success=False, skipped=True,
                                 errors=[f"El SKU {row.internal_code} ya existe"])

            lines = []
            for item in row.bom:
                component = self.tenant.query(Component).filter(Component.sku_code == item["code"]).first()
                if component is None:
                    errors.append(f"bom_component_{item['n']}: componente {item['code']} no encontrado")
                    continue
                try:
                    qty = Decimal(item["quantity_per_unit"])
                except ArithmeticError:
                    errors.append(f"bom_qty_{item['n']}: cantidad inválida")
                    continue
                lines.append({"component_id": component.id, "quantity_per_unit": qty})
            if errors:
                return RowResult(row_number=row_number, success=False, errors=errors)

            sku = SKU(name=row.name, internal_code=row.internal_code, sales_channel=row.sales_channel.value, notes=row.notes, is_active=True)
            self.tenant.add(sku)
            self.uow.db.flush()
            if lines:
                BOMService(self.uow).create_version(sku.id, "v1", lines, notes="Importado desde CSV", activate=True)
            seen.add(row.internal_code)
            return RowResult(row_number=row_number, success=True, id=sku.id)

        return self._run("skus", content, handle)

    def import_initial_inventory(self, content: str) -> ImportResult:
        engine = TransactionEngine(self.uow, user_id=self.user_id)

        def handle(row_number: int, record: Dict[str, str], seen: set) -> RowResult:
            try:
                row = InitialInventoryRow(**_present(record))
            except PydanticValidationError as e:
                return RowResult(row_number=row_number, success=False, errors=_errors(e))
            component = self.tenant.query(Component).filter(Component.sku_code == row.component_sku_code).first()
            if component is None:
                return RowResult(row_number=row_number, success=False,
                                 errors=[f"Componente {row.component_sku_code} no encontrado"])
            location_id = None
            if row.location:
                location = self.tenant.query(Location).filter(Location.name == row.location).first()
                if location is None:
                    return RowResult(row_number=row_number, success=False, errors=[f"Ubicación {row.location} no encontrada"])
                location_id = location.id
            txn = engine.initial(
                component.id,
                row.quantity,
                date=row.date,
                cost_per_unit=row.cost_per_unit,
                update_component_cost=row.cost_per_unit is not None,
                location_id=location_id,
                lot_number=row.lot_number,
                expiry_date=row.expiry_date,
                notes=row.notes,
            )
            return RowResult(row_number=row_number, success=True, id=txn.id)

        return self._run("initial-inventory", content, handle)


# ===== PLANTILLAS =====

TEMPLATES = {
    "components": (
        ["Name", "SKU Code", "Brand", "Category", "Unit of Measure", "Cost Per Unit", "Reorder Point", "Lead Time (Days)", "Notes"],
        ["Example Component", "COMP-001", "", "Electronics", "each", "10.50", "100", "7", "Sample component for import"],
    ),
    "skus": (
        ["Name", "Internal Code", "Sales Channel", "Notes"]
        + [h for n in range(1, MAX_BOM_COMPONENTS + 1) for h in (f"BOM Component {n}", f"BOM Qty {n}")],
        ["Example SKU", "SKU-001", "Generic", "Sample SKU", "COMP-001", "2"] + [""] * (2 * (MAX_BOM_COMPONENTS - 1)),
    ),
    "initial-inventory": (
        ["Component SKU Code", "Quantity", "Cost Per Unit", "Date", "Location", "Lot Number", "Expiry Date", "Notes"],
        ["COMP-001", "500", "10.50", "2025-01-01", "", "", "", "Opening balance"],
    ),
}


def import_template(kind: str) -> str:
    if kind not in TEMPLATES:
        raise ValidationError(
            f"Plantilla desconocida: {kind}",
            details=[{"field": "kind", "message": f"Debe ser uno de: {', '.join(TEMPLATES)}"}],
        )
    headers, example = TEMPLATES[kind]
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerow(example)
    return buffer.getvalue()
