"""
Exportación CSV y Excel
=======================

Componentes (con cantidad en mano y estado de reorden), SKUs (con costo del
BOM activo y unidades construibles) y transacciones (una fila por línea).
"""
import csv
import io
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import joinedload

from ..domain.models import User
from ..domain.models_bom import SKU
from ..domain.models_inventory import Transaction, TransactionLine
from ..infrastructure.unit_of_work import UnitOfWork
from .errors import ValidationError
from .services_components import ComponentService
from .services_skus import SKUService

Column = Tuple[str, Callable[[Any], Any]]

EXPORT_KINDS = ("components", "skus", "transactions")
EXPORT_FORMATS = ("csv", "xlsx")
XLSX_SHEET_TITLES = {"components": "Components", "skus": "SKUs", "transactions": "Transactions"}


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def _cell(value):
    return "" if value is None else value


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_csv(rows: Iterable[Any], columns: Sequence[Column]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([header for header, _ in columns])
    for row in rows:
        writer.writerow([_cell(accessor(row)) for _, accessor in columns])
    return buffer.getvalue()


def to_xlsx(rows: Iterable[Any], columns: Sequence[Column], title: str = "Export") -> bytes:
    """Libro de una hoja: encabezado con estilo y una fila por registro."""
    wb = Workbook()
    ws = wb.active
    ws.title = title

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    for col, (header, _) in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        ws.column_dimensions[get_column_letter(col)].width = max(12, len(header) + 2)
    ws.freeze_panes = "A2"

    for row_idx, row in enumerate(rows, 2):
        for col, (_, accessor) in enumerate(columns, 1):
            value = accessor(row)
            # Excel no tiene tipo decimal
            if isinstance(value, Decimal):
                value = float(value)
            ws.cell(row=row_idx, column=col, value=value)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def export_filename(kind: str, today: Optional[date] = None, fmt: str = "csv") -> str:
    return f"{kind}-export-{(today or date.today()).isoformat()}.{fmt}"


COMPONENT_COLUMNS: List[Column] = [
    ("ID", lambda r: r.component.id),
    ("Name", lambda r: r.component.name),
    ("SKU Code", lambda r: r.component.sku_code),
    ("Category", lambda r: r.component.category),
    ("Unit of Measure", lambda r: r.component.unit_of_measure),
    ("Cost Per Unit", lambda r: r.component.cost_per_unit),
    ("Reorder Point", lambda r: r.component.reorder_point),
    ("Lead Time (Days)", lambda r: r.component.lead_time_days),
    ("Quantity On Hand", lambda r: r.quantity_on_hand),
    ("Reorder Status", lambda r: r.reorder_status.value),
    ("Notes", lambda r: r.component.notes),
    ("Active", lambda r: _yes_no(r.component.is_active)),
    ("Created At", lambda r: _iso(r.component.created_at)),
    ("Updated At", lambda r: _iso(r.component.updated_at)),
]

SKU_COLUMNS: List[Column] = [
    ("ID", lambda s: s.sku.id),
    ("Name", lambda s: s.sku.name),
    ("Internal Code", lambda s: s.sku.internal_code),
    ("Sales Channel", lambda s: s.sku.sales_channel),
    ("BOM Cost", lambda s: s.unit_bom_cost),
    ("Max Buildable Units", lambda s: s.max_buildable_units),
    ("Finished Goods On Hand", lambda s: s.finished_goods_on_hand),
    ("Notes", lambda s: s.sku.notes),
    ("Active", lambda s: _yes_no(s.sku.is_active)),
    ("Created At", lambda s: _iso(s.sku.created_at)),
    ("Updated At", lambda s: _iso(s.sku.updated_at)),
]

# Filas (transacción, línea, sku, usuario)
TRANSACTION_COLUMNS: List[Column] = [
    ("Transaction ID", lambda r: r[0].id),
    ("Type", lambda r: r[0].type),
    ("Date", lambda r: _iso(r[0].date)),
    ("Component Name", lambda r: r[1].component.name if r[1] else None),
    ("Component SKU", lambda r: r[1].component.sku_code if r[1] else None),
    ("Lot Number", lambda r: r[1].lot.lot_number if r[1] and r[1].lot else None),
    ("Quantity Change", lambda r: r[1].quantity_change if r[1] else None),
    ("Cost Per Unit", lambda r: r[1].cost_per_unit if r[1] else None),
    ("SKU Name", lambda r: r[2].name if r[2] else None),
    ("SKU Code", lambda r: r[2].internal_code if r[2] else None),
    ("Sales Channel", lambda r: r[0].sales_channel),
    ("Units Built", lambda r: r[0].units_built),
    ("Unit BOM Cost", lambda r: r[0].unit_bom_cost),
    ("Total BOM Cost", lambda r: r[0].total_bom_cost),
    ("Supplier", lambda r: r[0].supplier),
    ("Reason", lambda r: r[0].reason),
    ("Notes", lambda r: r[0].notes),
    ("Created At", lambda r: _iso(r[0].created_at)),
    ("Created By", lambda r: r[3].username if r[3] else None),
]


class ExportService:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def _transaction_rows(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> list:
        query = self.uow.tenant.query(Transaction).options(
            joinedload(Transaction.lines).joinedload(TransactionLine.component),
            joinedload(Transaction.lines).joinedload(TransactionLine.lot),
        )
        if date_from is not None:
            query = query.filter(Transaction.date >= date_from)
        if date_to is not None:
            query = query.filter(Transaction.date <= date_to)
        transactions = query.order_by(Transaction.date.desc(), Transaction.id.desc()).all()

        sku_ids = {t.sku_id for t in transactions if t.sku_id}
        skus = {s.id: s for s in self.uow.tenant.query(SKU).filter(SKU.id.in_(sku_ids)).all()} if sku_ids else {}
        user_ids = {t.created_by_id for t in transactions if t.created_by_id}
        users = {u.id: u for u in self.uow.db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}

        rows = []
        for txn in transactions:
            sku = skus.get(txn.sku_id)
            user = users.get(txn.created_by_id)
            # Outbound y builds sin consumo salen igual, sin columnas de componente
            for line in txn.lines or [None]:
                rows.append((txn, line, sku, user))
        return rows

    def dataset(self, kind: str, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Tuple[list, Sequence[Column]]:
        """Filas y columnas de una exportación; el rango de fechas solo aplica a transacciones."""
        if kind == "components":
            rows, _ = ComponentService(self.uow).list_components(is_active=None, page=1, page_size=10 ** 9)
            return rows, COMPONENT_COLUMNS
        if kind == "skus":
            rows, _ = SKUService(self.uow).list_skus(is_active=None, page=1, page_size=10 ** 9)
            return rows, SKU_COLUMNS
        if kind == "transactions":
            return self._transaction_rows(date_from, date_to), TRANSACTION_COLUMNS
        raise ValidationError(
            f"Exportación desconocida: {kind}",
            details=[{"field": "kind", "message": f"Debe ser uno de: {', '.join(EXPORT_KINDS)}"}],
        )

    def export_components(self) -> str:
        return to_csv(*self.dataset("components"))

    def export_skus(self) -> str:
        return to_csv(*self.dataset("skus"))

    def export_transactions(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> str:
        return to_csv(*self.dataset("transactions", date_from, date_to))

    def export(self, kind: str) -> str:
        return to_csv(*self.dataset(kind))

    def export_xlsx(self, kind: str, date_from: Optional[date] = None, date_to: Optional[date] = None) -> bytes:
        rows, columns = self.dataset(kind, date_from, date_to)
        return to_xlsx(rows, columns, title=XLSX_SHEET_TITLES[kind])
