"""
API de Importación / Exportación CSV
====================================

Importación fila por fila con reporte por fila (las filas válidas se
confirman aunque otras fallen) y exportación como adjunto CSV o Excel.
Los archivos .xlsx se aceptan en la importación igual que un CSV.
"""
from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from pydantic import BaseModel
from datetime import date
from sqlalchemy.orm import Session
from typing import List, Optional

from ...dependencies import get_db
from ...infrastructure.unit_of_work import UnitOfWork
from ...application.errors import ValidationError
from ...application.services_export import EXPORT_FORMATS, ExportService, export_filename, to_csv
from ...application.services_import import ImportResult, ImportService, import_template, xlsx_to_csv
from ...security.auth import TenantContext
from ...security.permissions import require_permission

router = APIRouter(tags=["import-export"])

MAX_IMPORT_BYTES = 5 * 1024 * 1024


class RowResultOut(BaseModel):
    row_number: int
    success: bool
    skipped: bool = False
    id: Optional[int] = None
    errors: List[str] = []


class ImportResultOut(BaseModel):
    total: int
    successful: int
    failed: int
    skipped: int
    results: List[RowResultOut]


def _result_out(result: ImportResult) -> ImportResultOut:
    return ImportResultOut(
        total=result.total,
        successful=result.successful,
        failed=result.failed,
        skipped=result.skipped,
        results=[RowResultOut(**vars(r)) for r in result.results],
    )


async def _read_csv(file: UploadFile) -> str:
    """Contenido CSV del archivo subido; un .xlsx se convierte desde su primera hoja."""
    content = await file.read()
    if len(content) > MAX_IMPORT_BYTES:
        raise ValidationError("Archivo demasiado grande", details=[{"field": "file", "message": "Máximo 5MB"}])
    if (file.filename or "").lower().endswith(".xlsx"):
        return xlsx_to_csv(content)
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("El archivo debe estar en UTF-8", details=[{"field": "file", "message": "Codificación inválida"}])


def _csv_response(content: str, filename: str) -> Response:
    headers = {
        "Content-Type": "text/csv; charset=utf-8",
        "Content-Disposition": f"attachment; filename={filename}",
    }
    return Response(content=content, headers=headers, media_type="text/csv")


# ===== IMPORTACIÓN =====

@router.post("/import/components", response_model=ImportResultOut)
async def import_components(
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(require_permission("import")),
    db: Session = Depends(get_db),
):
    content = await _read_csv(file)
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _result_out(ImportService(uow, user_id=tenant.user_id).import_components(content))


@router.post("/import/skus", response_model=ImportResultOut)
async def import_skus(
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(require_permission("import")),
    db: Session = Depends(get_db),
):
    content = await _read_csv(file)
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _result_out(ImportService(uow, user_id=tenant.user_id).import_skus(content))


@router.post("/import/initial-inventory", response_model=ImportResultOut)
async def import_initial_inventory(
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(require_permission("import")),
    db: Session = Depends(get_db),
):
    """Cada fila es una transacción initial independiente."""
    content = await _read_csv(file)
    uow = UnitOfWork(db, company_id=tenant.company_id)
    return _result_out(ImportService(uow, user_id=tenant.user_id).import_initial_inventory(content))


@router.get("/import/templates/{kind}")
def get_import_template(kind: str, tenant: TenantContext = Depends(require_permission("import"))):
    return _csv_response(import_template(kind), f"{kind}-template.csv")


# ===== EXPORTACIÓN =====

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/export/{kind}")
def export_data(
    kind: str,
    format: str = Query("csv", description="csv o xlsx"),
    date_from: Optional[date] = Query(None, description="Solo transacciones"),
    date_to: Optional[date] = Query(None, description="Solo transacciones"),
    tenant: TenantContext = Depends(require_permission("export")),
    db: Session = Depends(get_db),
):
    if format not in EXPORT_FORMATS:
        raise ValidationError(
            f"Formato desconocido: {format}",
            details=[{"field": "format", "message": f"Debe ser uno de: {', '.join(EXPORT_FORMATS)}"}],
        )
    service = ExportService(UnitOfWork(db, company_id=tenant.company_id))
    filename = export_filename(kind, fmt=format)
    if format == "xlsx":
        content = service.export_xlsx(kind, date_from=date_from, date_to=date_to)
        return Response(
            content=content,
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f"attachment; filename={filename}", "Content-Length": str(len(content))},
        )
    rows, columns = service.dataset(kind, date_from=date_from, date_to=date_to)
    return _csv_response(to_csv(rows, columns), filename)
