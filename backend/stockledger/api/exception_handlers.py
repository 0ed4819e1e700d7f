import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from ..application.errors import (
    ConflictError, ForbiddenError, InsufficientInventoryError, InternalError,
    NotFoundError, ValidationError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


def setup_exception_handlers(app: FastAPI):

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(400, "ValidationError", exc.message, details=exc.details)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error(400, "ValidationError", "Datos de entrada inválidos", details=details)

    @app.exception_handler(InsufficientInventoryError)
    async def insufficient_handler(request: Request, exc: InsufficientInventoryError):
        return _error(
            400, "InsufficientInventory", exc.message,
            insufficient_items=[item.to_dict() for item in exc.items],
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "NotFound", exc.message)

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        return _error(403, "Forbidden", exc.message)

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return _error(409, "Conflict", exc.message)

    @app.exception_handler(IntegrityError)
    async def integrity_handler(request: Request, exc: IntegrityError):
        logger.warning("Violación de integridad en %s %s: %s", request.method, request.url.path, exc.orig)
        return _error(409, "Conflict", "El registro entra en conflicto con datos existentes")

    @app.exception_handler(InternalError)
    async def internal_handler(request: Request, exc: InternalError):
        logger.error("Error interno en %s %s: %s", request.method, request.url.path, exc.message)
        return _error(500, "InternalError", "Internal server error")

    # Cualquier excepción no controlada
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Excepción no controlada en %s %s", request.method, request.url.path)
        return _error(500, "InternalError", "Internal server error")
