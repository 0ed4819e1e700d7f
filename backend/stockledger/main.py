from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from .db import init_db
from .api.exception_handlers import setup_exception_handlers
from .api.routers import (
    health, auth, locations, brands, components, lots, skus, bom_versions, transactions,
    forecasts, imports, settings, cron,
)
from .infrastructure.logging_config import setup_logging, get_logger
from .config import settings as app_settings

# Configurar logging al iniciar la aplicación
setup_logging()
logger = get_logger("main")

# Inicializar BD (no fallar si la conexión no está configurada - primer arranque)
try:
    init_db()
except Exception as e:
    logger.warning("No se pudo inicializar la base de datos: %s. Puede requerir configuración inicial.", e)

app = FastAPI(
    title="StockLedger - Inventario y BOM",
    version="0.1.0",
    description="Ledger de inventario multiempresa con lotes, BOM versionados y builds costeados",
    docs_url=None if app_settings.is_production else "/docs",
    redoc_url=None if app_settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Company-Id", "X-Brand-Id"],
    expose_headers=["Content-Disposition"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    # Solo en producción (HTTPS)
    if app_settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    return response


setup_exception_handlers(app)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(locations.router)
app.include_router(brands.router)
app.include_router(components.router)
app.include_router(lots.router)
app.include_router(skus.router)
app.include_router(bom_versions.router)
app.include_router(transactions.router)
app.include_router(forecasts.router)
app.include_router(imports.router)
app.include_router(settings.router)
app.include_router(cron.router)
