"""
Minga-Greens Produktionsplanung - FastAPI Backend
Hauptanwendung und Router-Konfiguration
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.core.events import event_bus
from app.core.exceptions import ProductionError
from app.database import engine, Base
from app.services.order_status import register_order_status_handlers
from app.api.v1 import seeds, sales, planning, production, harvests

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Bestellstatus folgt den Produktions-Events
register_order_status_handlers(event_bus)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup und Shutdown Events"""
    # Startup: Tabellen erstellen (für Entwicklung)
    # In Produktion: Alembic Migrations verwenden
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    ## Minga-Greens Produktionsplanung API

    Produktionsplanung und Anbau-Lebenszyklus für Microgreens.

    ### Features
    - **Planung**: Rückwärtsterminierung aus Bestellungen, Bündelung je Sorte und Erntedatum
    - **Produktion**: Trays und Chargen mit Stufenwechseln und berechneten Zeiten
    - **Ernte**: Erfassung und Korrektur, Abgleich mit den Trays

    ### Authentifizierung
    Bearer Token via Keycloak
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health Check
@app.get("/health", tags=["System"])
async def health_check():
    """
    Systemstatus prüfen.
    Wird von Docker für Health Checks verwendet.
    """
    return {"status": "healthy", "version": settings.app_version}


@app.get("/", tags=["System"])
async def root():
    """API Root - Zeigt Willkommensnachricht"""
    return {
        "message": "Willkommen bei Minga-Greens Produktionsplanung",
        "version": settings.app_version,
        "docs": "/docs",
    }


# API Router einbinden
app.include_router(
    seeds.router,
    prefix="/api/v1/seeds",
    tags=["Saatgut"]
)

app.include_router(
    seeds.grow_plans_router,
    prefix="/api/v1",
)

app.include_router(
    seeds.mixes_router,
    prefix="/api/v1",
)

app.include_router(
    sales.router,
    prefix="/api/v1/sales",
    tags=["Vertrieb"]
)

app.include_router(
    planning.router,
    prefix="/api/v1/planning",
    tags=["Planung"]
)

app.include_router(
    production.router,
    prefix="/api/v1/production",
    tags=["Produktion"]
)

app.include_router(
    harvests.router,
    prefix="/api/v1/harvests",
    tags=["Ernte"]
)


# Exception Handler
@app.exception_handler(ProductionError)
async def production_error_handler(request, exc: ProductionError):
    """Fachliche Fehler außerhalb der Endpoint-Behandlung (z.B. aus Dependencies)"""
    logger.warning(f"{type(exc).__name__} bei {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Globaler Exception Handler"""
    logger.exception(f"Unbehandelter Fehler bei {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Ein interner Fehler ist aufgetreten.",
            "error": str(exc) if settings.debug else None
        }
    )
