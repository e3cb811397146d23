"""
FastAPI application factory.

Uses lifespan context manager (preferred over on_event decorators in FastAPI 0.93+)
to handle startup/shutdown tasks cleanly.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.routers import auth, health, medidata, payments, tariffs
from app.settings import settings

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logger.info("Starting MediData billing API [env=%s]", settings.environment)

    from app.database import check_db_connection

    if not check_db_connection():
        logger.error("Database is not reachable on startup — check DATABASE_URL")
    else:
        logger.info("Database connection verified")

    if not settings.medidata_proxy_api_key:
        logger.warning("MEDIDATA_PROXY_API_KEY is not set; clearing-house calls will fail")

    if settings.storage_backend == "local":
        import os

        os.makedirs(settings.local_storage_path, exist_ok=True)
        logger.info("Local storage path: %s", settings.local_storage_path)

    yield  # ── Application runs here ──

    logger.info("Shutting down MediData billing API")


# ── App factory ───────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    app = FastAPI(
        title="MediData Billing",
        description=(
            "Swiss medical invoicing: TARDOC pricing, generalInvoiceRequest "
            "documents, MediData clearing-house submission and reconciliation, "
            "and payment reconciliation for Payrexx and camt.054 bank files."
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # ── CORS ──────────────────────────────────────────────────────────────────
    # Dev: allow all origins. Staging/prod: explicit allowlist from ALLOWED_ORIGINS env var.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ───────────────────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(tariffs.router)
    app.include_router(medidata.router)
    app.include_router(payments.router)

    return app


app = create_app()
