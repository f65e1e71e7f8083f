import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from grill_backoffice.core.config import (
    CORS_ORIGINS,
    DATABASE_URL,
    ENV,
    RECONCILE_CRON,
    RECONCILE_SCHEDULER_ENABLED,
)
from grill_backoffice.core.database import Base, dispose_engine, get_engine, init_engine
from grill_backoffice.core.logging_setup import configure_logging
from grill_backoffice.core.startup_checks import (
    ensure_migrations_applied,
    validate_database_environment,
    validate_webhook_configuration,
)
from grill_backoffice.middleware.observability import ObservabilityMiddleware
import grill_backoffice.models  # registers the models on Base.metadata before create_all

from grill_backoffice.routers.catalog import router as catalog_router
from grill_backoffice.routers.internal_metrics import router as internal_metrics_router
from grill_backoffice.routers.inventory import router as inventory_router
from grill_backoffice.routers.reconciliation import router as reconciliation_router
from grill_backoffice.routers.recipes import router as recipes_router
from grill_backoffice.routers.webhook import router as webhook_router
from grill_backoffice.tasks.reconcile_scheduler import start_reconcile_scheduler, stop_reconcile_scheduler

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        validate_webhook_configuration()
        engine = init_engine(DATABASE_URL)
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("%s ERROR startup failed env=%s", STARTUP_PREFIX, ENV)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    if RECONCILE_SCHEDULER_ENABLED:
        start_reconcile_scheduler(RECONCILE_CRON)
    else:
        logger.info("%s reconciliation scheduler disabled", STARTUP_PREFIX)
    try:
        yield
    finally:
        stop_reconcile_scheduler()
        dispose_engine()


app = FastAPI(
    title="Grill Back-Office API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)

# Routers
app.include_router(webhook_router)
app.include_router(inventory_router)
app.include_router(recipes_router)
app.include_router(catalog_router)
app.include_router(reconciliation_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError):
        logger.exception("Health check database ping failed")
        return JSONResponse(status_code=503, content={"status": "error", "database": "unavailable"})
    return {"status": "ok", "database": "ok"}
