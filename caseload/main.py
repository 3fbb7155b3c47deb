"""
FastAPI application entry point.

This module initializes the FastAPI application, configures middleware,
and registers all API routers.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.logging_config import configure_logging
from .api.routers import imports, import_history, import_templates
from .db.session import get_engine
from .domain.imports.history import ImportHistoryStore, SqlHistoryBackend
from .domain.imports.templates import ImportTemplateStore
from .integrations.record_store import InMemoryRecordStore

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the stores once and share them through app.state."""
    logger.info("Initializing import stores...")
    backend = SqlHistoryBackend(get_engine(settings.history_database_url))
    app.state.history_store = ImportHistoryStore(
        backend=backend,
        max_sessions=settings.history_max_sessions,
        namespace=settings.history_namespace,
    )
    app.state.template_store = ImportTemplateStore(settings.template_store_path or None)
    app.state.record_store = InMemoryRecordStore()
    logger.info("Import stores ready")

    yield  # Application runs here


app = FastAPI(
    title="Caseload Import API",
    version="1.0.0",
    description="Bulk import of test cases from CSV, TSV, JSON and Excel files with reversible history",
    lifespan=lifespan,
)

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
allowed_origins = [origin.strip() for origin in allowed_origins]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)
app.include_router(import_history.router)
app.include_router(import_templates.router)


@app.get("/")
async def root():
    """Root endpoint returning API information."""
    return {
        "message": "Caseload Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "caseload-import-api"
    }
