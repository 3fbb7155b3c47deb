import logging
from typing import Dict

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from caseload.core.config import settings

logger = logging.getLogger(__name__)

_engines: Dict[str, Engine] = {}


def _report_connection_failure(database_url: str, exc: Exception) -> None:
    """Log high-signal diagnostics when the history database cannot be reached."""
    logger.warning("Could not connect to history database: %s", exc)
    try:
        url = make_url(database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning("Unable to parse history database URL (%s); skipping diagnostics", parse_error)
        return

    masked_url = url.set(password="***") if url.password else url
    logger.warning(
        "History database settings: dialect=%s driver=%s host=%s database=%s",
        masked_url.get_backend_name(),
        masked_url.get_driver_name() or "default",
        masked_url.host or "localhost",
        masked_url.database,
    )


def _build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
        # In-memory SQLite must share one connection across threads or every
        # connection would see its own empty database.
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.get_backend_name() == "sqlite":
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


def get_engine(database_url: str = None) -> Engine:
    """Return a cached engine for ``database_url`` (defaults to the history database)."""
    database_url = database_url or settings.history_database_url
    engine = _engines.get(database_url)
    if engine is None:
        engine = _build_engine(database_url)
        try:
            # Test connection eagerly so failures surface immediately.
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(database_url, e)
        _engines[database_url] = engine
    return engine
