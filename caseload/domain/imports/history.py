"""
Import history tracking for auditing and rollback.

Every pipeline run is recorded as an ImportSession. The store keeps a bounded
set of the most recent sessions, loads them from its backend at construction
and writes through to the backend on every mutation. Backends are plain
key-value stores keyed by session id within a namespace.
"""

import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine

from caseload.core.config import settings
from caseload.domain.imports.models import (
    ErrorCount,
    FileTypeCount,
    ImportHistoryFilters,
    ImportSession,
    ImportStatistics,
    SessionStatus,
)
from caseload.utils.locks import HistoryLockManager
from caseload.utils.serialization import _make_json_safe

logger = logging.getLogger(__name__)

REVERSIBLE_STATUSES = (SessionStatus.COMPLETED, SessionStatus.PARTIAL)
REQUIRED_IMPORT_KEYS = ("id", "file_name", "timestamp")
TOP_ERROR_LIMIT = 10


def new_session_id() -> str:
    return f"import_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def is_rollback_eligible(session: ImportSession) -> bool:
    """A session is reversible when it completed or partially completed, imported records and kept a snapshot."""
    return (
        session.status in REVERSIBLE_STATUSES
        and bool(session.imported_record_ids)
        and session.rollback_data is not None
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InMemoryHistoryBackend:
    """Process-local backend; sessions are lost when the process exits."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def load_all(self, namespace: str) -> List[Dict[str, Any]]:
        return [dict(payload) for payload in self._data.get(namespace, {}).values()]

    def save(self, namespace: str, session_id: str, payload: Dict[str, Any]) -> None:
        self._data.setdefault(namespace, {})[session_id] = dict(payload)

    def delete(self, namespace: str, session_id: str) -> None:
        self._data.get(namespace, {}).pop(session_id, None)

    def clear(self, namespace: str) -> None:
        self._data.pop(namespace, None)


class SqlHistoryBackend:
    """
    SQLAlchemy backend storing one JSON payload per session.

    The ``import_sessions`` table is created on first use.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.create_table()

    def create_table(self) -> None:
        create_sql = """
        CREATE TABLE IF NOT EXISTS import_sessions (
            namespace VARCHAR(255) NOT NULL,
            session_id VARCHAR(255) NOT NULL,
            payload TEXT NOT NULL,
            saved_at TIMESTAMP NOT NULL,
            PRIMARY KEY (namespace, session_id)
        )
        """
        with self.engine.begin() as conn:
            conn.execute(text(create_sql))
        logger.debug("import_sessions table created/verified")

    def load_all(self, namespace: str) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT session_id, payload FROM import_sessions WHERE namespace = :namespace"),
                {"namespace": namespace},
            ).fetchall()

        payloads: List[Dict[str, Any]] = []
        for session_id, payload in rows:
            try:
                payloads.append(json.loads(payload))
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable history payload for session %s", session_id)
        return payloads

    def save(self, namespace: str, session_id: str, payload: Dict[str, Any]) -> None:
        params = {
            "namespace": namespace,
            "session_id": session_id,
            "payload": json.dumps(payload),
            "saved_at": datetime.now(timezone.utc),
        }
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM import_sessions WHERE namespace = :namespace AND session_id = :session_id"),
                params,
            )
            conn.execute(
                text("""
                    INSERT INTO import_sessions (namespace, session_id, payload, saved_at)
                    VALUES (:namespace, :session_id, :payload, :saved_at)
                """),
                params,
            )

    def delete(self, namespace: str, session_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM import_sessions WHERE namespace = :namespace AND session_id = :session_id"),
                {"namespace": namespace, "session_id": session_id},
            )

    def clear(self, namespace: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM import_sessions WHERE namespace = :namespace"),
                {"namespace": namespace},
            )


class ImportHistoryStore:
    """
    Bounded registry of import sessions.

    All reads and writes hold the namespace lock from HistoryLockManager, which
    is shared by every store bound to the same namespace.
    """

    def __init__(self, backend=None, max_sessions: Optional[int] = None, namespace: Optional[str] = None):
        self.backend = backend if backend is not None else InMemoryHistoryBackend()
        self.max_sessions = max_sessions if max_sessions is not None else settings.history_max_sessions
        self.namespace = namespace or settings.history_namespace
        self._sessions: Dict[str, ImportSession] = {}
        self._load()

    def _load(self) -> None:
        with HistoryLockManager.acquire(self.namespace):
            for payload in self.backend.load_all(self.namespace):
                try:
                    session = ImportSession.model_validate(payload)
                except ValidationError as e:
                    logger.warning("Skipping invalid stored import session: %s", e)
                    continue
                session.can_rollback = is_rollback_eligible(session)
                self._sessions[session.id] = session
            self._evict()
        logger.info("Loaded %d import sessions for namespace '%s'", len(self._sessions), self.namespace)

    def _persist(self, session: ImportSession) -> None:
        self.backend.save(self.namespace, session.id, _make_json_safe(session.model_dump(mode="json")))

    def _ordered(self) -> List[ImportSession]:
        return sorted(self._sessions.values(), key=lambda session: _as_utc(session.timestamp), reverse=True)

    def _evict(self) -> None:
        if len(self._sessions) <= self.max_sessions:
            return
        for session in self._ordered()[self.max_sessions:]:
            del self._sessions[session.id]
            self.backend.delete(self.namespace, session.id)
            logger.debug("Evicted import session %s (capacity %d)", session.id, self.max_sessions)

    def create_session(self, session: ImportSession) -> ImportSession:
        """
        Record a finished run.

        ``can_rollback`` is derived here: the session must be completed or
        partial, have imported record ids and carry a rollback snapshot.
        """
        session = session.model_copy(deep=True)
        session.can_rollback = is_rollback_eligible(session)
        with HistoryLockManager.acquire(self.namespace):
            self._sessions[session.id] = session
            self._persist(session)
            self._evict()
        logger.info("Recorded import session %s (%s)", session.id, session.status.value)
        return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Optional[ImportSession]:
        with HistoryLockManager.acquire(self.namespace):
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    def list_sessions(self, filters: Optional[ImportHistoryFilters] = None) -> List[ImportSession]:
        """Return sessions matching ``filters``, most recent first."""
        filters = filters or ImportHistoryFilters()
        date_from = _as_utc(filters.date_from) if filters.date_from else None
        date_to = _as_utc(filters.date_to) if filters.date_to else None
        file_name = filters.file_name.lower() if filters.file_name else None

        with HistoryLockManager.acquire(self.namespace):
            sessions = self._ordered()

        matches: List[ImportSession] = []
        for session in sessions:
            if filters.project_id and session.project_id != filters.project_id:
                continue
            if filters.suite_id and session.suite_id != filters.suite_id:
                continue
            if filters.status and session.status != filters.status:
                continue
            timestamp = _as_utc(session.timestamp)
            if date_from and timestamp < date_from:
                continue
            if date_to and timestamp > date_to:
                continue
            if file_name and file_name not in session.file_name.lower():
                continue
            matches.append(session.model_copy(deep=True))
        return matches

    def update_session_status(self, session_id: str, status: SessionStatus) -> bool:
        """
        Move a session to ``status``.

        Only completed or partial sessions may become rolled_back; every other
        transition is refused and False is returned.
        """
        with HistoryLockManager.acquire(self.namespace):
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if status != SessionStatus.ROLLED_BACK or session.status not in REVERSIBLE_STATUSES:
                logger.warning(
                    "Refusing status change %s -> %s for import session %s",
                    session.status.value,
                    SessionStatus(status).value,
                    session_id,
                )
                return False
            session.status = SessionStatus.ROLLED_BACK
            session.can_rollback = False
            self._persist(session)
        logger.info("Import session %s marked as rolled back", session_id)
        return True

    def delete_session(self, session_id: str) -> bool:
        with HistoryLockManager.acquire(self.namespace):
            if session_id not in self._sessions:
                return False
            del self._sessions[session_id]
            self.backend.delete(self.namespace, session_id)
        return True

    def clear_history(self, older_than: Optional[datetime] = None) -> int:
        """Delete every session, or only those older than ``older_than``. Returns the count removed."""
        with HistoryLockManager.acquire(self.namespace):
            if older_than is None:
                removed = len(self._sessions)
                self._sessions.clear()
                self.backend.clear(self.namespace)
            else:
                cutoff = _as_utc(older_than)
                stale = [sid for sid, s in self._sessions.items() if _as_utc(s.timestamp) < cutoff]
                for session_id in stale:
                    del self._sessions[session_id]
                    self.backend.delete(self.namespace, session_id)
                removed = len(stale)
        logger.info("Cleared %d import sessions", removed)
        return removed

    def get_statistics(self, project_id: Optional[str] = None) -> ImportStatistics:
        sessions = self.list_sessions(ImportHistoryFilters(project_id=project_id))
        if not sessions:
            return ImportStatistics()

        by_status = Counter(session.status for session in sessions)
        error_counts = Counter(error for session in sessions for error in session.errors)
        type_counts = Counter(session.file_type or "unknown" for session in sessions)

        return ImportStatistics(
            total_imports=len(sessions),
            successful_imports=by_status[SessionStatus.COMPLETED],
            partial_imports=by_status[SessionStatus.PARTIAL],
            failed_imports=by_status[SessionStatus.FAILED],
            rolled_back_imports=by_status[SessionStatus.ROLLED_BACK],
            total_records_imported=sum(session.summary.successful_imports for session in sessions),
            average_processing_time_ms=(
                sum(session.metadata.processing_time_ms for session in sessions) / len(sessions)
            ),
            most_common_errors=[
                ErrorCount(error=error, count=count) for error, count in error_counts.most_common(TOP_ERROR_LIMIT)
            ],
            file_type_distribution=[
                FileTypeCount(type=file_type, count=count) for file_type, count in type_counts.most_common()
            ],
        )

    def export_history(self, filters: Optional[ImportHistoryFilters] = None) -> str:
        sessions = self.list_sessions(filters)
        return json.dumps([_make_json_safe(session.model_dump(mode="json")) for session in sessions], indent=2)

    def import_history(self, payload: str) -> Tuple[int, List[str]]:
        """
        Load sessions from an export produced by :meth:`export_history`.

        Sessions missing an id, file name or timestamp are rejected one by
        one; the rest are stored (replacing sessions with the same id).
        ``can_rollback`` is re-derived rather than taken from the payload.

        Returns:
            Tuple of (imported_count, error_messages)
        """
        try:
            items = json.loads(payload)
        except json.JSONDecodeError as e:
            return 0, [f"Invalid JSON: {e}"]
        if not isinstance(items, list):
            return 0, ["Invalid format: expected a list of import sessions"]

        imported = 0
        errors: List[str] = []
        with HistoryLockManager.acquire(self.namespace):
            for index, item in enumerate(items):
                if not isinstance(item, dict) or any(not item.get(key) for key in REQUIRED_IMPORT_KEYS):
                    errors.append(f"Session at index {index}: missing required fields (id, file_name, timestamp)")
                    continue
                try:
                    session = ImportSession.model_validate(item)
                except ValidationError as e:
                    errors.append(f"Session {item.get('id')}: {e.error_count()} validation errors")
                    continue
                session.can_rollback = is_rollback_eligible(session)
                self._sessions[session.id] = session
                self._persist(session)
                imported += 1
            self._evict()

        logger.info("Imported %d import sessions (%d rejected)", imported, len(errors))
        return imported, errors
