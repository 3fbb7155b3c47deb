"""
Rollback of whole import sessions.

A rollback replays the session's snapshot: delete exactly the records the
import created, then restore the suite statistics captured before saving.
The session is only marked rolled back when both steps succeed.
"""

import logging
from typing import Callable, List, Optional

from caseload.domain.imports.exceptions import (
    RollbackDeleteError,
    RollbackNotAllowedError,
    RollbackStatsRestoreError,
    RollbackStatusError,
    SessionNotFoundError,
)
from caseload.domain.imports.history import REVERSIBLE_STATUSES, ImportHistoryStore
from caseload.domain.imports.models import (
    ImportSession,
    RollbackOutcome,
    RollbackPreview,
    SessionStatus,
    SuiteStatistics,
)
from caseload.utils.locks import HistoryLockManager

logger = logging.getLogger(__name__)

DeleteRecords = Callable[[List[str]], bool]
RestoreStatistics = Callable[[str, SuiteStatistics], None]

SECONDS_PER_RECORD = 0.1
MIN_ESTIMATE_SECONDS = 1.0


class RollbackManager:
    def __init__(self, history_store: ImportHistoryStore):
        self.history_store = history_store

    def _require_session(self, session_id: str) -> ImportSession:
        session = self.history_store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def can_rollback(self, session_id: str) -> bool:
        session = self.history_store.get_session(session_id)
        return bool(
            session is not None
            and session.can_rollback
            and session.status in REVERSIBLE_STATUSES
        )

    def get_rollback_preview(self, session_id: str) -> RollbackPreview:
        session = self._require_session(session_id)
        snapshot = session.rollback_data
        record_count = len(snapshot.imported_record_ids) if snapshot else 0
        return RollbackPreview(
            records_to_delete=record_count,
            suite_stats_to_restore=bool(snapshot and snapshot.suite_statistics),
            estimated_time_seconds=max(record_count * SECONDS_PER_RECORD, MIN_ESTIMATE_SECONDS),
        )

    def rollback_import(
        self,
        session_id: str,
        delete_records: DeleteRecords,
        restore_statistics: Optional[RestoreStatistics] = None,
    ) -> RollbackOutcome:
        """
        Undo an import session.

        Args:
            session_id: Session to roll back
            delete_records: Deletes the given record ids; returns False or raises on failure
            restore_statistics: Writes prior suite statistics back, when captured

        Raises:
            SessionNotFoundError: No such session
            RollbackNotAllowedError: Session is not reversible or already rolled back
            RollbackDeleteError: Records could not be deleted
            RollbackStatsRestoreError: Records were deleted but statistics were not restored
            RollbackStatusError: Records were deleted but the session status was not updated
        """
        with HistoryLockManager.acquire(self.history_store.namespace):
            session = self._require_session(session_id)
            if session.status == SessionStatus.ROLLED_BACK:
                raise RollbackNotAllowedError(session_id, "already rolled back")
            if (
                session.status not in REVERSIBLE_STATUSES
                or not session.can_rollback
                or session.rollback_data is None
            ):
                raise RollbackNotAllowedError(session_id, "import is not reversible")

            snapshot = session.rollback_data
            record_ids = list(snapshot.imported_record_ids)
            logger.info("Rolling back import %s: deleting %d records", session_id, len(record_ids))

            try:
                deleted = delete_records(record_ids)
            except Exception as e:
                logger.error("Rollback of %s failed while deleting records: %s", session_id, e)
                raise RollbackDeleteError(session_id, f"Failed to delete imported records: {e}") from e
            if deleted is False:
                raise RollbackDeleteError(session_id, "Failed to delete imported records")

            restored = False
            stats_snapshot = snapshot.suite_statistics
            if stats_snapshot is not None and restore_statistics is not None:
                try:
                    restore_statistics(stats_snapshot.suite_id, stats_snapshot.original_stats)
                except Exception as e:
                    logger.error("Rollback of %s failed while restoring suite statistics: %s", session_id, e)
                    raise RollbackStatsRestoreError(
                        session_id,
                        f"Deleted {len(record_ids)} records but failed to restore suite statistics: {e}",
                    ) from e
                restored = True

            if not self.history_store.update_session_status(session_id, SessionStatus.ROLLED_BACK):
                logger.error("Rollback of %s deleted its records but the session was not marked", session_id)
                raise RollbackStatusError(
                    session_id,
                    f"Deleted {len(record_ids)} records but could not mark import {session_id} as rolled back",
                )

        logger.info("Rolled back import %s", session_id)
        return RollbackOutcome(
            success=True,
            message=f"Successfully rolled back {len(record_ids)} test cases",
            deleted_records=len(record_ids),
            restored_suite_stats=restored,
        )
