"""
Tests for rolling back import sessions.
"""
import json

import pytest

from caseload.domain.imports.exceptions import (
    RollbackDeleteError,
    RollbackNotAllowedError,
    RollbackStatsRestoreError,
    RollbackStatusError,
    SessionNotFoundError,
)
from caseload.domain.imports.models import ImportSession, RollbackSnapshot, SessionStatus, SuiteStatistics
from caseload.domain.imports.orchestrator import ImportOptions, ImportProcessor
from caseload.domain.imports.rollback import RollbackManager
from caseload.domain.test_cases import TestCaseRecord
from caseload.integrations.record_store import InMemoryRecordStore


@pytest.fixture
def imported_session(sample_csv_bytes, record_store, history_store):
    """Run a real import into suite-1 whose prior statistics are known."""
    record_store.set_suite_statistics("suite-1", SuiteStatistics(total_tests=5, passed_tests=3, failed_tests=1))
    result = ImportProcessor(
        ImportOptions(project_id="proj-1", suite_id="suite-1", file_name="cases.csv"),
        record_store=record_store,
        history_store=history_store,
        statistics_provider=record_store.get_suite_statistics,
    ).process_import(sample_csv_bytes)
    # Simulate the suite counters moving on after the import
    record_store.set_suite_statistics("suite-1", SuiteStatistics(total_tests=7, passed_tests=4, failed_tests=2))
    return history_store.get_session(result.session_id)


@pytest.fixture
def manager(history_store):
    return RollbackManager(history_store)


class TestRollbackImport:
    def test_deletes_records_and_restores_statistics(self, manager, imported_session, record_store, history_store):
        outcome = manager.rollback_import(
            imported_session.id,
            delete_records=record_store.delete_many,
            restore_statistics=record_store.restore_suite_statistics,
        )

        assert outcome.success is True
        assert outcome.deleted_records == 2
        assert outcome.restored_suite_stats is True
        assert outcome.message == "Successfully rolled back 2 test cases"
        assert len(record_store) == 0
        assert record_store.get_suite_statistics("suite-1").total_tests == 5

        session = history_store.get_session(imported_session.id)
        assert session.status == SessionStatus.ROLLED_BACK
        assert session.can_rollback is False
        assert manager.can_rollback(imported_session.id) is False

    def test_only_the_sessions_records_are_deleted(self, manager, imported_session, record_store):
        other_id = record_store.create(TestCaseRecord(test_case="Existing"))
        manager.rollback_import(imported_session.id, delete_records=record_store.delete_many)
        assert record_store.get_by_id(other_id) is not None
        assert len(record_store) == 1

    def test_second_rollback_is_refused(self, manager, imported_session, record_store):
        manager.rollback_import(imported_session.id, delete_records=record_store.delete_many)

        with pytest.raises(RollbackNotAllowedError) as exc_info:
            manager.rollback_import(imported_session.id, delete_records=record_store.delete_many)
        assert exc_info.value.reason == "already rolled back"

    def test_unknown_session(self, manager, record_store):
        with pytest.raises(SessionNotFoundError):
            manager.rollback_import("import_0_missing", delete_records=record_store.delete_many)

    def test_failed_import_is_not_reversible(self, manager, history_store):
        result = ImportProcessor(
            ImportOptions(project_id="proj-1", file_name="cases.json"), history_store=history_store
        ).process_import(b"not json")

        assert manager.can_rollback(result.session_id) is False
        with pytest.raises(RollbackNotAllowedError) as exc_info:
            manager.rollback_import(result.session_id, delete_records=lambda ids: True)
        assert exc_info.value.reason == "import is not reversible"

    def test_loaded_failed_session_is_refused_before_deleting(self, manager, history_store):
        history_store.import_history(json.dumps([{
            "id": "import_1",
            "file_name": "cases.csv",
            "project_id": "proj-1",
            "timestamp": "2024-06-01T12:00:00Z",
            "status": "failed",
            "can_rollback": True,
            "imported_record_ids": ["a", "b"],
            "rollback_data": {"imported_record_ids": ["a", "b"]},
        }]))
        deleted = []

        assert manager.can_rollback("import_1") is False
        with pytest.raises(RollbackNotAllowedError) as exc_info:
            manager.rollback_import("import_1", delete_records=lambda ids: deleted.extend(ids) or True)
        assert exc_info.value.reason == "import is not reversible"
        assert deleted == []
        assert history_store.get_session("import_1").status == SessionStatus.FAILED

    def test_status_change_refused_is_reported(self, manager, imported_session, record_store, history_store):
        def delete_and_drop_session(ids):
            record_store.delete_many(ids)
            history_store.delete_session(imported_session.id)
            return True

        with pytest.raises(RollbackStatusError):
            manager.rollback_import(imported_session.id, delete_records=delete_and_drop_session)
        assert len(record_store) == 0

    def test_delete_failure_leaves_session_untouched(self, manager, imported_session, history_store):
        failing_store = InMemoryRecordStore(fail_on_delete=True)

        with pytest.raises(RollbackDeleteError):
            manager.rollback_import(imported_session.id, delete_records=failing_store.delete_many)

        session = history_store.get_session(imported_session.id)
        assert session.status == SessionStatus.COMPLETED
        assert manager.can_rollback(imported_session.id) is True

    def test_delete_returning_false_is_a_failure(self, manager, imported_session):
        with pytest.raises(RollbackDeleteError):
            manager.rollback_import(imported_session.id, delete_records=lambda ids: False)

    def test_statistics_failure_leaves_session_untouched(self, manager, imported_session, record_store, history_store):
        def broken_restore(suite_id, stats):
            raise RuntimeError("statistics service unavailable")

        with pytest.raises(RollbackStatsRestoreError):
            manager.rollback_import(
                imported_session.id,
                delete_records=record_store.delete_many,
                restore_statistics=broken_restore,
            )

        assert len(record_store) == 0
        assert history_store.get_session(imported_session.id).status == SessionStatus.COMPLETED

    def test_without_statistics_restorer(self, manager, imported_session, record_store):
        outcome = manager.rollback_import(imported_session.id, delete_records=record_store.delete_many)
        assert outcome.restored_suite_stats is False


class TestRollbackPreview:
    def test_preview(self, manager, imported_session):
        preview = manager.get_rollback_preview(imported_session.id)
        assert preview.records_to_delete == 2
        assert preview.suite_stats_to_restore is True
        assert preview.estimated_time_seconds == 1.0

    def test_estimate_scales_with_record_count(self, manager, history_store):
        record_ids = [f"rec-{i}" for i in range(50)]
        history_store.create_session(ImportSession(
            id="big",
            file_name="big.csv",
            project_id="proj-1",
            status=SessionStatus.COMPLETED,
            imported_record_ids=record_ids,
            rollback_data=RollbackSnapshot(imported_record_ids=record_ids),
        ))

        preview = manager.get_rollback_preview("big")
        assert preview.estimated_time_seconds == pytest.approx(5.0)
        assert preview.suite_stats_to_restore is False

    def test_preview_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            manager.get_rollback_preview("missing")
