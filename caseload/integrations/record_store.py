"""
Record store collaborator for persisting imported test cases.

The pipeline only needs create and delete operations; suite statistics are
read before an import and written back by a rollback. ``InMemoryRecordStore``
is the reference implementation used by the HTTP app and the tests.
"""
import logging
import threading
import uuid
from typing import Dict, List, Optional, Protocol

from caseload.domain.imports.models import SuiteStatistics
from caseload.domain.test_cases import TestCaseRecord

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """The record store rejected an operation."""


class RecordStore(Protocol):
    def create(self, record: TestCaseRecord) -> str: ...

    def create_many(self, records: List[TestCaseRecord]) -> List[str]: ...

    def delete_many(self, record_ids: List[str]) -> bool: ...

    def get_by_id(self, record_id: str) -> Optional[TestCaseRecord]: ...


class InMemoryRecordStore:
    """
    Thread-safe dict-backed record store.

    ``fail_on_create_batch`` (1-based) and ``fail_on_delete`` make specific
    operations raise, for exercising the pipeline's failure paths.
    """

    def __init__(self, fail_on_create_batch: Optional[int] = None, fail_on_delete: bool = False):
        self._records: Dict[str, TestCaseRecord] = {}
        self._suite_stats: Dict[str, SuiteStatistics] = {}
        self._lock = threading.Lock()
        self._create_batches = 0
        self.fail_on_create_batch = fail_on_create_batch
        self.fail_on_delete = fail_on_delete

    def __len__(self) -> int:
        return len(self._records)

    def _store(self, record: TestCaseRecord) -> str:
        record_id = str(uuid.uuid4())
        stored = record.model_copy(deep=True)
        stored.id = record_id
        self._records[record_id] = stored
        return record_id

    def create(self, record: TestCaseRecord) -> str:
        with self._lock:
            return self._store(record)

    def create_many(self, records: List[TestCaseRecord]) -> List[str]:
        with self._lock:
            self._create_batches += 1
            if self.fail_on_create_batch == self._create_batches:
                raise RecordStoreError(f"Simulated failure writing batch {self._create_batches}")
            return [self._store(record) for record in records]

    def delete_many(self, record_ids: List[str]) -> bool:
        with self._lock:
            if self.fail_on_delete:
                raise RecordStoreError("Simulated failure deleting records")
            for record_id in record_ids:
                self._records.pop(record_id, None)
        logger.info("Deleted %d records", len(record_ids))
        return True

    def get_by_id(self, record_id: str) -> Optional[TestCaseRecord]:
        return self._records.get(record_id)

    def all_records(self) -> List[TestCaseRecord]:
        return list(self._records.values())

    def set_suite_statistics(self, suite_id: str, stats: SuiteStatistics) -> None:
        self._suite_stats[suite_id] = stats

    def get_suite_statistics(self, suite_id: str) -> Optional[SuiteStatistics]:
        stats = self._suite_stats.get(suite_id)
        if stats is not None:
            return stats.model_copy()
        members = [record for record in self._records.values() if record.suite_id == suite_id]
        return SuiteStatistics(
            total_tests=len(members),
            passed_tests=sum(1 for record in members if record.status == "Pass"),
            failed_tests=sum(1 for record in members if record.status == "Fail"),
            pending_tests=sum(1 for record in members if record.status == "Not Executed"),
        )

    def restore_suite_statistics(self, suite_id: str, stats: SuiteStatistics) -> None:
        self._suite_stats[suite_id] = stats.model_copy()
        logger.info("Restored statistics for suite %s", suite_id)
