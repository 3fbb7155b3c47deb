"""
Import orchestration layer.

Drives one file through the pipeline stages

    reading -> parsing -> validating -> detecting_duplicates -> processing -> saving -> complete

and aggregates the outcome into an ImportResult. Any stage may end the run in
``failed``; fatal failures are reported on the result, never raised. When a
history store is injected every run is recorded as an ImportSession.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from caseload.core.config import settings
from caseload.domain.test_cases import TestCaseRecord
from .autofix import AutoFixOptions, auto_fix_records
from .duplicates import detect_duplicates, resolve_duplicate_group
from .exceptions import FileTooLargeError, ParseError, UnsupportedFileTypeError
from .history import ImportHistoryStore, new_session_id
from .mapper import map_rows
from .models import (
    DuplicateDetectionOptions,
    DuplicateDetectionResult,
    ImportProgress,
    ImportResult,
    ImportSession,
    ImportStage,
    ImportSummary,
    ResolutionStrategy,
    RollbackSnapshot,
    SessionMetadata,
    SessionStatus,
    SessionSummary,
    SuiteStatistics,
    SuiteStatisticsSnapshot,
    ValidationResult,
)
from .parser import ParseOptions, detect_file_type, parse_file
from .templates import ImportTemplate
from .validators import validate_records

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ImportProgress], None]
StatisticsProvider = Callable[[str], Optional[SuiteStatistics]]

LARGE_FILE_WARNING = "Large file detected ({size}MB). Processing may take a while."


class ImportOptions(BaseModel):
    """Per-run settings for :class:`ImportProcessor`."""
    project_id: str
    suite_id: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    delimiter: Optional[str] = None
    template: Optional[ImportTemplate] = None

    auto_fix: bool = True
    strict_mode: bool = False
    duplicate_detection: Optional[DuplicateDetectionOptions] = Field(default_factory=DuplicateDetectionOptions)
    duplicate_strategy: ResolutionStrategy = "keep_first"

    batch_size: int = Field(default=settings.import_batch_size, ge=1)
    max_file_size_bytes: int = Field(default=settings.upload_max_file_size_mb * 1024 * 1024, ge=1)
    warn_file_size_bytes: int = Field(default=settings.upload_warn_file_size_mb * 1024 * 1024, ge=0)

    @model_validator(mode="after")
    def _template_defaults(self) -> "ImportOptions":
        """Template settings fill in auto_fix, strict_mode and duplicate detection unless set explicitly."""
        if self.template is None:
            return self
        template_settings = self.template.settings
        if "auto_fix" not in self.model_fields_set:
            self.auto_fix = template_settings.auto_fix
        if "strict_mode" not in self.model_fields_set:
            self.strict_mode = template_settings.strict_validation
        if "duplicate_detection" not in self.model_fields_set and not template_settings.duplicate_detection:
            self.duplicate_detection = None
        return self


def persist_in_batches(
    record_store,
    records: List[TestCaseRecord],
    batch_size: int,
    on_batch: Optional[Callable[[int, int, int], None]] = None,
) -> Tuple[List[TestCaseRecord], List[TestCaseRecord], List[str]]:
    """
    Write records to the store in chunks of ``batch_size``.

    A failing chunk is reported and skipped; later chunks are still written.
    Store-issued ids replace the provisional ids on the saved records.

    Returns:
        Tuple of (saved_records, unsaved_records, error_messages)
    """
    saved: List[TestCaseRecord] = []
    unsaved: List[TestCaseRecord] = []
    errors: List[str] = []
    total_batches = (len(records) + batch_size - 1) // batch_size

    for batch_number, start in enumerate(range(0, len(records), batch_size), start=1):
        batch = records[start:start + batch_size]
        try:
            record_ids = record_store.create_many(batch)
        except Exception as e:
            logger.error("Batch %d/%d failed: %s", batch_number, total_batches, e)
            errors.append(f"Batch {batch_number} failed: {e}")
            unsaved.extend(batch)
        else:
            for record, record_id in zip(batch, record_ids):
                record.id = str(record_id)
                saved.append(record)
            logger.info("Saved batch %d/%d (%d records)", batch_number, total_batches, len(batch))
        if on_batch is not None:
            on_batch(batch_number, total_batches, len(saved) + len(unsaved))

    return saved, unsaved, errors


class ImportProcessor:
    """
    Runs one import.

    Collaborators are optional: without a record store nothing is persisted,
    and without a history store no session is recorded.
    """

    def __init__(
        self,
        options: ImportOptions,
        record_store=None,
        history_store: Optional[ImportHistoryStore] = None,
        statistics_provider: Optional[StatisticsProvider] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.options = options
        self.record_store = record_store
        self.history_store = history_store
        self.statistics_provider = statistics_provider
        self.progress_callback = progress_callback
        self._last_progress = 0

    def _emit(self, stage: ImportStage, progress: int, message: str, current: int = 0, total: int = 0) -> None:
        """Best-effort progress updates; a failing callback never fails the import."""
        self._last_progress = progress
        logger.debug("Import stage %s (%d%%): %s", stage.value, progress, message)
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(ImportProgress(
                stage=stage,
                progress=min(max(progress, 0), 100),
                current=current,
                total=total,
                message=message,
            ))
        except Exception as exc:
            logger.warning("Progress callback raised during %s: %s", stage.value, exc)

    def _file_type(self, parsed_type: Optional[str] = None) -> str:
        if parsed_type:
            return parsed_type
        if self.options.file_type:
            return self.options.file_type
        if self.options.file_name:
            try:
                return detect_file_type(self.options.file_name)
            except UnsupportedFileTypeError:
                return "unknown"
        return "unknown"

    def _capture_statistics(self) -> Optional[SuiteStatisticsSnapshot]:
        suite_id = self.options.suite_id
        if not suite_id or self.statistics_provider is None:
            return None
        try:
            stats = self.statistics_provider(suite_id)
        except Exception as e:
            logger.warning("Could not read statistics for suite %s: %s", suite_id, e)
            return None
        if stats is None:
            return None
        return SuiteStatisticsSnapshot(suite_id=suite_id, original_stats=stats)

    def _resolve_duplicates(
        self,
        records: List[TestCaseRecord],
        duplicates: DuplicateDetectionResult,
    ) -> List[TestCaseRecord]:
        """Apply the duplicate strategy and return the surviving records in input order."""
        survivors: Dict[int, TestCaseRecord] = {}
        grouped = set()
        for group in duplicates.duplicate_groups:
            grouped.add(group.original.source_row)
            grouped.update(duplicate.source_row for duplicate in group.duplicates)
            for record in resolve_duplicate_group(group, self.options.duplicate_strategy):
                survivors[record.source_row] = record

        kept: List[TestCaseRecord] = []
        for record in records:
            if record.source_row in grouped:
                if record.source_row in survivors:
                    kept.append(survivors[record.source_row])
            else:
                kept.append(record)
        return kept

    def _stamp(self, records: List[TestCaseRecord]) -> None:
        for position, record in enumerate(records, start=1):
            record.position = position
            record.id = f"pending-{position}"
            record.project_id = self.options.project_id
            record.suite_id = self.options.suite_id

    def _record_session(
        self,
        result: ImportResult,
        file_type: str,
        file_size: int,
        imported_ids: List[str],
        stats_snapshot: Optional[SuiteStatisticsSnapshot],
    ) -> None:
        if self.history_store is None:
            return

        if not result.errors:
            status = SessionStatus.COMPLETED
        elif imported_ids:
            status = SessionStatus.PARTIAL
        else:
            status = SessionStatus.FAILED

        rollback_data = None
        if imported_ids:
            rollback_data = RollbackSnapshot(imported_record_ids=imported_ids, suite_statistics=stats_snapshot)

        validation_issues = 0
        if result.validation is not None:
            validation_issues = len(result.validation.errors) + len(result.validation.warnings)

        session = ImportSession(
            id=new_session_id(),
            file_name=self.options.file_name or "upload",
            file_size=file_size,
            file_type=file_type,
            project_id=self.options.project_id,
            suite_id=self.options.suite_id,
            status=status,
            summary=SessionSummary(
                total_rows=result.summary.total_rows,
                successful_imports=result.summary.successful_imports,
                skipped_rows=result.summary.skipped_rows,
                error_count=result.summary.error_count,
                warning_count=result.summary.warning_count,
            ),
            imported_record_ids=imported_ids,
            errors=result.errors,
            warnings=result.warnings,
            metadata=SessionMetadata(
                processing_time_ms=result.summary.processing_time_ms,
                template=self.options.template.name if self.options.template else None,
                duplicates_detected=result.duplicates.total_duplicates if result.duplicates else 0,
                validation_issues=validation_issues,
                auto_fixes_applied=len(result.fixes_applied),
            ),
            rollback_data=rollback_data,
        )
        try:
            stored = self.history_store.create_session(session)
        except Exception as e:
            logger.error("Failed to record import session for %s: %s", session.file_name, e)
            result.warnings.append(f"Import history could not be recorded: {e}")
            return
        result.session_id = stored.id

    def _failed(self, message: str, started: float, file_size: int, file_type: str) -> ImportResult:
        self._emit(ImportStage.FAILED, self._last_progress, message)
        result = ImportResult(
            success=False,
            errors=[message],
            summary=ImportSummary(error_count=1, processing_time_ms=(time.perf_counter() - started) * 1000),
        )
        self._record_session(result, file_type, file_size, [], None)
        return result

    def process_import(self, content: Union[bytes, str]) -> ImportResult:
        """
        Run the pipeline over ``content`` and return the aggregated result.

        Fatal problems (file too large, unreadable content, unexpected
        exceptions) produce ``success=False`` with the failure as the sole error.
        """
        options = self.options
        started = time.perf_counter()
        if options.file_size is not None:
            file_size = options.file_size
        elif isinstance(content, str):
            file_size = len(content.encode("utf-8"))
        else:
            file_size = len(content)
        file_type = self._file_type()
        warnings: List[str] = []

        try:
            self._emit(ImportStage.READING, 0, "Reading file...")
            if file_size > options.max_file_size_bytes:
                raise FileTooLargeError(file_size, options.max_file_size_bytes, options.file_name)
            if file_size > options.warn_file_size_bytes:
                warnings.append(LARGE_FILE_WARNING.format(size=round(file_size / 1024 / 1024)))

            self._emit(ImportStage.PARSING, 10, "Parsing file content...")
            parsed = parse_file(content, ParseOptions(
                file_name=options.file_name,
                file_type=options.file_type,
                delimiter=options.delimiter,
            ))
            if parsed.aborted:
                raise ParseError(parsed.errors[0], options.file_name)
            file_type = self._file_type(parsed.meta.get("file_type"))
            warnings.extend(parsed.warnings)
            total_rows = len(parsed.rows)

            self._emit(ImportStage.VALIDATING, 30, "Mapping fields and validating data...", total=total_rows)
            records = map_rows(parsed.rows, options.project_id, options.suite_id, options.template)
            fixes_applied: List[str] = []
            if options.auto_fix:
                fixed = auto_fix_records(records, AutoFixOptions(generate_missing_fields=not options.strict_mode))
                records = fixed.records
                fixes_applied = fixed.fixes_applied
            validation: ValidationResult = validate_records(records)
            errors = [f"Row {issue.row}: {issue.message}" for issue in validation.errors]
            warnings.extend(f"Row {issue.row}: {issue.message}" for issue in validation.warnings)

            self._emit(ImportStage.DETECTING_DUPLICATES, 50, "Detecting duplicates...", total=total_rows)
            duplicates: Optional[DuplicateDetectionResult] = None
            candidates = records
            if options.duplicate_detection is not None:
                duplicates = detect_duplicates(records, options.duplicate_detection)
                candidates = self._resolve_duplicates(records, duplicates)

            self._emit(ImportStage.PROCESSING, 70, "Processing test cases...", total=len(candidates))
            blocked = options.strict_mode and bool(validation.errors)
            if blocked:
                logger.warning(
                    "Strict mode: %d validation errors block import of %s",
                    len(validation.errors),
                    options.file_name,
                )
                imported: List[TestCaseRecord] = []
            else:
                imported = candidates
                self._stamp(imported)

            self._emit(ImportStage.SAVING, 90, "Saving test cases...", total=len(imported))
            imported_ids: List[str] = []
            stats_snapshot: Optional[SuiteStatisticsSnapshot] = None
            batch_failed = False
            if self.record_store is not None and imported:
                stats_snapshot = self._capture_statistics()

                def _on_batch(batch_number: int, total_batches: int, done: int) -> None:
                    self._emit(
                        ImportStage.SAVING,
                        90,
                        f"Saved batch {batch_number} of {total_batches}",
                        current=done,
                        total=len(imported),
                    )

                saved, _unsaved, batch_errors = persist_in_batches(
                    self.record_store, imported, options.batch_size, on_batch=_on_batch
                )
                errors.extend(batch_errors)
                batch_failed = bool(batch_errors)
                imported = saved
                imported_ids = [record.id for record in saved]

            imported_rows = {record.source_row for record in imported}
            skipped = [record for record in records if record.source_row not in imported_rows]

            self._emit(ImportStage.COMPLETE, 100, "Import processing complete!", current=len(imported), total=total_rows)

            result = ImportResult(
                success=(not validation.errors or not options.strict_mode) and not batch_failed,
                imported=imported,
                skipped=skipped,
                errors=errors,
                warnings=warnings,
                fixes_applied=fixes_applied,
                duplicates=duplicates,
                validation=validation,
                summary=ImportSummary(
                    total_rows=total_rows,
                    successful_imports=len(imported),
                    skipped_rows=len(skipped),
                    error_count=len(errors),
                    warning_count=len(warnings),
                    processing_time_ms=(time.perf_counter() - started) * 1000,
                ),
            )
            self._record_session(result, file_type, file_size, imported_ids, stats_snapshot)
            logger.info(
                "Import of %s finished: %d imported, %d skipped, %d errors",
                options.file_name,
                len(imported),
                len(skipped),
                len(errors),
            )
            return result

        except ParseError as e:
            logger.error("Import of %s failed: %s", options.file_name, e)
            return self._failed(str(e), started, file_size, file_type)
        except Exception as e:
            logger.exception("Unexpected error importing %s", options.file_name)
            return self._failed(str(e) or "Unknown error occurred", started, file_size, file_type)
