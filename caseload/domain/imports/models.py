"""
Pydantic models shared by the import pipeline stages.

These models double as the HTTP response schemas, so field names follow the
snake_case convention used everywhere else in the API.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from caseload.core.config import settings
from caseload.domain.test_cases import NAME_FIELD, TestCaseRecord


Severity = Literal["error", "warning", "info"]
MatchType = Literal["exact", "fuzzy"]
ResolutionStrategy = Literal["keep_first", "keep_last", "merge_fields", "skip_all"]


class ValidationIssue(BaseModel):
    """A single rule violation or data-quality finding for one row and field."""
    row: int
    field: str
    value: Any = None
    message: str
    severity: Severity
    suggestions: List[str] = Field(default_factory=list)


class ValidationSummary(BaseModel):
    total_rows: int = 0
    valid_rows: int = 0
    error_rows: int = 0
    warning_rows: int = 0


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    info: List[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


class DuplicateDetectionOptions(BaseModel):
    """Configuration for in-file duplicate detection."""
    fields: List[str] = Field(default_factory=lambda: [NAME_FIELD])
    similarity_threshold: float = Field(default=settings.duplicate_similarity_threshold, ge=0.0, le=1.0)
    case_sensitive: bool = False
    trim_whitespace: bool = True


class DuplicateGroup(BaseModel):
    original: TestCaseRecord
    duplicates: List[TestCaseRecord] = Field(default_factory=list)
    match_type: MatchType
    similarity: float
    matched_fields: List[str] = Field(default_factory=list)


class DuplicateSummary(BaseModel):
    exact_matches: int = 0
    fuzzy_matches: int = 0
    unique_items: int = 0


class DuplicateDetectionResult(BaseModel):
    duplicate_groups: List[DuplicateGroup] = Field(default_factory=list)
    unique_items: List[TestCaseRecord] = Field(default_factory=list)
    total_duplicates: int = 0
    summary: DuplicateSummary = Field(default_factory=DuplicateSummary)


class ResolutionSuggestion(BaseModel):
    strategy: ResolutionStrategy
    description: str
    result: List[TestCaseRecord] = Field(default_factory=list)


class ImportStage(str, Enum):
    READING = "reading"
    PARSING = "parsing"
    VALIDATING = "validating"
    DETECTING_DUPLICATES = "detecting_duplicates"
    PROCESSING = "processing"
    SAVING = "saving"
    COMPLETE = "complete"
    FAILED = "failed"


class ImportProgress(BaseModel):
    stage: ImportStage
    progress: int = Field(ge=0, le=100)
    current: int = 0
    total: int = 0
    message: str = ""


class ImportSummary(BaseModel):
    total_rows: int = 0
    successful_imports: int = 0
    skipped_rows: int = 0
    error_count: int = 0
    warning_count: int = 0
    processing_time_ms: float = 0.0


class ImportResult(BaseModel):
    success: bool
    imported: List[TestCaseRecord] = Field(default_factory=list)
    skipped: List[TestCaseRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    fixes_applied: List[str] = Field(default_factory=list)
    duplicates: Optional[DuplicateDetectionResult] = None
    validation: Optional[ValidationResult] = None
    summary: ImportSummary = Field(default_factory=ImportSummary)
    session_id: Optional[str] = None


class SessionStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class SuiteStatistics(BaseModel):
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    pending_tests: int = 0


class SuiteStatisticsSnapshot(BaseModel):
    suite_id: str
    original_stats: SuiteStatistics


class RollbackSnapshot(BaseModel):
    """Minimal state needed to undo an import session."""
    imported_record_ids: List[str] = Field(default_factory=list)
    suite_statistics: Optional[SuiteStatisticsSnapshot] = None


class SessionSummary(BaseModel):
    total_rows: int = 0
    successful_imports: int = 0
    skipped_rows: int = 0
    error_count: int = 0
    warning_count: int = 0


class SessionMetadata(BaseModel):
    processing_time_ms: float = 0.0
    template: Optional[str] = None
    duplicates_detected: int = 0
    validation_issues: int = 0
    auto_fixes_applied: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportSession(BaseModel):
    """Durable record of one pipeline run, usable for audit and rollback."""
    id: str
    file_name: str
    file_size: int = 0
    file_type: str = ""
    project_id: str
    suite_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)
    status: SessionStatus
    summary: SessionSummary = Field(default_factory=SessionSummary)
    imported_record_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    can_rollback: bool = False
    rollback_data: Optional[RollbackSnapshot] = None


class ImportHistoryFilters(BaseModel):
    project_id: Optional[str] = None
    suite_id: Optional[str] = None
    status: Optional[SessionStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    file_name: Optional[str] = None


class ErrorCount(BaseModel):
    error: str
    count: int


class FileTypeCount(BaseModel):
    type: str
    count: int


class ImportStatistics(BaseModel):
    total_imports: int = 0
    successful_imports: int = 0
    partial_imports: int = 0
    failed_imports: int = 0
    rolled_back_imports: int = 0
    total_records_imported: int = 0
    average_processing_time_ms: float = 0.0
    most_common_errors: List[ErrorCount] = Field(default_factory=list)
    file_type_distribution: List[FileTypeCount] = Field(default_factory=list)


class RollbackOutcome(BaseModel):
    success: bool
    message: str
    deleted_records: int = 0
    restored_suite_stats: bool = False


class RollbackPreview(BaseModel):
    records_to_delete: int
    suite_stats_to_restore: bool
    estimated_time_seconds: float


class FileValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    file_name: str
    file_size: int
    file_type: Optional[str] = None
