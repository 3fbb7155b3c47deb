"""
Deterministic repairs for common data-quality issues in mapped test cases.

Every mutation is appended to ``fixes_applied`` as ``Row N: <what changed>``
so the audit trail describes the full difference between the mapped and the
fixed records. Running the fixer on its own output produces no new fixes.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from caseload.domain.test_cases import (
    CATEGORY_OPTIONS,
    DEFAULT_CATEGORY,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    PRIORITY_OPTIONS,
    STATUS_OPTIONS,
    TEXT_FIELDS,
    CANONICAL_FIELDS,
    TestCaseRecord,
)

logger = logging.getLogger(__name__)


def _with_canonical(options, synonyms: Dict[str, str]) -> Dict[str, str]:
    table = {option.lower(): option for option in options}
    table.update(synonyms)
    return table


STATUS_SYNONYMS: Dict[str, str] = _with_canonical(STATUS_OPTIONS, {
    'not started': 'Not Executed',
    'not_started': 'Not Executed',
    'notstarted': 'Not Executed',
    'pending': 'Not Executed',
    'not executed': 'Not Executed',
    'notexecuted': 'Not Executed',
    'not_executed': 'Not Executed',
    'in progress': 'In Progress',
    'in_progress': 'In Progress',
    'inprogress': 'In Progress',
    'running': 'In Progress',
    'passed': 'Pass',
    'pass': 'Pass',
    'success': 'Pass',
    'failed': 'Fail',
    'fail': 'Fail',
    'failure': 'Fail',
    'error': 'Fail',
    'blocked': 'Blocked',
    'block': 'Blocked',
    'stuck': 'Blocked',
})

PRIORITY_SYNONYMS: Dict[str, str] = _with_canonical(PRIORITY_OPTIONS, {
    'critical': 'P0 (Blocker)',
    'urgent': 'P0 (Blocker)',
    'blocker': 'P0 (Blocker)',
    'p0': 'P0 (Blocker)',
    'high': 'P1 (High)',
    'important': 'P1 (High)',
    'p1': 'P1 (High)',
    'medium': 'P2 (Medium)',
    'normal': 'P2 (Medium)',
    'standard': 'P2 (Medium)',
    'p2': 'P2 (Medium)',
    'low': 'P3 (Low)',
    'minor': 'P3 (Low)',
    'trivial': 'P3 (Low)',
    'p3': 'P3 (Low)',
})

CATEGORY_SYNONYMS: Dict[str, str] = _with_canonical(CATEGORY_OPTIONS, {
    'record': 'Recording',
    'transcript': 'Transcription',
    'notification': 'Notifications',
    'call': 'Calling',
    'calls': 'Calling',
    'ui': 'UI/UX',
    'ux': 'UI/UX',
    'ui ux': 'UI/UX',
    'uiux': 'UI/UX',
})

AZURE_STATUS_SYNONYMS: Dict[str, str] = {
    'new': 'Not Executed',
    'active': 'In Progress',
    'resolved': 'Pass',
    'closed': 'Pass',
    'removed': 'Blocked',
}


def lookup_synonym(value: object, table: Dict[str, str]) -> Optional[str]:
    """Case-insensitive lookup of ``value`` in a synonym table."""
    if value is None:
        return None
    return table.get(str(value).strip().lower())


class AutoFixOptions(BaseModel):
    trim_whitespace: bool = True
    normalize_status: bool = True
    normalize_priority: bool = True
    normalize_category: bool = True
    generate_missing_fields: bool = False


class AutoFixResult(BaseModel):
    records: List[TestCaseRecord] = Field(default_factory=list)
    fixes_applied: List[str] = Field(default_factory=list)


def _row_label(record: TestCaseRecord, index: int) -> int:
    return record.source_row if record.source_row is not None else index + 1


def _normalize_field(
    record: TestCaseRecord,
    field: str,
    table: Dict[str, str],
    row: int,
    fixes: List[str],
) -> None:
    current = getattr(record, field)
    if not current:
        return
    normalized = lookup_synonym(current, table)
    if normalized and normalized != current:
        setattr(record, field, normalized)
        fixes.append(f'Row {row}: Normalized {field} from "{current}" to "{normalized}"')


def _fill_default(record: TestCaseRecord, field: str, default: str, row: int, fixes: List[str]) -> None:
    current = getattr(record, field)
    if current is None or str(current).strip() == "":
        setattr(record, field, default)
        fixes.append(f'Row {row}: Set default {field} to "{default}"')


def auto_fix_records(
    records: List[TestCaseRecord],
    options: Optional[AutoFixOptions] = None,
) -> AutoFixResult:
    """
    Repair records in place and return them with the audit log of fixes.

    Args:
        records: Mapped test cases (mutated in place)
        options: Which repairs to apply

    Returns:
        AutoFixResult with the same record objects and one line per mutation
    """
    options = options or AutoFixOptions()
    fixes: List[str] = []

    for index, record in enumerate(records):
        row = _row_label(record, index)

        if options.trim_whitespace:
            for field in CANONICAL_FIELDS:
                if field not in TEXT_FIELDS:
                    continue
                value = getattr(record, field)
                if isinstance(value, str):
                    trimmed = value.strip()
                    if trimmed != value:
                        setattr(record, field, trimmed)
                        fixes.append(f"Row {row}: Trimmed whitespace from {field}")

        if options.normalize_status:
            _normalize_field(record, "status", STATUS_SYNONYMS, row, fixes)
        if options.normalize_priority:
            _normalize_field(record, "priority", PRIORITY_SYNONYMS, row, fixes)
        if options.normalize_category:
            _normalize_field(record, "category", CATEGORY_SYNONYMS, row, fixes)

        if options.generate_missing_fields:
            _fill_default(record, "status", DEFAULT_STATUS, row, fixes)
            _fill_default(record, "priority", DEFAULT_PRIORITY, row, fixes)
            _fill_default(record, "category", DEFAULT_CATEGORY, row, fixes)

    if fixes:
        logger.info("Auto-fix applied %d fixes across %d records", len(fixes), len(records))
    return AutoFixResult(records=records, fixes_applied=fixes)
