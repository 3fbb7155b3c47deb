"""
Field mapping from RawRows to canonical test case records.

Each canonical field is looked up in the raw row under a series of candidate
keys; the first key present wins, even when its value is empty. Values are
coerced to the schema's types here and nowhere else.
"""
import logging
import numbers
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from caseload.domain.test_cases import (
    CANONICAL_FIELDS,
    FIELD_DEFINITIONS,
    INTEGER_FIELDS,
    LIST_FIELDS,
    TestCaseRecord,
    field_default,
)
from .processors.csv_processor import normalize_header
from .templates import ImportTemplate, apply_transformation

logger = logging.getLogger(__name__)

_MISSING = object()


def _candidate_keys(field: str) -> Tuple[str, ...]:
    """Ordered header names under which ``field`` may appear in a raw row."""
    alias, _, synonyms = FIELD_DEFINITIONS[field]
    keys: List[str] = [field, alias]

    keys.append(alias.lower())
    keys.append(alias.upper())
    keys.append(alias[:1].upper() + alias[1:].lower())

    keys.append(re.sub(r"([A-Z])", r" \1", alias).strip())
    keys.append(re.sub(r"([A-Z])", r"_\1", alias).lower())
    keys.append(re.sub(r"([A-Z])", r"-\1", alias).lower())

    for synonym in synonyms:
        keys.extend((synonym, synonym.lower(), synonym.upper()))

    ordered: List[str] = []
    for key in keys:
        if key not in ordered:
            ordered.append(key)
    return tuple(ordered)


# Pre-compute candidate keys ONCE per field
CANDIDATE_KEYS: Dict[str, Tuple[str, ...]] = {field: _candidate_keys(field) for field in CANONICAL_FIELDS}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bool, list, tuple, set, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def coerce_text(value: Any) -> str:
    if _is_missing(value):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        if (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0):
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, numbers.Real) and not isinstance(value, numbers.Integral):
        # 5.0 from a spreadsheet cell should read "5"
        if float(value).is_integer():
            return str(int(value))
    return str(value)


def coerce_int(value: Any) -> int:
    """Convert a raw value to an int; unparseable values become 0."""
    if _is_missing(value) or isinstance(value, bool):
        return 0
    if isinstance(value, numbers.Integral):
        return int(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return 0
    try:
        return int(value if isinstance(value, (numbers.Real, Decimal)) else Decimal(text))
    except (InvalidOperation, ValueError, OverflowError):
        logger.debug("Could not convert %r to an integer; using 0", value)
        return 0


def coerce_list(value: Any) -> List[str]:
    if _is_missing(value):
        return []
    if isinstance(value, (list, tuple, set)):
        items: Iterable[Any] = value
    else:
        items = coerce_text(value).split(",")
    return [text for text in (coerce_text(item).strip() for item in items) if text]


def coerce_field(field: str, value: Any) -> Any:
    if field in INTEGER_FIELDS:
        return coerce_int(value)
    if field in LIST_FIELDS:
        return coerce_list(value)
    return coerce_text(value)


def _lookup_source_column(raw_row: Dict[str, Any], source_column: str) -> Any:
    if source_column in raw_row:
        return raw_row[source_column]
    normalized = normalize_header(source_column, 0)
    if normalized in raw_row:
        return raw_row[normalized]
    lowered = source_column.lower().strip()
    for key, value in raw_row.items():
        if str(key).lower().strip() == lowered:
            return value
    return _MISSING


def _resolve_from_template(raw_row: Dict[str, Any], field: str, template: ImportTemplate) -> Any:
    for mapping in template.mappings_for(field):
        value = _lookup_source_column(raw_row, mapping.source_column)
        if value is not _MISSING:
            if mapping.default_value is not None and (_is_missing(value) or value == ""):
                value = mapping.default_value
            return apply_transformation(value, mapping.transformation)
        if mapping.default_value is not None:
            return mapping.default_value
    return _MISSING


def _skipped_columns(template: Optional[ImportTemplate]) -> frozenset:
    if template is None:
        return frozenset()
    return frozenset(
        mapping.source_column for mapping in template.column_mappings if mapping.target_field == "skip"
    )


def resolve_field(raw_row: Dict[str, Any], field: str, template: Optional[ImportTemplate] = None) -> Any:
    """Return the raw value for ``field`` or the sentinel when no key resolves."""
    if template is not None:
        value = _resolve_from_template(raw_row, field, template)
        if value is not _MISSING:
            return value

    skipped = _skipped_columns(template)
    for key in CANDIDATE_KEYS[field]:
        if key in raw_row and key not in skipped:
            return raw_row[key]
    return _MISSING


def map_row(
    raw_row: Dict[str, Any],
    row_index: int,
    project_id: Optional[str],
    suite_id: Optional[str] = None,
    template: Optional[ImportTemplate] = None,
) -> TestCaseRecord:
    """
    Map one RawRow to a fully populated TestCaseRecord.

    Args:
        raw_row: Header -> raw value mapping from the parser
        row_index: 0-based position of the row in the input
        project_id: Project the record is imported into
        suite_id: Optional suite the record is imported into
        template: Optional import template whose column mappings take precedence

    Returns:
        TestCaseRecord with every canonical field set; ``source_row`` is 1-based
    """
    values: Dict[str, Any] = {}
    for field in CANONICAL_FIELDS:
        raw_value = resolve_field(raw_row, field, template)
        if raw_value is _MISSING:
            values[field] = field_default(field)
        else:
            values[field] = coerce_field(field, raw_value)

    return TestCaseRecord(
        **values,
        project_id=project_id,
        suite_id=suite_id,
        source_row=row_index + 1,
    )


def map_rows(
    rows: List[Dict[str, Any]],
    project_id: Optional[str],
    suite_id: Optional[str] = None,
    template: Optional[ImportTemplate] = None,
) -> List[TestCaseRecord]:
    """Map a batch of RawRows, preserving order."""
    records = [map_row(row, index, project_id, suite_id, template) for index, row in enumerate(rows)]
    logger.debug("Mapped %d rows to test case records", len(records))
    return records
