"""
In-file duplicate detection for mapped test cases.

Records are compared pairwise on the configured fields. The test case name is
compared by exact equality after normalization; other fields use a
Levenshtein-based similarity ratio. Grouping is single-pass: once a record
joins a group it is never compared again.
"""
import logging
from typing import Any, List, Optional, Tuple

from caseload.domain.test_cases import CANONICAL_FIELDS, NAME_FIELD, TestCaseRecord
from caseload.domain.imports.models import (
    DuplicateDetectionOptions,
    DuplicateDetectionResult,
    DuplicateGroup,
    DuplicateSummary,
    ResolutionStrategy,
    ResolutionSuggestion,
)

logger = logging.getLogger(__name__)


def levenshtein_distance(first: str, second: str) -> int:
    """Minimum number of single-character edits turning ``first`` into ``second``."""
    if first == second:
        return 0
    if not first:
        return len(second)
    if not second:
        return len(first)

    previous = list(range(len(second) + 1))
    for i, char_a in enumerate(first, start=1):
        current = [i]
        for j, char_b in enumerate(second, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def calculate_similarity(first: str, second: str) -> float:
    """Calculate similarity ratio between two strings (0.0 to 1.0)."""
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    longest = max(len(first), len(second))
    return 1.0 - levenshtein_distance(first, second) / longest


def normalize_value(value: Any, case_sensitive: bool = False, trim_whitespace: bool = True) -> str:
    if value is None:
        text = ""
    elif isinstance(value, (list, tuple)):
        text = ", ".join(str(item) for item in value)
    else:
        text = str(value)
    if trim_whitespace:
        text = text.strip()
    if not case_sensitive:
        text = text.lower()
    return text


def compare_records(
    first: TestCaseRecord,
    second: TestCaseRecord,
    options: DuplicateDetectionOptions,
) -> Tuple[bool, float, List[str]]:
    """
    Compare two records on the configured fields.

    Returns:
        Tuple of (is_match, average_similarity, matched_fields)
    """
    matched_fields: List[str] = []
    total = 0.0

    for field in options.fields:
        value_a = normalize_value(getattr(first, field, ""), options.case_sensitive, options.trim_whitespace)
        value_b = normalize_value(getattr(second, field, ""), options.case_sensitive, options.trim_whitespace)

        if field == NAME_FIELD:
            similarity = 1.0 if value_a == value_b else 0.0
        else:
            similarity = calculate_similarity(value_a, value_b)

        total += similarity
        if similarity >= options.similarity_threshold:
            matched_fields.append(field)

    average = total / len(options.fields) if options.fields else 0.0
    is_match = bool(matched_fields) and average >= options.similarity_threshold
    return is_match, average, matched_fields


def detect_duplicates(
    records: List[TestCaseRecord],
    options: Optional[DuplicateDetectionOptions] = None,
) -> DuplicateDetectionResult:
    """
    Group duplicate records.

    Every record ends up either in exactly one group (as original or as a
    duplicate) or in ``unique_items``, in input order.
    """
    options = options or DuplicateDetectionOptions()
    groups: List[DuplicateGroup] = []
    consumed = set()

    for i, current in enumerate(records):
        if i in consumed:
            continue

        duplicates: List[TestCaseRecord] = []
        similarities: List[float] = []
        group_fields: List[str] = []
        for j in range(i + 1, len(records)):
            if j in consumed:
                continue
            is_match, similarity, matched = compare_records(current, records[j], options)
            if not is_match:
                continue
            duplicates.append(records[j])
            similarities.append(similarity)
            group_fields.extend(field for field in matched if field not in group_fields)
            consumed.add(j)

        if duplicates:
            consumed.add(i)
            average = sum(similarities) / len(similarities)
            groups.append(DuplicateGroup(
                original=current,
                duplicates=duplicates,
                match_type="exact" if average == 1.0 else "fuzzy",
                similarity=average,
                matched_fields=[field for field in options.fields if field in group_fields],
            ))

    unique_items = [record for index, record in enumerate(records) if index not in consumed]
    total_duplicates = sum(len(group.duplicates) for group in groups)

    if groups:
        logger.info(
            "Found %d duplicate groups (%d duplicate records) among %d records",
            len(groups),
            total_duplicates,
            len(records),
        )

    return DuplicateDetectionResult(
        duplicate_groups=groups,
        unique_items=unique_items,
        total_duplicates=total_duplicates,
        summary=DuplicateSummary(
            exact_matches=sum(1 for group in groups if group.match_type == "exact"),
            fuzzy_matches=sum(1 for group in groups if group.match_type == "fuzzy"),
            unique_items=len(unique_items),
        ),
    )


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == 0


def _merge_fields(group: DuplicateGroup) -> TestCaseRecord:
    merged = group.original.model_copy(deep=True)
    for duplicate in group.duplicates:
        for field in CANONICAL_FIELDS:
            value = getattr(duplicate, field)
            if not _is_blank(value) and _is_blank(getattr(merged, field)):
                setattr(merged, field, value)
    return merged


def resolve_duplicate_group(group: DuplicateGroup, strategy: ResolutionStrategy = "keep_first") -> List[TestCaseRecord]:
    """Return the records that survive resolving ``group`` with ``strategy``."""
    if strategy == "keep_first":
        return [group.original]
    if strategy == "keep_last":
        return [group.duplicates[-1]] if group.duplicates else [group.original]
    if strategy == "merge_fields":
        return [_merge_fields(group)]
    if strategy == "skip_all":
        return []
    raise ValueError(f"Unknown duplicate resolution strategy: {strategy}")


def generate_resolution_suggestions(group: DuplicateGroup) -> List[ResolutionSuggestion]:
    return [
        ResolutionSuggestion(
            strategy="keep_first",
            description="Keep the first occurrence and discard duplicates",
            result=resolve_duplicate_group(group, "keep_first"),
        ),
        ResolutionSuggestion(
            strategy="keep_last",
            description="Keep the last occurrence and discard others",
            result=resolve_duplicate_group(group, "keep_last"),
        ),
        ResolutionSuggestion(
            strategy="merge_fields",
            description="Merge all non-empty fields from all duplicates",
            result=resolve_duplicate_group(group, "merge_fields"),
        ),
    ]
