"""
Rule-based validation of mapped test cases.

Every record is checked against every rule in order. Violations are returned
as ValidationIssue data with a severity; nothing here raises for bad field
values. Regex presets for emails and URLs live alongside the rule table.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from caseload.core.config import settings
from caseload.domain.test_cases import (
    BUG_STATUS_OPTIONS,
    CATEGORY_OPTIONS,
    DEFECT_PRIORITY_OPTIONS,
    DEFECT_SEVERITY_OPTIONS,
    DEV_STATUS_OPTIONS,
    ENVIRONMENT_OPTIONS,
    NAME_FIELD,
    PLATFORM_OPTIONS,
    PRIORITY_OPTIONS,
    QA_STATUS_OPTIONS,
    STATUS_OPTIONS,
    TEST_LEVEL_OPTIONS,
    TEST_TYPE_OPTIONS,
    TestCaseRecord,
)
from caseload.domain.imports.models import ValidationIssue, ValidationResult, ValidationSummary
from caseload.utils.date import is_valid_date

logger = logging.getLogger(__name__)


# Preset regex patterns for values found inside test case text
PRESET_PATTERNS = {
    "email": r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",
    "url": r"^https?://[^\s/$.?#].[^\s]*$",
    "date_iso": r"^\d{4}-\d{2}-\d{2}$",
}

PRESET_DESCRIPTIONS = {
    "email": "Standard email format (permissive)",
    "url": "HTTP/HTTPS URL",
    "date_iso": "ISO 8601 date (YYYY-MM-DD)",
}

URL_IN_TEXT = re.compile(r"https?://[^\s]+")
PLACEHOLDER_NAMES = ("untitled", "new test", "placeholder")
URL_FIELDS = ("description", "notes", "prerequisites")
ASSIGNEE_FIELDS = ("assigned_tester", "assigned_dev")


def validate_with_preset(
    value: Any,
    preset_name: str,
    allow_null: bool = True
) -> Tuple[bool, Optional[str]]:
    """
    Validate a value against a preset pattern.

    Args:
        value: Value to validate
        preset_name: Name of the preset validator
        allow_null: Whether to allow null/empty values

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_null:
            return True, None
        return False, "Value is required"

    pattern = PRESET_PATTERNS.get(preset_name)
    if pattern is None:
        return False, f"Unknown preset validator: {preset_name}"

    str_val = str(value).strip()
    if not re.match(pattern, str_val):
        description = PRESET_DESCRIPTIONS.get(preset_name)
        return False, f"Value '{str_val}' does not match {description or preset_name} format"
    return True, None


@dataclass
class ValidationRule:
    field: str
    required: bool = False
    predicate: Optional[Callable[[Any], bool]] = None
    message: str = ""
    suggestions: List[str] = field(default_factory=list)
    severity: str = "error"


def _one_of(options: Sequence[str]) -> Callable[[Any], bool]:
    return lambda value: value in options


def _domain_rule(field_name: str, label: str, options: Sequence[str]) -> ValidationRule:
    return ValidationRule(
        field=field_name,
        predicate=_one_of(options),
        message=f"Invalid {label} value",
        suggestions=[f"Valid values: {', '.join(options)}"],
    )


DEFAULT_VALIDATION_RULES: List[ValidationRule] = [
    ValidationRule(
        field=NAME_FIELD,
        required=True,
        predicate=lambda value: isinstance(value, str) and bool(value.strip()),
        message="Test case name is required and cannot be empty",
        suggestions=["Provide a descriptive test case name", "Use format: TC001 - Login Test"],
    ),
    ValidationRule(
        field="description",
        predicate=lambda value: len(str(value)) <= settings.max_description_length,
        message=f"Description is too long (maximum {settings.max_description_length} characters)",
        suggestions=["Keep descriptions concise and focused", 'Move detailed steps to "Steps to Reproduce"'],
    ),
    _domain_rule("status", "status", STATUS_OPTIONS),
    _domain_rule("priority", "priority", PRIORITY_OPTIONS),
    _domain_rule("category", "category", CATEGORY_OPTIONS),
    ValidationRule(
        field="execution_date",
        predicate=is_valid_date,
        message="Invalid date format",
        suggestions=["Use format: YYYY-MM-DD or MM/DD/YYYY", "Example: 2024-01-15 or 01/15/2024"],
    ),
    _domain_rule("environment", "environment", ENVIRONMENT_OPTIONS),
    _domain_rule("platform", "platform", PLATFORM_OPTIONS),
    _domain_rule("qa_status", "QA status", QA_STATUS_OPTIONS),
    _domain_rule("dev_status", "dev status", DEV_STATUS_OPTIONS),
    _domain_rule("bug_status", "bug status", BUG_STATUS_OPTIONS),
    _domain_rule("test_type", "test type", TEST_TYPE_OPTIONS),
    _domain_rule("test_level", "test level", TEST_LEVEL_OPTIONS),
    _domain_rule("defect_severity", "defect severity", DEFECT_SEVERITY_OPTIONS),
    _domain_rule("defect_priority", "defect priority", DEFECT_PRIORITY_OPTIONS),
    ValidationRule(
        field="review_date",
        predicate=is_valid_date,
        message="Invalid date format",
        suggestions=["Use format: YYYY-MM-DD or MM/DD/YYYY"],
    ),
]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _row_number(record: TestCaseRecord, index: int) -> int:
    return record.source_row if record.source_row is not None else index + 1


def _apply_rule(rule: ValidationRule, record: TestCaseRecord, row: int) -> Optional[ValidationIssue]:
    value = getattr(record, rule.field, None)
    if _is_empty(value):
        if not rule.required:
            return None
    elif rule.predicate is None or rule.predicate(value):
        return None
    return ValidationIssue(
        row=row,
        field=rule.field,
        value=value,
        message=rule.message or f"Invalid value for {rule.field}",
        severity=rule.severity,
        suggestions=list(rule.suggestions),
    )


def _quality_issues(record: TestCaseRecord, row: int, min_description_length: int) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    for assignee_field in ASSIGNEE_FIELDS:
        assignee = getattr(record, assignee_field)
        if assignee and "@" in assignee and not validate_with_preset(assignee, "email")[0]:
            issues.append(ValidationIssue(
                row=row,
                field=assignee_field,
                value=assignee,
                message="Assignee looks like an email but format is invalid",
                severity="warning",
                suggestions=["Check email format: user@domain.com"],
            ))

    for text_field in URL_FIELDS:
        text = getattr(record, text_field)
        for url in URL_IN_TEXT.findall(text or ""):
            if not validate_with_preset(url, "url")[0]:
                issues.append(ValidationIssue(
                    row=row,
                    field=text_field,
                    value=url,
                    message="Found potentially invalid URL",
                    severity="warning",
                    suggestions=["Verify URL is accessible", "Ensure proper format: https://example.com"],
                ))

    name = (record.test_case or "").strip().lower()
    if name in PLACEHOLDER_NAMES:
        issues.append(ValidationIssue(
            row=row,
            field=NAME_FIELD,
            value=record.test_case,
            message="Test case name appears to be generic or placeholder",
            severity="warning",
            suggestions=["Use specific, descriptive test case names", "Include the feature being tested"],
        ))

    description = record.description or ""
    if 0 < len(description) < min_description_length:
        issues.append(ValidationIssue(
            row=row,
            field="description",
            value=description,
            message="Description is very short - consider adding more detail",
            severity="info",
            suggestions=["Describe what the test verifies", "Include context about the feature"],
        ))

    if not (record.expected_result or "").strip():
        issues.append(ValidationIssue(
            row=row,
            field="expected_result",
            value=record.expected_result,
            message="Expected result is missing - this is important for test execution",
            severity="warning",
            suggestions=["Describe what should happen when test passes", "Be specific about expected behavior"],
        ))

    return issues


def validate_records(
    records: List[TestCaseRecord],
    rules: Optional[List[ValidationRule]] = None,
    min_description_length: Optional[int] = None,
) -> ValidationResult:
    """
    Check every record against every rule and the data-quality checks.

    Summary counts are distinct rows: ``error_rows`` is the number of rows with
    at least one error, and ``valid_rows`` the remaining rows.
    """
    rules = DEFAULT_VALIDATION_RULES if rules is None else rules
    if min_description_length is None:
        min_description_length = settings.min_description_length

    buckets: Dict[str, List[ValidationIssue]] = {"error": [], "warning": [], "info": []}
    for index, record in enumerate(records):
        row = _row_number(record, index)
        for rule in rules:
            issue = _apply_rule(rule, record, row)
            if issue is not None:
                buckets[issue.severity].append(issue)
        for issue in _quality_issues(record, row, min_description_length):
            buckets[issue.severity].append(issue)

    error_rows = len({issue.row for issue in buckets["error"]})
    warning_rows = len({issue.row for issue in buckets["warning"]})

    result = ValidationResult(
        is_valid=not buckets["error"],
        errors=buckets["error"],
        warnings=buckets["warning"],
        info=buckets["info"],
        summary=ValidationSummary(
            total_rows=len(records),
            valid_rows=len(records) - error_rows,
            error_rows=error_rows,
            warning_rows=warning_rows,
        ),
    )
    logger.info(
        "Validated %d records: %d errors, %d warnings, %d info",
        len(records),
        len(result.errors),
        len(result.warnings),
        len(result.info),
    )
    return result


def generate_validation_report(result: ValidationResult) -> str:
    """Render a plain-text report: row counts, then each error and warning."""
    summary = result.summary
    lines = [
        "Validation Report",
        "=================",
        "",
        f"Total rows: {summary.total_rows}",
        f"Valid rows: {summary.valid_rows}",
        f"Rows with errors: {summary.error_rows}",
        f"Rows with warnings: {summary.warning_rows}",
        "",
    ]

    for title, issues in (("Errors", result.errors), ("Warnings", result.warnings)):
        if not issues:
            continue
        lines.append(f"{title} ({len(issues)}):")
        lines.extend(f"- Row {issue.row}, {issue.field}: {issue.message}" for issue in issues)
        lines.append("")

    return "\n".join(lines)
