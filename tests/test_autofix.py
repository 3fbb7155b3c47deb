"""
Tests for the auto-fixer: synonym normalization, trimming, defaults and the
audit trail of applied fixes.
"""
import pytest

from caseload.domain.imports.autofix import (
    PRIORITY_SYNONYMS,
    STATUS_SYNONYMS,
    AutoFixOptions,
    auto_fix_records,
    lookup_synonym,
)
from caseload.domain.test_cases import TestCaseRecord


@pytest.mark.parametrize("raw,expected", [
    ("passed", "Pass"),
    ("PASS", "Pass"),
    ("failure", "Fail"),
    ("pending", "Not Executed"),
    ("not_started", "Not Executed"),
    ("running", "In Progress"),
    ("stuck", "Blocked"),
])
def test_status_synonyms(raw, expected):
    assert lookup_synonym(raw, STATUS_SYNONYMS) == expected


@pytest.mark.parametrize("raw,expected", [
    ("critical", "P0 (Blocker)"),
    ("urgent", "P0 (Blocker)"),
    ("High", "P1 (High)"),
    ("normal", "P2 (Medium)"),
    ("trivial", "P3 (Low)"),
    ("p1 (high)", "P1 (High)"),
])
def test_priority_synonyms(raw, expected):
    assert lookup_synonym(raw, PRIORITY_SYNONYMS) == expected


def test_unknown_value_has_no_synonym():
    assert lookup_synonym("sometimes", STATUS_SYNONYMS) is None
    assert lookup_synonym(None, STATUS_SYNONYMS) is None


class TestAutoFixRecords:
    def test_normalizes_and_logs_each_change(self):
        record = TestCaseRecord(test_case="TC1", status="passed", priority="high", category="ui", source_row=4)

        result = auto_fix_records([record])

        assert record.status == "Pass"
        assert record.priority == "P1 (High)"
        assert record.category == "UI/UX"
        assert result.fixes_applied == [
            'Row 4: Normalized status from "passed" to "Pass"',
            'Row 4: Normalized priority from "high" to "P1 (High)"',
            'Row 4: Normalized category from "ui" to "UI/UX"',
        ]

    def test_trims_text_fields(self):
        record = TestCaseRecord(test_case="  TC1 ", description="Checks login ")
        result = auto_fix_records([record])
        assert record.test_case == "TC1"
        assert "Row 1: Trimmed whitespace from test_case" in result.fixes_applied
        assert "Row 1: Trimmed whitespace from description" in result.fixes_applied

    def test_unknown_values_are_left_for_validation(self):
        record = TestCaseRecord(test_case="TC1", status="sometimes")
        result = auto_fix_records([record])
        assert record.status == "sometimes"
        assert result.fixes_applied == []

    def test_defaults_only_when_requested(self):
        record = TestCaseRecord(test_case="TC1", status="", priority="", category="")

        assert auto_fix_records([record]).fixes_applied == []

        result = auto_fix_records([record], AutoFixOptions(generate_missing_fields=True))
        assert (record.status, record.priority, record.category) == ("Not Executed", "P2 (Medium)", "Other")
        assert 'Row 1: Set default status to "Not Executed"' in result.fixes_applied

    def test_fixing_is_idempotent(self):
        records = [
            TestCaseRecord(test_case=" TC1", status="failed", priority="low", category="calls"),
            TestCaseRecord(test_case="TC2", status="", priority="", category=""),
        ]
        options = AutoFixOptions(generate_missing_fields=True)

        first = auto_fix_records(records, options)
        snapshot = [record.model_dump() for record in first.records]
        second = auto_fix_records(first.records, options)

        assert first.fixes_applied
        assert second.fixes_applied == []
        assert [record.model_dump() for record in second.records] == snapshot

    def test_disabled_repairs(self):
        record = TestCaseRecord(test_case=" TC1 ", status="passed")
        options = AutoFixOptions(trim_whitespace=False, normalize_status=False)
        assert auto_fix_records([record], options).fixes_applied == []
        assert record.status == "passed"
