"""
Tests for mapping raw rows onto the canonical test case schema.
"""
from datetime import datetime

import pytest

from caseload.domain.imports.mapper import (
    CANDIDATE_KEYS,
    coerce_int,
    coerce_list,
    coerce_text,
    map_row,
    map_rows,
)
from caseload.domain.imports.templates import ColumnMapping, ImportTemplate
from caseload.domain.test_cases import CANONICAL_FIELDS


class TestCandidateKeys:
    def test_canonical_name_and_alias_come_first(self):
        assert CANDIDATE_KEYS["expected_result"][:2] == ("expected_result", "expectedResult")

    def test_synonyms_in_several_cases(self):
        keys = CANDIDATE_KEYS["test_case"]
        assert "Test Case Title" in keys
        assert "test case title" in keys
        assert "TEST CASE TITLE" in keys

    def test_keys_are_unique(self):
        for field in CANONICAL_FIELDS:
            assert len(set(CANDIDATE_KEYS[field])) == len(CANDIDATE_KEYS[field])


class TestCoercion:
    @pytest.mark.parametrize("raw,expected", [
        ("12", 12),
        ("1,500", 1500),
        (7.9, 7),
        ("3.0", 3),
        ("abc", 0),
        ("", 0),
        (None, 0),
        (float("nan"), 0),
        (True, 0),
    ])
    def test_coerce_int(self, raw, expected):
        assert coerce_int(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("smoke, auth ,", ["smoke", "auth"]),
        (["a", " b ", ""], ["a", "b"]),
        ("", []),
        (None, []),
    ])
    def test_coerce_list(self, raw, expected):
        assert coerce_list(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        (None, ""),
        (5.0, "5"),
        (2.5, "2.5"),
        (True, "true"),
        (datetime(2024, 1, 15), "2024-01-15"),
        (datetime(2024, 1, 15, 9, 30), "2024-01-15T09:30:00"),
    ])
    def test_coerce_text(self, raw, expected):
        assert coerce_text(raw) == expected


class TestMapRow:
    def test_every_field_is_populated(self):
        record = map_row({"Test Case": "TC1"}, 0, "proj-1")
        assert record.test_case == "TC1"
        assert record.status == "Not Executed"
        assert record.priority == "P2 (Medium)"
        assert record.last_modified_by == "Import System"
        assert record.tags == []
        assert record.source_row == 1
        assert record.project_id == "proj-1"

    def test_camel_case_and_synonym_headers(self):
        record = map_row({
            "testCase": "TC1",
            "Expected Outcome": "It works",
            "Labels": "smoke,ui",
            "Est Time": "30",
            "Assignee": "qa@example.com",
        }, 4, "proj-1", suite_id="suite-9")

        assert record.test_case == "TC1"
        assert record.expected_result == "It works"
        assert record.tags == ["smoke", "ui"]
        assert record.estimated_time == 30
        assert record.assigned_tester == "qa@example.com"
        assert record.suite_id == "suite-9"
        assert record.source_row == 5

    def test_present_but_empty_value_wins_over_default(self):
        record = map_row({"Test Case": "TC1", "Status": ""}, 0, "proj-1")
        assert record.status == ""

    def test_first_matching_key_wins(self):
        record = map_row({"Name": "from synonym", "test_case": "from canonical"}, 0, "proj-1")
        assert record.test_case == "from canonical"

    def test_map_rows_preserves_order(self):
        records = map_rows([{"Test Case": "A"}, {"Test Case": "B"}], "proj-1")
        assert [(record.test_case, record.source_row) for record in records] == [("A", 1), ("B", 2)]


class TestTemplateMapping:
    @pytest.fixture
    def template(self):
        return ImportTemplate(
            id="custom-test",
            name="Custom",
            column_mappings=[
                ColumnMapping(source_column="Key", target_field="test_case", transformation="uppercase"),
                ColumnMapping(source_column="Run On", target_field="execution_date", transformation="date_format"),
                ColumnMapping(source_column="Owner", target_field="assigned_tester", default_value="unassigned"),
                ColumnMapping(source_column="Name", target_field="skip"),
            ],
        )

    def test_template_columns_and_transformations(self, template):
        record = map_row({"Key": "tc-1", "Run On": "01/15/2024", "Owner": ""}, 0, "proj-1", template=template)
        assert record.test_case == "TC-1"
        assert record.execution_date == "2024-01-15"
        assert record.assigned_tester == "unassigned"

    def test_source_column_matches_case_insensitively(self, template):
        record = map_row({"key": "tc-2"}, 0, "proj-1", template=template)
        assert record.test_case == "TC-2"

    def test_skipped_columns_are_not_auto_mapped(self, template):
        record = map_row({"Name": "ignored"}, 0, "proj-1", template=template)
        assert record.test_case == ""

    def test_unmapped_fields_fall_back_to_candidate_keys(self, template):
        record = map_row({"Key": "tc-3", "Priority": "high"}, 0, "proj-1", template=template)
        assert record.priority == "high"
