"""
Tests for duplicate detection, similarity scoring and group resolution.
"""
import pytest

from caseload.domain.imports.duplicates import (
    calculate_similarity,
    compare_records,
    detect_duplicates,
    generate_resolution_suggestions,
    levenshtein_distance,
    normalize_value,
    resolve_duplicate_group,
)
from caseload.domain.imports.models import DuplicateDetectionOptions
from caseload.domain.test_cases import TestCaseRecord


def _record(name, row, **fields):
    return TestCaseRecord(test_case=name, source_row=row, **fields)


class TestSimilarity:
    @pytest.mark.parametrize("first,second,expected", [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
        ("flaw", "lawn", 2),
    ])
    def test_levenshtein_distance(self, first, second, expected):
        assert levenshtein_distance(first, second) == expected

    def test_empty_strings_are_identical(self):
        assert calculate_similarity("", "") == 1.0

    def test_one_empty_string_is_dissimilar(self):
        assert calculate_similarity("", "login") == 0.0

    def test_similarity_ratio(self):
        assert calculate_similarity("login flow", "login flaw") == pytest.approx(0.9)

    def test_similarity_is_symmetric(self):
        assert calculate_similarity("checkout", "check out") == calculate_similarity("check out", "checkout")

    def test_normalize_value(self):
        assert normalize_value("  Login  ") == "login"
        assert normalize_value("  Login  ", case_sensitive=True) == "Login"
        assert normalize_value(["a", "B"]) == "a, b"
        assert normalize_value(None) == ""


class TestCompareRecords:
    def test_name_is_compared_exactly(self):
        """Near-identical names never count as a partial match."""
        options = DuplicateDetectionOptions(similarity_threshold=0.5)
        is_match, similarity, fields = compare_records(
            _record("Login test 1", 1), _record("Login test 2", 2), options,
        )
        assert is_match is False
        assert similarity == 0.0
        assert fields == []

    def test_name_match_ignores_case_and_padding(self):
        options = DuplicateDetectionOptions()
        is_match, similarity, fields = compare_records(_record(" TC001 ", 1), _record("tc001", 2), options)
        assert is_match is True
        assert similarity == 1.0
        assert fields == ["test_case"]

    def test_fuzzy_fields_are_averaged(self):
        options = DuplicateDetectionOptions(fields=["test_case", "description"], similarity_threshold=0.8)
        first = _record("TC1", 1, description="login flow")
        second = _record("TC1", 2, description="login flaw")
        is_match, similarity, fields = compare_records(first, second, options)
        assert is_match is True
        assert similarity == pytest.approx(0.95)
        assert fields == ["test_case", "description"]

    def test_comparison_is_symmetric(self):
        options = DuplicateDetectionOptions(fields=["test_case", "description"], similarity_threshold=0.5)
        first = _record("TC1", 1, description="open the settings page")
        second = _record("TC1", 2, description="open settings")
        assert compare_records(first, second, options) == compare_records(second, first, options)


class TestDetectDuplicates:
    def test_repeated_name_forms_one_exact_group(self):
        records = [_record("TC001", 1), _record("TC002", 2), _record("TC001", 3)]

        result = detect_duplicates(records)

        assert len(result.duplicate_groups) == 1
        group = result.duplicate_groups[0]
        assert group.original.source_row == 1
        assert [record.source_row for record in group.duplicates] == [3]
        assert group.match_type == "exact"
        assert group.similarity == 1.0
        assert group.matched_fields == ["test_case"]
        assert [record.source_row for record in result.unique_items] == [2]
        assert result.total_duplicates == 1
        assert result.summary.exact_matches == 1
        assert result.summary.fuzzy_matches == 0
        assert result.summary.unique_items == 1

    def test_every_record_lands_in_exactly_one_place(self):
        records = [_record(name, row) for row, name in enumerate(["a", "b", "a", "c", "b", "a"], start=1)]

        result = detect_duplicates(records)

        seen = [record.source_row for record in result.unique_items]
        for group in result.duplicate_groups:
            seen.append(group.original.source_row)
            seen.extend(record.source_row for record in group.duplicates)
        assert sorted(seen) == [1, 2, 3, 4, 5, 6]
        assert result.total_duplicates == 3

    def test_fuzzy_group(self):
        options = DuplicateDetectionOptions(fields=["test_case", "description"], similarity_threshold=0.8)
        records = [
            _record("TC1", 1, description="login flow"),
            _record("TC1", 2, description="login flaw"),
        ]
        result = detect_duplicates(records, options)
        assert result.duplicate_groups[0].match_type == "fuzzy"
        assert result.summary.fuzzy_matches == 1

    def test_no_duplicates(self):
        result = detect_duplicates([_record("a", 1), _record("b", 2)])
        assert result.duplicate_groups == []
        assert len(result.unique_items) == 2

    def test_empty_input(self):
        result = detect_duplicates([])
        assert result.duplicate_groups == []
        assert result.total_duplicates == 0


class TestResolution:
    @pytest.fixture
    def group(self):
        records = [
            _record("TC001", 1, description="", notes="first", estimated_time=0),
            _record("TC001", 2, description="filled in", notes="second", estimated_time=15),
            _record("TC001", 3, tags=["smoke"]),
        ]
        return detect_duplicates(records).duplicate_groups[0]

    def test_keep_first(self, group):
        assert [record.source_row for record in resolve_duplicate_group(group, "keep_first")] == [1]

    def test_keep_last(self, group):
        assert [record.source_row for record in resolve_duplicate_group(group, "keep_last")] == [3]

    def test_skip_all(self, group):
        assert resolve_duplicate_group(group, "skip_all") == []

    def test_merge_fields_fills_blanks_only(self, group):
        merged = resolve_duplicate_group(group, "merge_fields")[0]
        assert merged.source_row == 1
        assert merged.description == "filled in"
        assert merged.notes == "first"
        assert merged.estimated_time == 15
        assert merged.tags == ["smoke"]

    def test_merge_does_not_mutate_original(self, group):
        resolve_duplicate_group(group, "merge_fields")
        assert group.original.description == ""

    def test_unknown_strategy(self, group):
        with pytest.raises(ValueError):
            resolve_duplicate_group(group, "keep_random")

    def test_suggestions(self, group):
        suggestions = generate_resolution_suggestions(group)
        assert [suggestion.strategy for suggestion in suggestions] == ["keep_first", "keep_last", "merge_fields"]
        assert all(len(suggestion.result) == 1 for suggestion in suggestions)
