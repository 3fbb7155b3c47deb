"""
Tests for import templates: built-ins, detection, custom CRUD and persistence.
"""
import pytest
from pydantic import ValidationError

from caseload.domain.imports.templates import (
    ColumnMapping,
    ImportTemplateStore,
    TemplateDraft,
    apply_transformation,
)


def _draft(name="My Export"):
    return TemplateDraft(
        name=name,
        description="Exports from our spreadsheet",
        column_mappings=[
            ColumnMapping(source_column="Case", target_field="test_case", required=True),
            ColumnMapping(source_column="Result", target_field="status", transformation="normalize_status"),
        ],
    )


class TestBuiltInTemplates:
    def test_defaults_are_listed_first(self, template_store):
        template_store.create_template(_draft(name="AAA custom"))
        templates = template_store.get_all_templates()
        assert [template.is_default for template in templates] == [True] * 4 + [False]
        assert {template.id for template in templates[:4]} == {
            "jira-export", "azure-devops", "testrail-export", "generic-csv",
        }

    def test_defaults_cannot_be_changed(self, template_store):
        assert template_store.delete_template("jira-export") is False
        assert template_store.update_template("jira-export", {"name": "Mine"}) is None
        assert template_store.get_template("jira-export").name == "Jira Test Export"


class TestDetection:
    def test_detects_jira_export(self, template_store):
        headers = ["Issue key", "Summary", "Status", "Priority", "Issue Type", "Assignee"]
        assert template_store.detect_best_template(headers).id == "jira-export"

    def test_no_match_below_threshold(self, template_store):
        assert template_store.detect_best_template(["foo", "bar"]) is None

    def test_empty_headers(self, template_store):
        assert template_store.detect_best_template([]) is None


class TestCustomTemplates:
    def test_create_get_update_delete(self, template_store):
        created = template_store.create_template(_draft())
        assert created.id.startswith("custom-")
        assert created.is_default is False
        assert template_store.get_template(created.id).name == "My Export"

        updated = template_store.update_template(created.id, {"name": "Renamed", "id": "hijack"})
        assert updated.id == created.id
        assert updated.name == "Renamed"
        assert updated.updated_at >= created.updated_at

        assert template_store.delete_template(created.id) is True
        assert template_store.get_template(created.id) is None

    def test_duplicate_template(self, template_store):
        copy = template_store.duplicate_template("jira-export")
        assert copy.name == "Jira Test Export (Copy)"
        assert copy.is_default is False
        assert len(copy.column_mappings) == len(template_store.get_template("jira-export").column_mappings)

    def test_duplicate_unknown_template(self, template_store):
        assert template_store.duplicate_template("missing") is None

    def test_generate_from_sample(self, template_store):
        template = template_store.generate_template_from_sample(
            ["Test Case", "Summary", "Status", "Mystery Column"], name="From sample",
        )
        targets = {mapping.source_column: mapping for mapping in template.column_mappings}
        assert targets["Test Case"].target_field == "test_case"
        assert targets["Test Case"].required is True
        assert targets["Summary"].target_field == "description"
        assert targets["Status"].transformation == "normalize_status"
        assert targets["Mystery Column"].target_field == "skip"

    def test_invalid_target_field_is_rejected(self):
        with pytest.raises(ValidationError):
            ColumnMapping(source_column="X", target_field="not_a_field")

    def test_invalid_transformation_is_rejected(self):
        with pytest.raises(ValidationError):
            ColumnMapping(source_column="X", target_field="notes", transformation="reverse")


class TestPersistence:
    def test_custom_templates_survive_a_new_store(self, tmp_path):
        path = tmp_path / "templates.json"
        created = ImportTemplateStore(path).create_template(_draft())

        reloaded = ImportTemplateStore(path)

        assert reloaded.get_template(created.id).name == "My Export"
        assert len(reloaded.get_all_templates()) == 5

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "templates.json"
        path.write_text("{broken", encoding="utf-8")
        assert len(ImportTemplateStore(path).get_all_templates()) == 4


class TestTransformations:
    @pytest.mark.parametrize("value,name,expected", [
        ("tc-1", "uppercase", "TC-1"),
        ("TC-1", "lowercase", "tc-1"),
        ("  x  ", "trim", "x"),
        ("ui", "normalize_category", "UI/UX"),
        ("Unknown Area", "normalize_category", "Unknown Area"),
        ("Closed", "normalize_azure_status", "Pass"),
        ("Removed", "normalize_azure_status", "Blocked"),
        ("failed", "normalize_status", "Fail"),
        ("2024-01-15T10:00:00Z", "date_format", "2024-01-15"),
        ("not a date", "date_format", "not a date"),
        ("", "uppercase", ""),
        ("keep", None, "keep"),
    ])
    def test_apply_transformation(self, value, name, expected):
        assert apply_transformation(value, name) == expected
