"""
Import templates: saved column mappings for exports of common test tools.

A template maps source column names to canonical fields and may name a value
transformation per column. Built-in templates are read-only; custom templates
are kept in a JSON file when the store is given a path.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator

from caseload.domain.test_cases import CANONICAL_FIELDS
from caseload.utils.date import format_iso_date
from .autofix import AZURE_STATUS_SYNONYMS, CATEGORY_SYNONYMS, STATUS_SYNONYMS, lookup_synonym

logger = logging.getLogger(__name__)

SKIP_TARGET = "skip"
TRANSFORMATIONS = (
    "uppercase",
    "lowercase",
    "trim",
    "normalize_category",
    "normalize_azure_status",
    "normalize_status",
    "date_format",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ColumnMapping(BaseModel):
    source_column: str
    target_field: str
    transformation: Optional[str] = None
    default_value: Optional[str] = None
    required: bool = False

    @field_validator("target_field")
    @classmethod
    def _known_target(cls, value: str) -> str:
        if value != SKIP_TARGET and value not in CANONICAL_FIELDS:
            raise ValueError(f"Unknown target field: {value}")
        return value

    @field_validator("transformation")
    @classmethod
    def _known_transformation(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in TRANSFORMATIONS:
            raise ValueError(f"Unknown transformation: {value}")
        return value


class TemplateSettings(BaseModel):
    """
    Run defaults carried by a template.

    ``auto_fix``, ``strict_validation`` and ``duplicate_detection`` seed the
    matching ImportOptions fields when the caller leaves them unset. The
    remaining flags describe the source tool's export and are informational.
    """
    skip_empty_rows: bool = True
    trim_whitespace: bool = True
    normalize_status: bool = True
    normalize_priority: bool = True
    normalize_category: bool = True
    duplicate_detection: bool = True
    auto_fix: bool = True
    strict_validation: bool = False


class ImportTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    source: str = "Custom"
    column_mappings: List[ColumnMapping] = Field(default_factory=list)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)
    is_default: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def mappings_for(self, field: str) -> List[ColumnMapping]:
        return [mapping for mapping in self.column_mappings if mapping.target_field == field]


class TemplateDraft(BaseModel):
    """Fields a caller supplies when creating a custom template."""
    name: str
    description: str = ""
    source: str = "Custom"
    column_mappings: List[ColumnMapping] = Field(default_factory=list)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)


def _mapping(source: str, target: str, required: bool = False, transformation: Optional[str] = None) -> ColumnMapping:
    return ColumnMapping(
        source_column=source,
        target_field=target,
        required=required,
        transformation=transformation,
    )


DEFAULT_IMPORT_TEMPLATES: List[ImportTemplate] = [
    ImportTemplate(
        id="jira-export",
        name="Jira Test Export",
        description="Standard Jira test case export format",
        source="Jira",
        column_mappings=[
            _mapping("Issue key", "test_case", required=True),
            _mapping("Summary", "description", required=True),
            _mapping("Status", "status"),
            _mapping("Priority", "priority"),
            _mapping("Issue Type", "category", transformation="normalize_category"),
            _mapping("Assignee", "assigned_tester"),
            _mapping("Description", "steps_to_reproduce"),
            _mapping("Environment", "environment"),
        ],
        is_default=True,
    ),
    ImportTemplate(
        id="azure-devops",
        name="Azure DevOps Test Cases",
        description="Azure DevOps test case export format",
        source="Azure DevOps",
        column_mappings=[
            _mapping("ID", "test_case", required=True),
            _mapping("Title", "description", required=True),
            _mapping("State", "status", transformation="normalize_azure_status"),
            _mapping("Priority", "priority"),
            _mapping("Test Suite", "category"),
            _mapping("Assigned To", "assigned_tester"),
            _mapping("Steps", "steps_to_reproduce"),
            _mapping("Expected Result", "expected_result"),
        ],
        settings=TemplateSettings(normalize_category=False),
        is_default=True,
    ),
    ImportTemplate(
        id="testrail-export",
        name="TestRail Export",
        description="TestRail test case export format",
        source="TestRail",
        column_mappings=[
            _mapping("ID", "test_case", required=True),
            _mapping("Title", "description", required=True),
            _mapping("Status", "status"),
            _mapping("Priority", "priority"),
            _mapping("Type", "category"),
            _mapping("Steps", "steps_to_reproduce"),
            _mapping("Expected Result", "expected_result"),
            _mapping("Preconditions", "prerequisites"),
        ],
        is_default=True,
    ),
    ImportTemplate(
        id="generic-csv",
        name="Generic CSV Template",
        description="Basic CSV template with common fields",
        source="Custom",
        column_mappings=[
            _mapping("Test Case", "test_case", required=True),
            _mapping("Description", "description", required=True),
            _mapping("Steps", "steps_to_reproduce"),
            _mapping("Expected Result", "expected_result"),
            _mapping("Status", "status"),
            _mapping("Priority", "priority"),
            _mapping("Category", "category"),
            _mapping("Assigned To", "assigned_tester"),
        ],
        is_default=True,
    ),
]

# header (lower-cased) -> (target field, required); used when generating templates
SAMPLE_HEADER_TARGETS: Dict[str, tuple] = {
    "test case": ("test_case", True),
    "test case id": ("test_case", True),
    "test case name": ("test_case", True),
    "id": ("test_case", True),
    "title": ("test_case", True),
    "name": ("test_case", True),
    "description": ("description", True),
    "summary": ("description", True),
    "steps": ("steps_to_reproduce", False),
    "test steps": ("steps_to_reproduce", False),
    "steps to reproduce": ("steps_to_reproduce", False),
    "expected result": ("expected_result", False),
    "expected": ("expected_result", False),
    "status": ("status", False),
    "priority": ("priority", False),
    "category": ("category", False),
    "type": ("category", False),
    "assigned to": ("assigned_tester", False),
    "assignee": ("assigned_tester", False),
    "tester": ("assigned_tester", False),
    "environment": ("environment", False),
    "platform": ("platform", False),
    "notes": ("notes", False),
    "comments": ("notes", False),
    "prerequisites": ("prerequisites", False),
    "preconditions": ("prerequisites", False),
}


def apply_transformation(value: Any, transformation: Optional[str]) -> Any:
    """Apply a named template transformation; unknown names and empty values pass through."""
    if not transformation or value is None or value == "":
        return value

    text = str(value)
    if transformation == "uppercase":
        return text.upper()
    if transformation == "lowercase":
        return text.lower()
    if transformation == "trim":
        return text.strip()
    if transformation == "normalize_category":
        return lookup_synonym(text, CATEGORY_SYNONYMS) or text
    if transformation == "normalize_azure_status":
        return lookup_synonym(text, AZURE_STATUS_SYNONYMS) or text
    if transformation == "normalize_status":
        return lookup_synonym(text, STATUS_SYNONYMS) or text
    if transformation == "date_format":
        return format_iso_date(text) or text
    return value


class ImportTemplateStore:
    """
    Registry of built-in and custom import templates.

    Custom templates are loaded from ``path`` at construction and written back
    after every mutation. Without a path the store lives in memory only.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._templates: Dict[str, ImportTemplate] = {
            template.id: template.model_copy(deep=True) for template in DEFAULT_IMPORT_TEMPLATES
        }
        self._load()

    def _load(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to load import templates from %s: %s", self.path, e)
            return
        for item in payload:
            template = ImportTemplate.model_validate(item)
            template.is_default = False
            self._templates[template.id] = template
        logger.info("Loaded %d custom import templates from %s", len(payload), self.path)

    def _save(self) -> None:
        if not self.path:
            return
        custom = [
            template.model_dump(mode="json")
            for template in self._templates.values()
            if not template.is_default
        ]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(custom, indent=2), encoding="utf-8")

    def get_all_templates(self) -> List[ImportTemplate]:
        return sorted(
            self._templates.values(),
            key=lambda template: (not template.is_default, template.name.lower()),
        )

    def get_template(self, template_id: str) -> Optional[ImportTemplate]:
        return self._templates.get(template_id)

    def create_template(self, draft: TemplateDraft) -> ImportTemplate:
        template = ImportTemplate(
            id=f"custom-{uuid.uuid4().hex[:12]}",
            is_default=False,
            **draft.model_dump(),
        )
        self._templates[template.id] = template
        self._save()
        logger.info("Created import template %s (%s)", template.id, template.name)
        return template

    def update_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[ImportTemplate]:
        """Update a custom template. Built-in templates cannot be changed."""
        existing = self._templates.get(template_id)
        if existing is None or existing.is_default:
            return None

        data = existing.model_dump()
        data.update({key: value for key, value in updates.items() if key not in ("id", "is_default", "created_at")})
        data["updated_at"] = _utcnow()
        updated = ImportTemplate.model_validate(data)
        self._templates[template_id] = updated
        self._save()
        return updated

    def delete_template(self, template_id: str) -> bool:
        existing = self._templates.get(template_id)
        if existing is None or existing.is_default:
            return False
        del self._templates[template_id]
        self._save()
        return True

    def duplicate_template(self, template_id: str, new_name: Optional[str] = None) -> Optional[ImportTemplate]:
        original = self._templates.get(template_id)
        if original is None:
            return None
        return self.create_template(
            TemplateDraft(
                name=new_name or f"{original.name} (Copy)",
                description=f"Copy of {original.description}",
                source=original.source,
                column_mappings=[mapping.model_copy() for mapping in original.column_mappings],
                settings=original.settings.model_copy(),
            )
        )

    def detect_best_template(self, headers: Sequence[str]) -> Optional[ImportTemplate]:
        """
        Pick the template whose source columns best match ``headers``.

        Exact header matches score 3 (required) or 2 (optional); substring
        matches score 2 or 1. A bonus of twice the matched-column ratio is
        added. Nothing is returned unless the best score exceeds 3.
        """
        normalized = [str(header).lower().strip() for header in headers]
        best: Optional[ImportTemplate] = None
        best_score = 0.0

        for template in self._templates.values():
            if not template.column_mappings:
                continue
            score = 0.0
            matched = 0
            for mapping in template.column_mappings:
                source = mapping.source_column.lower().strip()
                if source in normalized:
                    score += 3 if mapping.required else 2
                    matched += 1
                    continue
                if any(header and (source in header or header in source) for header in normalized):
                    score += 2 if mapping.required else 1
                    matched += 1

            score += (matched / len(template.column_mappings)) * 2
            if score > best_score:
                best_score = score
                best = template

        if best is not None and best_score > 3:
            logger.debug("Detected import template %s (score %.2f)", best.id, best_score)
            return best
        return None

    def generate_template_from_sample(
        self,
        headers: Sequence[str],
        name: str,
        description: str = "",
    ) -> ImportTemplate:
        """Create and store a custom template guessed from a header row."""
        mappings: List[ColumnMapping] = []
        for header in headers:
            target, required = SAMPLE_HEADER_TARGETS.get(str(header).lower().strip(), (SKIP_TARGET, False))
            mappings.append(
                ColumnMapping(
                    source_column=str(header),
                    target_field=target,
                    required=required,
                    transformation="normalize_status" if target == "status" else None,
                )
            )
        return self.create_template(
            TemplateDraft(name=name, description=description, column_mappings=mappings)
        )
