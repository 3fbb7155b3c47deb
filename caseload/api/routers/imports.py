"""
Import endpoints: run the pipeline on an uploaded file, pre-validate uploads
and preview validation findings without saving anything.
"""
import logging
from typing import List, Optional, get_args

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from caseload.api.dependencies import get_history_store, get_record_store, get_template_store
from caseload.domain.imports.duplicates import generate_resolution_suggestions
from caseload.domain.imports.history import ImportHistoryStore
from caseload.domain.imports.models import (
    DuplicateDetectionOptions,
    FileValidationResult,
    ImportResult,
    ResolutionStrategy,
    ResolutionSuggestion,
    ValidationResult,
)
from caseload.domain.imports.orchestrator import ImportOptions, ImportProcessor
from caseload.domain.imports.parser import validate_file
from caseload.domain.imports.templates import ImportTemplate, ImportTemplateStore
from caseload.domain.imports.validators import generate_validation_report
from caseload.integrations.record_store import InMemoryRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/imports", tags=["imports"])


class ImportPreviewResponse(BaseModel):
    success: bool
    total_rows: int
    validation: Optional[ValidationResult] = None
    report: str = ""
    resolution_suggestions: List[List[ResolutionSuggestion]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def _resolve_template(template_store: ImportTemplateStore, template_id: Optional[str]) -> Optional[ImportTemplate]:
    if not template_id:
        return None
    template = template_store.get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Import template {template_id} not found")
    return template


def _build_options(
    file: UploadFile,
    content: bytes,
    project_id: str,
    suite_id: Optional[str],
    auto_fix: Optional[bool],
    strict_mode: Optional[bool],
    duplicate_detection: Optional[bool],
    duplicate_strategy: str,
    template: Optional[ImportTemplate],
    delimiter: Optional[str],
) -> ImportOptions:
    if duplicate_strategy not in get_args(ResolutionStrategy):
        raise HTTPException(status_code=400, detail=f"Unknown duplicate strategy: {duplicate_strategy}")
    # Flags left unset fall back to the template settings, then to the option defaults
    overrides = {}
    if auto_fix is not None:
        overrides["auto_fix"] = auto_fix
    if strict_mode is not None:
        overrides["strict_mode"] = strict_mode
    if duplicate_detection is not None:
        overrides["duplicate_detection"] = DuplicateDetectionOptions() if duplicate_detection else None
    return ImportOptions(
        project_id=project_id,
        suite_id=suite_id or None,
        file_name=file.filename,
        file_size=len(content),
        delimiter=delimiter or None,
        template=template,
        duplicate_strategy=duplicate_strategy,
        **overrides,
    )


@router.post("", response_model=ImportResult)
async def import_file(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    suite_id: Optional[str] = Form(None),
    auto_fix: Optional[bool] = Form(None),
    strict_mode: Optional[bool] = Form(None),
    duplicate_detection: Optional[bool] = Form(None),
    duplicate_strategy: str = Form("keep_first"),
    template_id: Optional[str] = Form(None),
    delimiter: Optional[str] = Form(None),
    record_store: InMemoryRecordStore = Depends(get_record_store),
    history_store: ImportHistoryStore = Depends(get_history_store),
    template_store: ImportTemplateStore = Depends(get_template_store),
):
    """
    Import test cases from an uploaded file.

    Parameters:
    - file: CSV, TSV, TXT, JSON or Excel file
    - project_id: Project receiving the test cases
    - suite_id: Optional suite receiving the test cases
    - strict_mode: Block the import when any validation error remains
    - duplicate_strategy: keep_first, keep_last, merge_fields or skip_all
    - template_id: Optional import template to map columns with
    """
    content = await file.read()
    options = _build_options(
        file, content, project_id, suite_id, auto_fix, strict_mode,
        duplicate_detection, duplicate_strategy, _resolve_template(template_store, template_id), delimiter,
    )
    processor = ImportProcessor(
        options,
        record_store=record_store,
        history_store=history_store,
        statistics_provider=record_store.get_suite_statistics,
    )
    result = processor.process_import(content)
    logger.info("Import request for %s finished (success=%s)", file.filename, result.success)
    return result


@router.post("/validate-file", response_model=FileValidationResult)
async def validate_upload(file: UploadFile = File(...)):
    """Check size and extension of an upload before importing it."""
    content = await file.read()
    return validate_file(file.filename or "", len(content))


@router.post("/preview", response_model=ImportPreviewResponse)
async def preview_import(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    strict_mode: Optional[bool] = Form(None),
    template_id: Optional[str] = Form(None),
    template_store: ImportTemplateStore = Depends(get_template_store),
):
    """Run the pipeline without saving and return the validation report and duplicate suggestions."""
    content = await file.read()
    options = _build_options(
        file, content, project_id, None, None, strict_mode,
        None, "keep_first", _resolve_template(template_store, template_id), None,
    )
    result = ImportProcessor(options).process_import(content)

    suggestions: List[List[ResolutionSuggestion]] = []
    if result.duplicates is not None:
        suggestions = [generate_resolution_suggestions(group) for group in result.duplicates.duplicate_groups]

    return ImportPreviewResponse(
        success=result.success,
        total_rows=result.summary.total_rows,
        validation=result.validation,
        report=generate_validation_report(result.validation) if result.validation else "",
        resolution_suggestions=suggestions,
        errors=result.errors,
        warnings=result.warnings,
    )
