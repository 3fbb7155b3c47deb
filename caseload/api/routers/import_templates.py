"""
Import template endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException

from caseload.api.dependencies import get_template_store
from caseload.api.schemas.shared import (
    TemplateDetectionRequest,
    TemplateDetectionResponse,
    TemplateListResponse,
)
from caseload.domain.imports.templates import ImportTemplate, ImportTemplateStore, TemplateDraft

router = APIRouter(prefix="/import-templates", tags=["import-templates"])


@router.get("", response_model=TemplateListResponse)
async def list_templates(template_store: ImportTemplateStore = Depends(get_template_store)):
    """Built-in templates first, then custom templates, each sorted by name."""
    return TemplateListResponse(success=True, templates=template_store.get_all_templates())


@router.post("/detect", response_model=TemplateDetectionResponse)
async def detect_template(
    request: TemplateDetectionRequest,
    template_store: ImportTemplateStore = Depends(get_template_store),
):
    template = template_store.detect_best_template(request.headers)
    return TemplateDetectionResponse(success=True, template=template)


@router.post("", response_model=ImportTemplate, status_code=201)
async def create_template(
    draft: TemplateDraft,
    template_store: ImportTemplateStore = Depends(get_template_store),
):
    return template_store.create_template(draft)


@router.get("/{template_id}", response_model=ImportTemplate)
async def get_template(template_id: str, template_store: ImportTemplateStore = Depends(get_template_store)):
    template = template_store.get_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Import template {template_id} not found")
    return template


@router.delete("/{template_id}")
async def delete_template(template_id: str, template_store: ImportTemplateStore = Depends(get_template_store)):
    if not template_store.delete_template(template_id):
        raise HTTPException(status_code=404, detail=f"Custom import template {template_id} not found")
    return {"success": True, "template_id": template_id}
