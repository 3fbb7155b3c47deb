from typing import List, Optional

from pydantic import BaseModel, Field

from caseload.domain.imports.models import ImportSession, RollbackOutcome
from caseload.domain.imports.templates import ImportTemplate


class ImportHistoryListResponse(BaseModel):
    """Response for import history list"""
    success: bool
    imports: List[ImportSession]
    total_count: int
    limit: int
    offset: int


class ImportHistoryDetailResponse(BaseModel):
    success: bool
    import_session: ImportSession


class ImportHistoryLoadResponse(BaseModel):
    """Result of loading previously exported sessions"""
    success: bool
    imported: int
    errors: List[str] = Field(default_factory=list)


class ClearHistoryResponse(BaseModel):
    success: bool
    removed: int


class RollbackResponse(BaseModel):
    success: bool
    session_id: str
    outcome: RollbackOutcome


class TemplateListResponse(BaseModel):
    success: bool
    templates: List[ImportTemplate]


class TemplateDetectionRequest(BaseModel):
    headers: List[str]


class TemplateDetectionResponse(BaseModel):
    success: bool
    template: Optional[ImportTemplate] = None
