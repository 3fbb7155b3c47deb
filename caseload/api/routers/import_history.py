"""
Import history endpoints for auditing and rolling back imports.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from caseload.api.dependencies import get_history_store, get_record_store, get_rollback_manager
from caseload.api.schemas.shared import (
    ClearHistoryResponse,
    ImportHistoryDetailResponse,
    ImportHistoryListResponse,
    ImportHistoryLoadResponse,
    RollbackResponse,
)
from caseload.domain.imports.exceptions import (
    RollbackDeleteError,
    RollbackNotAllowedError,
    RollbackStatsRestoreError,
    RollbackStatusError,
    SessionNotFoundError,
)
from caseload.domain.imports.history import ImportHistoryStore
from caseload.domain.imports.models import (
    ImportHistoryFilters,
    ImportStatistics,
    RollbackPreview,
    SessionStatus,
)
from caseload.domain.imports.rollback import RollbackManager
from caseload.integrations.record_store import InMemoryRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import-history", tags=["import-history"])


@router.get("", response_model=ImportHistoryListResponse)
async def list_import_history(
    project_id: Optional[str] = None,
    suite_id: Optional[str] = None,
    status: Optional[SessionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    file_name: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    """
    List import sessions, most recent first.

    Parameters:
    - project_id / suite_id: Filter by destination
    - status: completed, partial, failed or rolled_back
    - date_from / date_to: Inclusive timestamp window
    - file_name: Case-insensitive substring of the file name
    - limit / offset: Pagination
    """
    sessions = history_store.list_sessions(ImportHistoryFilters(
        project_id=project_id,
        suite_id=suite_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        file_name=file_name,
    ))
    page = sessions[offset:offset + limit]
    return ImportHistoryListResponse(
        success=True,
        imports=page,
        total_count=len(sessions),
        limit=limit,
        offset=offset,
    )


@router.get("/statistics", response_model=ImportStatistics)
async def get_import_statistics(
    project_id: Optional[str] = None,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    """Aggregate counts, processing times, common errors and file types."""
    return history_store.get_statistics(project_id)


@router.get("/export")
async def export_import_history(
    project_id: Optional[str] = None,
    status: Optional[SessionStatus] = None,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    payload = history_store.export_history(ImportHistoryFilters(project_id=project_id, status=status))
    return Response(content=payload, media_type="application/json")


@router.post("/import", response_model=ImportHistoryLoadResponse)
async def load_import_history(
    request: Request,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    """Load sessions from a previous export; invalid sessions are reported, not fatal."""
    body = await request.body()
    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Request body must be UTF-8 encoded JSON")
    imported, errors = history_store.import_history(payload)
    return ImportHistoryLoadResponse(success=not errors, imported=imported, errors=errors)


@router.delete("", response_model=ClearHistoryResponse)
async def clear_import_history(
    older_than: Optional[datetime] = None,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    removed = history_store.clear_history(older_than)
    return ClearHistoryResponse(success=True, removed=removed)


@router.get("/{session_id}", response_model=ImportHistoryDetailResponse)
async def get_import_detail(
    session_id: str,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    session = history_store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Import {session_id} not found")
    return ImportHistoryDetailResponse(success=True, import_session=session)


@router.delete("/{session_id}")
async def delete_import_session(
    session_id: str,
    history_store: ImportHistoryStore = Depends(get_history_store),
):
    if not history_store.delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Import {session_id} not found")
    return {"success": True, "session_id": session_id}


@router.get("/{session_id}/rollback-preview", response_model=RollbackPreview)
async def get_rollback_preview(
    session_id: str,
    rollback_manager: RollbackManager = Depends(get_rollback_manager),
):
    try:
        return rollback_manager.get_rollback_preview(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{session_id}/rollback", response_model=RollbackResponse)
async def rollback_import_session(
    session_id: str,
    rollback_manager: RollbackManager = Depends(get_rollback_manager),
    record_store: InMemoryRecordStore = Depends(get_record_store),
):
    """
    Delete every record created by an import and restore prior suite statistics.

    Responds 404 for unknown sessions, 409 when the session cannot be rolled
    back, 502 when deleting records fails and 500 when statistics could not be
    restored.
    """
    try:
        outcome = rollback_manager.rollback_import(
            session_id,
            delete_records=record_store.delete_many,
            restore_statistics=record_store.restore_suite_statistics,
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RollbackNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RollbackDeleteError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except RollbackStatsRestoreError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except RollbackStatusError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return RollbackResponse(success=True, session_id=session_id, outcome=outcome)
