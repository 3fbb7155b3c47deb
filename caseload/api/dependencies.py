"""
Shared dependencies for the API.

The stores are created once in the application lifespan and kept on
``app.state``; these helpers hand them to the routers.
"""
from fastapi import HTTPException, Request

from caseload.domain.imports.history import ImportHistoryStore
from caseload.domain.imports.rollback import RollbackManager
from caseload.domain.imports.templates import ImportTemplateStore
from caseload.integrations.record_store import InMemoryRecordStore


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"Service not initialized: {name}")
    return value


def get_history_store(request: Request) -> ImportHistoryStore:
    return _state_attr(request, "history_store")


def get_template_store(request: Request) -> ImportTemplateStore:
    return _state_attr(request, "template_store")


def get_record_store(request: Request) -> InMemoryRecordStore:
    return _state_attr(request, "record_store")


def get_rollback_manager(request: Request) -> RollbackManager:
    return RollbackManager(get_history_store(request))
