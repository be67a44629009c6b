from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from portal.api.deps import get_access_context, require_any_perm
from portal.domain.access import AccessContext
from portal.domain.models import (
    SelectionCollapseRequest,
    SelectionExpandRequest,
    SelectionOptionsRead,
    SelectionRead,
)
from portal.domain.permissions import PERM_KNOWLEDGE_WRITE, PERM_ORG_READ
from portal.services.selection_service import InvalidSelectionError, SelectionService

router = APIRouter()


def get_selection_service() -> SelectionService:
    return SelectionService()


Service = Annotated[SelectionService, Depends(get_selection_service)]
Caller = Annotated[AccessContext, Depends(get_access_context)]


def _handle_selection_error(exc: Exception) -> None:
    if isinstance(exc, InvalidSelectionError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    raise exc


@router.post(
    "/selection/expand",
    response_model=SelectionRead,
    dependencies=[Depends(require_any_perm(PERM_ORG_READ, PERM_KNOWLEDGE_WRITE))],
)
def expand_selection(payload: SelectionExpandRequest, caller: Caller, service: Service) -> SelectionRead:
    try:
        return service.expand(caller, payload)
    except InvalidSelectionError as exc:
        _handle_selection_error(exc)
        raise


@router.post(
    "/selection/collapse",
    response_model=SelectionRead,
    dependencies=[Depends(require_any_perm(PERM_ORG_READ, PERM_KNOWLEDGE_WRITE))],
)
def collapse_selection(payload: SelectionCollapseRequest, caller: Caller, service: Service) -> SelectionRead:
    return service.collapse(caller, payload)


@router.get(
    "/selection/options",
    response_model=SelectionOptionsRead,
    dependencies=[Depends(require_any_perm(PERM_ORG_READ, PERM_KNOWLEDGE_WRITE))],
)
def selection_options(
    caller: Caller,
    service: Service,
    branch_ids: Annotated[list[int] | None, Query()] = None,
    branch_query: str = "",
    department_query: str = "",
) -> SelectionOptionsRead:
    return service.options(
        caller,
        branch_ids or [],
        branch_query=branch_query,
        department_query=department_query,
    )
