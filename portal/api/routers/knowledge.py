from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from portal.api.deps import get_access_context, require_perm
from portal.domain.access import AccessContext
from portal.domain.models import (
    FileCreate,
    FileRead,
    FileUpdate,
    FolderCreate,
    FolderNodeRead,
    FolderPathEntry,
    FolderRead,
    FolderTreeRead,
    FolderUpdate,
)
from portal.domain.permissions import PERM_KNOWLEDGE_READ, PERM_KNOWLEDGE_WRITE
from portal.infra.audit import set_audit_context
from portal.services.identity_service import AuthError, IdentityService
from portal.services.knowledge_service import (
    ConflictError,
    KnowledgeService,
    NotFoundError,
    PermissionDeniedError,
)

router = APIRouter()


def get_knowledge_service() -> KnowledgeService:
    return KnowledgeService()


Service = Annotated[KnowledgeService, Depends(get_knowledge_service)]
Caller = Annotated[AccessContext, Depends(get_access_context)]


def _handle_knowledge_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, PermissionDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


def _viewer(caller: AccessContext, employee_id: int | None) -> AccessContext:
    if employee_id is None or employee_id == caller.employee_id:
        return caller
    if not caller.principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="only administrators may view as another employee",
        )
    try:
        return IdentityService().load_access(employee_id)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="employee not found") from exc


@router.get(
    "/folders/tree",
    response_model=FolderTreeRead,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_READ))],
)
def get_tree(caller: Caller, service: Service, employee_id: int | None = None) -> FolderTreeRead:
    return service.get_tree(_viewer(caller, employee_id))


@router.get(
    "/folders/{folder_id}",
    response_model=FolderNodeRead,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_READ))],
)
def get_folder(folder_id: int, caller: Caller, service: Service) -> FolderNodeRead:
    try:
        return service.get_folder(caller, folder_id)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise


@router.get(
    "/folders/{folder_id}/path",
    response_model=list[FolderPathEntry],
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_READ))],
)
def get_folder_path(folder_id: int, caller: Caller, service: Service) -> list[FolderPathEntry]:
    try:
        return service.folder_path(caller, folder_id)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise


@router.post(
    "/folders",
    response_model=FolderRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def create_folder(payload: FolderCreate, request: Request, caller: Caller, service: Service) -> FolderRead:
    try:
        folder = service.create_folder(caller, payload)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise
    set_audit_context(request, action="knowledge.folder.create", resource=f"knowledge_folder:{folder.id}")
    return FolderRead.model_validate(folder)


@router.put(
    "/folders/{folder_id}",
    response_model=FolderRead,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def update_folder(
    folder_id: int,
    payload: FolderUpdate,
    request: Request,
    caller: Caller,
    service: Service,
) -> FolderRead:
    set_audit_context(request, action="knowledge.folder.update", resource=f"knowledge_folder:{folder_id}")
    try:
        return FolderRead.model_validate(service.update_folder(caller, folder_id, payload))
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise


@router.delete(
    "/folders/{folder_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def delete_folder(folder_id: int, request: Request, caller: Caller, service: Service) -> Response:
    set_audit_context(request, action="knowledge.folder.delete", resource=f"knowledge_folder:{folder_id}")
    try:
        service.delete_folder(caller, folder_id)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/files",
    response_model=FileRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def create_file(payload: FileCreate, request: Request, caller: Caller, service: Service) -> FileRead:
    try:
        item = service.create_file(caller, payload)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise
    set_audit_context(request, action="knowledge.file.create", resource=f"knowledge_file:{item.id}")
    return FileRead.model_validate(item)


@router.put(
    "/files/{file_id}",
    response_model=FileRead,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def update_file(file_id: int, payload: FileUpdate, request: Request, caller: Caller, service: Service) -> FileRead:
    set_audit_context(request, action="knowledge.file.update", resource=f"knowledge_file:{file_id}")
    try:
        return FileRead.model_validate(service.update_file(caller, file_id, payload))
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise


@router.delete(
    "/files/{file_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_KNOWLEDGE_WRITE))],
)
def delete_file(file_id: int, request: Request, caller: Caller, service: Service) -> Response:
    set_audit_context(request, action="knowledge.file.delete", resource=f"knowledge_file:{file_id}")
    try:
        service.delete_file(caller, file_id)
    except (NotFoundError, PermissionDeniedError, ConflictError) as exc:
        _handle_knowledge_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
