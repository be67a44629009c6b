from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from portal.api.deps import get_access_context, require_perm
from portal.domain.access import AccessContext
from portal.domain.models import (
    BranchCreate,
    BranchDepartmentCreate,
    BranchDepartmentRead,
    BranchRead,
    DepartmentCreate,
    DepartmentRead,
    EmployeeCreate,
    EmployeeRead,
    LinkIdsUpdate,
)
from portal.domain.permissions import PERM_ORG_READ, PERM_ORG_WRITE
from portal.services.org_service import ConflictError, NotFoundError, OrgService

router = APIRouter()


def get_org_service() -> OrgService:
    return OrgService()


Service = Annotated[OrgService, Depends(get_org_service)]
Caller = Annotated[AccessContext, Depends(get_access_context)]


def _handle_org_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise exc


@router.post(
    "/branches",
    response_model=BranchRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_branch(payload: BranchCreate, service: Service) -> BranchRead:
    try:
        return BranchRead.model_validate(service.create_branch(payload))
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise


@router.get(
    "/branches",
    response_model=list[BranchRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_branches(service: Service) -> list[BranchRead]:
    return [BranchRead.model_validate(item) for item in service.list_branches()]


@router.post(
    "/departments",
    response_model=DepartmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_department(payload: DepartmentCreate, service: Service) -> DepartmentRead:
    try:
        return DepartmentRead.model_validate(service.create_department(payload))
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise


@router.get(
    "/departments",
    response_model=list[DepartmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_departments(service: Service) -> list[DepartmentRead]:
    return [DepartmentRead.model_validate(item) for item in service.list_departments()]


@router.post(
    "/branch-departments",
    response_model=BranchDepartmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_branch_department(payload: BranchDepartmentCreate, service: Service) -> BranchDepartmentRead:
    try:
        return service.create_link(payload)
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise


@router.get(
    "/branch-departments",
    response_model=list[BranchDepartmentRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_branch_departments(caller: Caller, service: Service) -> list[BranchDepartmentRead]:
    scope = None if caller.principal.is_admin else caller.scope
    return service.list_links(scope)


@router.post(
    "/employees",
    response_model=EmployeeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def create_employee(payload: EmployeeCreate, service: Service) -> EmployeeRead:
    try:
        return EmployeeRead.model_validate(service.create_employee(payload))
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise


@router.get(
    "/employees",
    response_model=list[EmployeeRead],
    dependencies=[Depends(require_perm(PERM_ORG_READ))],
)
def list_employees(service: Service) -> list[EmployeeRead]:
    return [EmployeeRead.model_validate(item) for item in service.list_employees()]


@router.put(
    "/employees/{employee_id}/memberships",
    response_model=LinkIdsUpdate,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def set_memberships(employee_id: int, payload: LinkIdsUpdate, service: Service) -> LinkIdsUpdate:
    try:
        return LinkIdsUpdate(branch_department_ids=service.set_memberships(employee_id, payload.branch_department_ids))
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise


@router.put(
    "/employees/{employee_id}/managed-branch-departments",
    response_model=LinkIdsUpdate,
    dependencies=[Depends(require_perm(PERM_ORG_WRITE))],
)
def set_managed_branch_departments(employee_id: int, payload: LinkIdsUpdate, service: Service) -> LinkIdsUpdate:
    try:
        return LinkIdsUpdate(
            branch_department_ids=service.set_managed_links(employee_id, payload.branch_department_ids)
        )
    except (NotFoundError, ConflictError) as exc:
        _handle_org_error(exc)
        raise
