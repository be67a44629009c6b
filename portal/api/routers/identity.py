from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from portal.api.deps import claims_employee_id, get_current_claims
from portal.domain.models import (
    BootstrapAdminRequest,
    DevLoginRequest,
    EmployeeRead,
    MeRead,
    TokenResponse,
)
from portal.infra.auth import create_access_token
from portal.services.identity_service import AuthError, ConflictError, IdentityService, NotFoundError

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    raise exc


@router.post("/bootstrap-admin", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> EmployeeRead:
    try:
        employee = service.bootstrap_admin(payload)
        return EmployeeRead.model_validate(employee)
    except (NotFoundError, ConflictError, AuthError) as exc:
        _handle_identity_error(exc)
        raise


@router.post("/dev-login", response_model=TokenResponse)
def dev_login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        employee, permissions = service.dev_login(payload.username, payload.password)
    except (NotFoundError, ConflictError, AuthError) as exc:
        _handle_identity_error(exc)
        raise
    if employee.id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")
    token = create_access_token(
        employee_id=employee.id,
        is_admin=employee.is_admin,
        permissions=permissions,
    )
    return TokenResponse(access_token=token, permissions=permissions)


@router.get("/me", response_model=MeRead)
def me(claims: Claims, service: Service) -> MeRead:
    try:
        return service.me(claims_employee_id(claims))
    except (NotFoundError, ConflictError, AuthError) as exc:
        _handle_identity_error(exc)
        raise
