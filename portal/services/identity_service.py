from __future__ import annotations

import logging

from sqlmodel import Session, select

from portal.domain.access import AccessContext, Principal
from portal.domain.models import (
    BootstrapAdminRequest,
    Employee,
    EmployeeRead,
    ManagerScopeRead,
    MeRead,
)
from portal.domain.permissions import permissions_for
from portal.domain.resolver import ManagerScope
from portal.infra.auth import hash_password, verify_password
from portal.infra.db import get_engine
from portal.infra.events import event_bus
from portal.services.org_service import OrgService

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class IdentityService:
    def __init__(self) -> None:
        self._org = OrgService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> Employee:
        with self._session() as session:
            if session.exec(select(Employee)).first() is not None:
                raise ConflictError("portal already initialized")
            admin = Employee(
                username=payload.username,
                password_hash=hash_password(payload.password),
                name=payload.name,
                email=payload.email,
                is_admin=True,
                is_active=True,
            )
            session.add(admin)
            session.commit()
            session.refresh(admin)

        logger.info("bootstrap administrator %s created", admin.username)
        event_bus.publish_dict("identity.admin.bootstrapped", {"employee_id": admin.id})
        return admin

    def dev_login(self, username: str, password: str) -> tuple[Employee, list[str]]:
        with self._session() as session:
            employee = session.exec(select(Employee).where(Employee.username == username)).first()
            if employee is None:
                raise AuthError("invalid credentials")
            if not employee.is_active:
                raise AuthError("employee disabled")
            if not verify_password(password, employee.password_hash):
                raise AuthError("invalid credentials")
        return employee, permissions_for(is_admin=employee.is_admin, is_manager=employee.is_manager)

    def get_employee(self, employee_id: int) -> Employee:
        with self._session() as session:
            employee = session.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("employee not found")
            return employee

    def _scope_for(self, session: Session, employee: Employee, membership_ids: list[int]) -> ManagerScope:
        if employee.is_admin:
            return ManagerScope.unrestricted()
        if not employee.is_manager:
            return ManagerScope.read_only()
        if employee.id is None:
            return ManagerScope.read_only()
        managed = self._org.managed_link_ids(session, employee.id)
        # Managers without an explicit assignment manage where they work.
        return ManagerScope.managing(managed or membership_ids)

    def load_access(self, employee_id: int) -> AccessContext:
        with self._session() as session:
            employee = session.get(Employee, employee_id)
            if employee is None or not employee.is_active:
                raise AuthError("employee not found or disabled")
            memberships = self._org.membership_links(session, employee_id)
            scope = self._scope_for(session, employee, [link.id for link in memberships])
        principal = Principal.of(employee_id, is_admin=employee.is_admin, memberships=memberships)
        return AccessContext(principal=principal, scope=scope)

    def me(self, employee_id: int) -> MeRead:
        employee = self.get_employee(employee_id)
        context = self.load_access(employee_id)
        scope = context.scope
        return MeRead(
            employee=EmployeeRead.model_validate(employee),
            branch_department_ids=[link.id for link in context.principal.memberships],
            manager_scope=ManagerScopeRead(
                is_manager=employee.is_manager,
                unrestricted=scope.is_unrestricted(),
                managed_branch_departments=sorted(scope.managed_link_ids or []),
                can_upload_knowledge=scope.can_upload_knowledge,
            ),
        )
