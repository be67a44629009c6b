from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from portal.domain.models import (
    Branch,
    BranchCreate,
    BranchDepartment,
    BranchDepartmentCreate,
    BranchDepartmentRead,
    Department,
    DepartmentCreate,
    Employee,
    EmployeeCreate,
    EmployeeMembership,
    ManagedBranchDepartment,
)
from portal.domain.resolver import BranchDepartmentLink, CompositeKeyResolver, ManagerScope
from portal.infra.auth import hash_password
from portal.infra.db import get_engine
from portal.infra.events import event_bus

logger = logging.getLogger(__name__)


class OrgError(Exception):
    pass


class NotFoundError(OrgError):
    pass


class ConflictError(OrgError):
    pass


def _to_links(rows: Iterable[BranchDepartment]) -> list[BranchDepartmentLink]:
    return [
        BranchDepartmentLink(id=row.id, branch_id=row.branch_id, department_id=row.department_id)
        for row in rows
        if row.id is not None
    ]


class OrgService:
    """Branches, departments, their links, and employee placement."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def create_branch(self, payload: BranchCreate) -> Branch:
        with self._session() as session:
            branch = Branch(name=payload.name, location=payload.location)
            session.add(branch)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("branch name already exists") from exc
            session.refresh(branch)

        event_bus.publish_dict("org.branch.created", {"branch_id": branch.id, "name": branch.name})
        return branch

    def list_branches(self) -> list[Branch]:
        with self._session() as session:
            return list(session.exec(select(Branch).order_by(col(Branch.id))).all())

    def create_department(self, payload: DepartmentCreate) -> Department:
        with self._session() as session:
            department = Department(name=payload.name)
            session.add(department)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("department name already exists") from exc
            session.refresh(department)

        event_bus.publish_dict(
            "org.department.created",
            {"department_id": department.id, "name": department.name},
        )
        return department

    def list_departments(self) -> list[Department]:
        with self._session() as session:
            return list(session.exec(select(Department).order_by(col(Department.id))).all())

    def create_link(self, payload: BranchDepartmentCreate) -> BranchDepartmentRead:
        with self._session() as session:
            branch = session.get(Branch, payload.branch_id)
            if branch is None:
                raise NotFoundError("branch not found")
            department = session.get(Department, payload.department_id)
            if department is None:
                raise NotFoundError("department not found")
            row = BranchDepartment(branch_id=branch.id, department_id=department.id)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("branch-department link already exists") from exc
            session.refresh(row)

        event_bus.publish_dict(
            "org.branch_department.created",
            {"branch_department_id": row.id, "branch_id": row.branch_id, "department_id": row.department_id},
        )
        return BranchDepartmentRead(
            id=row.id,
            branch_id=row.branch_id,
            department_id=row.department_id,
            branch_name=branch.name,
            department_name=department.name,
        )

    def list_links(self, scope: ManagerScope | None = None) -> list[BranchDepartmentRead]:
        """Link catalog, restricted to the links ``scope`` permits."""
        with self._session() as session:
            rows = session.exec(select(BranchDepartment).order_by(col(BranchDepartment.id))).all()
            branch_names = {item.id: item.name for item in session.exec(select(Branch)).all()}
            department_names = {item.id: item.name for item in session.exec(select(Department)).all()}
        result: list[BranchDepartmentRead] = []
        for row in rows:
            if row.id is None or (scope is not None and not scope.permits_link(row.id)):
                continue
            result.append(
                BranchDepartmentRead(
                    id=row.id,
                    branch_id=row.branch_id,
                    department_id=row.department_id,
                    branch_name=branch_names.get(row.branch_id),
                    department_name=department_names.get(row.department_id),
                )
            )
        return result

    def build_resolver(self) -> CompositeKeyResolver:
        with self._session() as session:
            rows = session.exec(select(BranchDepartment).order_by(col(BranchDepartment.id))).all()
        return CompositeKeyResolver(_to_links(rows))

    def labels(self) -> tuple[dict[int, str], dict[int, str]]:
        with self._session() as session:
            branches = {item.id: item.name for item in session.exec(select(Branch)).all() if item.id is not None}
            departments = {
                item.id: item.name for item in session.exec(select(Department)).all() if item.id is not None
            }
        return branches, departments

    def _existing_link_ids(self, session: Session, link_ids: list[int]) -> list[int]:
        if not link_ids:
            return []
        rows = session.exec(select(BranchDepartment.id).where(col(BranchDepartment.id).in_(link_ids))).all()
        known = set(rows)
        missing = [item for item in link_ids if item not in known]
        if missing:
            raise NotFoundError(f"branch-department links not found: {missing}")
        return list(dict.fromkeys(link_ids))

    def _get_employee(self, session: Session, employee_id: int) -> Employee:
        employee = session.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("employee not found")
        return employee

    def create_employee(self, payload: EmployeeCreate) -> Employee:
        with self._session() as session:
            link_ids = self._existing_link_ids(session, payload.branch_department_ids)
            employee = Employee(
                username=payload.username,
                password_hash=hash_password(payload.password),
                name=payload.name,
                email=payload.email,
                is_admin=payload.is_admin,
                is_manager=payload.is_manager,
            )
            session.add(employee)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(employee)
            if employee.id is None:
                raise NotFoundError("employee not found")
            for link_id in link_ids:
                session.add(EmployeeMembership(employee_id=employee.id, branch_department_id=link_id))
            session.commit()

        event_bus.publish_dict(
            "org.employee.created",
            {"employee_id": employee.id, "is_admin": employee.is_admin, "is_manager": employee.is_manager},
        )
        return employee

    def list_employees(self) -> list[Employee]:
        with self._session() as session:
            return list(session.exec(select(Employee).order_by(col(Employee.id))).all())

    def set_memberships(self, employee_id: int, link_ids: list[int]) -> list[int]:
        with self._session() as session:
            self._get_employee(session, employee_id)
            wanted = self._existing_link_ids(session, link_ids)
            existing = session.exec(
                select(EmployeeMembership).where(EmployeeMembership.employee_id == employee_id)
            ).all()
            for row in existing:
                session.delete(row)
            session.flush()
            for link_id in wanted:
                session.add(EmployeeMembership(employee_id=employee_id, branch_department_id=link_id))
            session.commit()

        event_bus.publish_dict(
            "org.employee.memberships_updated",
            {"employee_id": employee_id, "branch_department_ids": wanted},
        )
        return wanted

    def set_managed_links(self, employee_id: int, link_ids: list[int]) -> list[int]:
        with self._session() as session:
            employee = self._get_employee(session, employee_id)
            if not employee.is_manager:
                raise ConflictError("employee is not a manager")
            wanted = self._existing_link_ids(session, link_ids)
            existing = session.exec(
                select(ManagedBranchDepartment).where(ManagedBranchDepartment.employee_id == employee_id)
            ).all()
            for row in existing:
                session.delete(row)
            session.flush()
            for link_id in wanted:
                session.add(ManagedBranchDepartment(employee_id=employee_id, branch_department_id=link_id))
            session.commit()

        logger.info("manager %s now manages %d branch-department links", employee_id, len(wanted))
        event_bus.publish_dict(
            "org.employee.managed_links_updated",
            {"employee_id": employee_id, "branch_department_ids": wanted},
        )
        return wanted

    def membership_links(self, session: Session, employee_id: int) -> list[BranchDepartmentLink]:
        statement = (
            select(BranchDepartment)
            .join(EmployeeMembership, col(EmployeeMembership.branch_department_id) == col(BranchDepartment.id))
            .where(EmployeeMembership.employee_id == employee_id)
            .order_by(col(BranchDepartment.id))
        )
        return _to_links(session.exec(statement).all())

    def managed_link_ids(self, session: Session, employee_id: int) -> list[int]:
        statement = (
            select(ManagedBranchDepartment.branch_department_id)
            .where(ManagedBranchDepartment.employee_id == employee_id)
            .order_by(col(ManagedBranchDepartment.branch_department_id))
        )
        return list(session.exec(statement).all())
