from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from portal.domain.grants import GrantSet
from portal.domain.resolver import BranchDepartmentLink, ManagerScope
from portal.domain.tree import FileNode, FolderNode


@dataclass(frozen=True)
class Principal:
    employee_id: int | None
    is_admin: bool = False
    memberships: tuple[BranchDepartmentLink, ...] = ()

    @classmethod
    def of(
        cls,
        employee_id: int | None,
        *,
        is_admin: bool = False,
        memberships: Iterable[BranchDepartmentLink] = (),
    ) -> Principal:
        return cls(employee_id=employee_id, is_admin=is_admin, memberships=tuple(memberships))


@dataclass(frozen=True)
class AccessContext:
    """The caller as seen by the knowledge and selection services."""

    principal: Principal
    scope: ManagerScope

    @property
    def employee_id(self) -> int | None:
        return self.principal.employee_id

    def evaluator(self) -> AccessEvaluator:
        return AccessEvaluator(self.scope)


class AccessAction(StrEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


class AccessEvaluator:
    """Decides whether a principal may read or change a knowledge-base node.

    ``scope`` is the caller's manager scope; ``None`` applies no scope rule.
    """

    def __init__(self, scope: ManagerScope | None = None) -> None:
        self._scope = scope

    def can_access(self, principal: Principal, effective: GrantSet) -> bool:
        if principal.is_admin:
            return True
        if effective.is_public():
            return True
        if principal.employee_id is not None and principal.employee_id in effective.employee_ids:
            return True
        for link in principal.memberships:
            if link.branch_id in effective.branch_ids:
                return True
            if link.department_id in effective.department_ids:
                return True
            if link.id in effective.branch_department_ids:
                return True
        return False

    def can_read(self, principal: Principal, node: FolderNode | FileNode) -> bool:
        return self.can_access(principal, node.effective)

    def can_modify(self, principal: Principal, node: FolderNode | FileNode) -> bool:
        if principal.is_admin:
            return True
        if self._scope is not None and not self._scope.can_upload_knowledge:
            return False
        if isinstance(node, FolderNode) and node.created_by_admin:
            return False
        return self.can_access(principal, node.effective)

    def decide(self, principal: Principal, node: FolderNode | FileNode, action: AccessAction) -> bool:
        if action == AccessAction.READ:
            return self.can_read(principal, node)
        return self.can_modify(principal, node)

    def grants_within_scope(self, grants: GrantSet) -> bool:
        if self._scope is None or self._scope.is_unrestricted():
            return True
        return all(self._scope.permits_link(link_id) for link_id in grants.branch_department_ids)
