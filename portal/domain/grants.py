from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


def normalize_ids(values: Iterable[Any] | None) -> frozenset[int]:
    if not values:
        return frozenset()
    normalized: set[int] = set()
    for item in values:
        if isinstance(item, bool):
            continue
        if isinstance(item, int):
            normalized.add(item)
        elif isinstance(item, str) and item.strip().isdigit():
            normalized.add(int(item.strip()))
    return frozenset(normalized)


@dataclass(frozen=True)
class GrantSet:
    """Explicit or effective grants of a knowledge-base node.

    Empty in every dimension means the node is public.
    """

    branch_ids: frozenset[int] = frozenset()
    department_ids: frozenset[int] = frozenset()
    employee_ids: frozenset[int] = frozenset()
    branch_department_ids: frozenset[int] = frozenset()

    @classmethod
    def from_lists(
        cls,
        *,
        branches: Iterable[Any] | None = None,
        departments: Iterable[Any] | None = None,
        employees: Iterable[Any] | None = None,
        branch_departments: Iterable[Any] | None = None,
    ) -> GrantSet:
        return cls(
            branch_ids=normalize_ids(branches),
            department_ids=normalize_ids(departments),
            employee_ids=normalize_ids(employees),
            branch_department_ids=normalize_ids(branch_departments),
        )

    def is_public(self) -> bool:
        return not any(
            (
                self.branch_ids,
                self.department_ids,
                self.employee_ids,
                self.branch_department_ids,
            )
        )

    def as_dict(self) -> dict[str, list[int]]:
        return {
            "branches": sorted(self.branch_ids),
            "departments": sorted(self.department_ids),
            "employees": sorted(self.employee_ids),
            "branch_departments": sorted(self.branch_department_ids),
        }


PUBLIC = GrantSet()


class AccessLevel(StrEnum):
    SPECIFIC_BRANCH_DEPARTMENTS = "Specific Branch Departments"
    SPECIFIC_BRANCHES = "Specific Branches"
    SPECIFIC_DEPARTMENTS = "Specific Departments"
    SPECIFIC_EMPLOYEES = "Specific Employees"
    ALL_EMPLOYEES = "All Employees"


def classify_access_level(grants: GrantSet) -> AccessLevel:
    # First match wins, even when several dimensions are populated.
    if grants.branch_department_ids:
        return AccessLevel.SPECIFIC_BRANCH_DEPARTMENTS
    if grants.branch_ids:
        return AccessLevel.SPECIFIC_BRANCHES
    if grants.department_ids:
        return AccessLevel.SPECIFIC_DEPARTMENTS
    if grants.employee_ids:
        return AccessLevel.SPECIFIC_EMPLOYEES
    return AccessLevel.ALL_EMPLOYEES
