"""Translation between independent branch/department picks and link ids.

A branch-department link is the join record that grants actually reference.
``expand`` and ``collapse`` are not inverses: collapsing a link set and
expanding it again may yield more links than were selected, whenever other
links exist between the collapsed branches and departments.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import NamedTuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchDepartmentLink:
    id: int
    branch_id: int
    department_id: int


@dataclass(frozen=True)
class ManagerScope:
    """Read-only capability limiting which links a caller may see or grant.

    ``managed_link_ids`` of ``None`` means unrestricted.
    """

    managed_link_ids: frozenset[int] | None = None
    can_upload_knowledge: bool = True

    @classmethod
    def unrestricted(cls) -> ManagerScope:
        return cls(managed_link_ids=None, can_upload_knowledge=True)

    @classmethod
    def managing(cls, link_ids: Iterable[int], *, can_upload_knowledge: bool = True) -> ManagerScope:
        return cls(managed_link_ids=frozenset(link_ids), can_upload_knowledge=can_upload_knowledge)

    @classmethod
    def read_only(cls) -> ManagerScope:
        return cls(managed_link_ids=frozenset(), can_upload_knowledge=False)

    def is_unrestricted(self) -> bool:
        return self.managed_link_ids is None

    def permits_link(self, link_id: int) -> bool:
        return self.managed_link_ids is None or link_id in self.managed_link_ids


class SelectionSentinel(StrEnum):
    ALL = "all"
    NONE = "none"


SelectionToken = SelectionSentinel | int


def resolve_selection(tokens: Iterable[SelectionToken], universe: Sequence[int]) -> list[int]:
    """Replace sentinel tokens with concrete ids.

    ``ALL`` expands to the whole universe, ``NONE`` wins over everything and
    yields an empty list. Real ids keep their order; duplicates are dropped.
    """
    resolved: list[int] = []
    seen: set[int] = set()
    for token in tokens:
        if token == SelectionSentinel.NONE:
            return []
        values: Iterable[int] = universe if token == SelectionSentinel.ALL else (token,)
        for value in values:
            if value not in seen:
                seen.add(value)
                resolved.append(value)
    return resolved


class CollapsedSelection(NamedTuple):
    branch_ids: list[int]
    department_ids: list[int]


def _unique(values: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    result: list[int] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class CompositeKeyResolver:
    def __init__(self, links: Iterable[BranchDepartmentLink]) -> None:
        self._by_id: dict[int, BranchDepartmentLink] = {}
        self._by_pair: dict[tuple[int, int], BranchDepartmentLink] = {}
        for link in links:
            pair = (link.branch_id, link.department_id)
            if pair in self._by_pair:
                logger.warning(
                    "duplicate branch-department link %s for pair %s ignored (kept %s)",
                    link.id,
                    pair,
                    self._by_pair[pair].id,
                )
                continue
            self._by_id[link.id] = link
            self._by_pair[pair] = link

    @property
    def links(self) -> list[BranchDepartmentLink]:
        return list(self._by_id.values())

    def get(self, link_id: int) -> BranchDepartmentLink | None:
        return self._by_id.get(link_id)

    def _visible(self, scope: ManagerScope | None) -> Iterable[BranchDepartmentLink]:
        if scope is None:
            return self._by_id.values()
        return (link for link in self._by_id.values() if scope.permits_link(link.id))

    def expand(
        self,
        branch_ids: Iterable[int],
        department_ids: Iterable[int],
        managed_scope: ManagerScope | None = None,
    ) -> list[int]:
        branches = _unique(branch_ids)
        departments = _unique(department_ids)
        if not branches or not departments:
            return []
        link_ids: list[int] = []
        for branch_id in branches:
            for department_id in departments:
                link = self._by_pair.get((branch_id, department_id))
                if link is None:
                    continue
                if managed_scope is not None and not managed_scope.permits_link(link.id):
                    continue
                link_ids.append(link.id)
        return link_ids

    def collapse(self, link_ids: Iterable[int]) -> CollapsedSelection:
        branches: list[int] = []
        departments: list[int] = []
        for link_id in link_ids:
            link = self._by_id.get(link_id)
            if link is None:
                logger.debug("link %s not in catalog, ignored", link_id)
                continue
            branches.append(link.branch_id)
            departments.append(link.department_id)
        return CollapsedSelection(_unique(branches), _unique(departments))

    def reachable_departments(
        self,
        branch_ids: Iterable[int],
        managed_scope: ManagerScope | None = None,
    ) -> list[int]:
        wanted = set(branch_ids)
        if not wanted:
            return []
        return _unique(
            link.department_id for link in self._visible(managed_scope) if link.branch_id in wanted
        )

    def branches_in_scope(self, scope: ManagerScope | None = None) -> list[int]:
        return _unique(link.branch_id for link in self._visible(scope))

    def departments_in_scope(self, scope: ManagerScope | None = None) -> list[int]:
        return _unique(link.department_id for link in self._visible(scope))
