from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence

from portal.domain.resolver import (
    CompositeKeyResolver,
    ManagerScope,
    SelectionToken,
    resolve_selection,
)

ChangeHandler = Callable[[list[int]], None]


class DualDimensionSelector:
    """Branch and department picks kept in sync with a list of link ids.

    The parent owns ``value`` (link ids) and receives every change through
    ``on_change``. The selector remembers the last list it emitted so that a
    parent echoing that list back through ``sync`` does not overwrite the
    branch/department picks: collapsing link ids is lossy, and a branch that
    has no selected department yet would otherwise disappear.
    """

    def __init__(
        self,
        resolver: CompositeKeyResolver,
        on_change: ChangeHandler,
        *,
        allow_multiple: bool = False,
        managed_scope: ManagerScope | None = None,
        value: Sequence[int] | None = None,
        branch_labels: Mapping[int, str] | None = None,
        department_labels: Mapping[int, str] | None = None,
    ) -> None:
        self._resolver = resolver
        self._on_change = on_change
        self._allow_multiple = allow_multiple
        self._scope = managed_scope
        self._branch_labels = dict(branch_labels or {})
        self._department_labels = dict(department_labels or {})
        self._branch_ids: list[int] = []
        self._department_ids: list[int] = []
        self._last_emitted: list[int] = []
        if value:
            self.sync(value)

    @property
    def allow_multiple(self) -> bool:
        return self._allow_multiple

    @property
    def selected_branch_ids(self) -> list[int]:
        return list(self._branch_ids)

    @property
    def selected_department_ids(self) -> list[int]:
        return list(self._department_ids)

    @property
    def selected_link_ids(self) -> list[int]:
        return self._resolver.expand(self._branch_ids, self._department_ids, self._scope)

    @property
    def last_emitted(self) -> list[int]:
        return list(self._last_emitted)

    def sync(self, value: Sequence[int]) -> bool:
        incoming = list(value)
        if set(incoming) == set(self._last_emitted):
            return False

        self._last_emitted = incoming
        branches, departments = self._resolver.collapse(incoming)
        if not self._allow_multiple:
            branches = branches[-1:]
            departments = departments[-1:]
        self._branch_ids = branches
        self._department_ids = departments
        return True

    def select_branches(self, branch_ids: Iterable[SelectionToken]) -> list[int]:
        branches = resolve_selection(branch_ids, self.available_branches())
        if not self._allow_multiple and len(branches) > 1:
            branches = branches[-1:]

        if not branches:
            self._branch_ids = []
            self._department_ids = []
            return self._emit([])

        reachable = set(self._resolver.reachable_departments(branches, self._scope))
        self._branch_ids = branches
        self._department_ids = [item for item in self._department_ids if item in reachable]
        return self._emit(self._resolver.expand(branches, self._department_ids, self._scope))

    def select_departments(self, department_ids: Iterable[SelectionToken]) -> list[int]:
        departments = resolve_selection(department_ids, self.available_departments())
        if not self._allow_multiple and len(departments) > 1:
            departments = departments[-1:]

        self._department_ids = departments
        return self._emit(self._resolver.expand(self._branch_ids, departments, self._scope))

    def clear(self) -> list[int]:
        return self.select_branches([])

    def available_branches(self) -> list[int]:
        return self._resolver.branches_in_scope(self._scope)

    def available_departments(self) -> list[int]:
        return self._resolver.reachable_departments(self._branch_ids, self._scope)

    def search_branches(self, query: str) -> list[int]:
        return self._search(self.available_branches(), self._branch_labels, query)

    def search_departments(self, query: str) -> list[int]:
        return self._search(self.available_departments(), self._department_labels, query)

    @staticmethod
    def _search(candidates: list[int], labels: Mapping[int, str], query: str) -> list[int]:
        trimmed = query.strip().lower()
        if not trimmed:
            return candidates
        return [item for item in candidates if trimmed in labels.get(item, "").lower()]

    def _emit(self, link_ids: list[int]) -> list[int]:
        self._last_emitted = list(link_ids)
        self._on_change(list(link_ids))
        return link_ids
