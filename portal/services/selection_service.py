from __future__ import annotations

import asyncio
from collections.abc import Iterable

from portal.domain.access import AccessContext
from portal.domain.models import (
    SelectionCollapseRequest,
    SelectionExpandRequest,
    SelectionOptionsRead,
    SelectionRead,
)
from portal.domain.resolver import ManagerScope, SelectionSentinel, SelectionToken
from portal.domain.selector import DualDimensionSelector
from portal.infra.debounce import DEFAULT_DELAY_SECONDS, Debouncer
from portal.services.org_service import OrgService


class SelectionError(Exception):
    pass


class InvalidSelectionError(SelectionError):
    pass


def parse_tokens(values: Iterable[int | str]) -> list[SelectionToken]:
    """Turn wire values into ids and sentinels; ``"all"`` and ``"none"`` are case-insensitive."""
    tokens: list[SelectionToken] = []
    for value in values:
        if isinstance(value, int) and not isinstance(value, bool):
            tokens.append(value)
            continue
        text = str(value).strip()
        if text.isdigit():
            tokens.append(int(text))
            continue
        try:
            tokens.append(SelectionSentinel(text.lower()))
        except ValueError as exc:
            raise InvalidSelectionError(f"invalid selection token: {value!r}") from exc
    return tokens


class SelectionService:
    """Stateless branch/department selection for one caller, bounded by their scope."""

    def __init__(self) -> None:
        self._org = OrgService()

    def _selector(self, scope: ManagerScope, *, allow_multiple: bool = True) -> DualDimensionSelector:
        branch_labels, department_labels = self._org.labels()
        return DualDimensionSelector(
            self._org.build_resolver(),
            lambda _links: None,
            allow_multiple=allow_multiple,
            managed_scope=scope,
            branch_labels=branch_labels,
            department_labels=department_labels,
        )

    def expand(self, context: AccessContext, payload: SelectionExpandRequest) -> SelectionRead:
        branch_tokens = parse_tokens(payload.branch_ids)
        department_tokens = parse_tokens(payload.department_ids)
        selector = self._selector(context.scope)
        selector.select_branches(branch_tokens)
        links = selector.select_departments(department_tokens)
        return SelectionRead(
            branch_ids=selector.selected_branch_ids,
            department_ids=selector.selected_department_ids,
            branch_department_ids=links,
        )

    def collapse(self, context: AccessContext, payload: SelectionCollapseRequest) -> SelectionRead:
        resolver = self._org.build_resolver()
        scope = context.scope
        visible = [
            link_id
            for link_id in dict.fromkeys(payload.branch_department_ids)
            if resolver.get(link_id) is not None and scope.permits_link(link_id)
        ]
        branches, departments = resolver.collapse(visible)
        return SelectionRead(branch_ids=branches, department_ids=departments, branch_department_ids=visible)

    def options(
        self,
        context: AccessContext,
        branch_ids: list[int],
        *,
        branch_query: str = "",
        department_query: str = "",
    ) -> SelectionOptionsRead:
        selector = self._selector(context.scope)
        available = set(selector.available_branches())
        selector.select_branches([item for item in branch_ids if item in available])
        return SelectionOptionsRead(
            branch_ids=selector.search_branches(branch_query),
            department_ids=selector.search_departments(department_query),
        )


class OptionSearch:
    """Debounced label search over a selector's option lists.

    Each call to ``search_branches``/``search_departments`` supersedes the
    pending one; only the last query typed within the window is evaluated.
    """

    def __init__(self, selector: DualDimensionSelector, delay_seconds: float = DEFAULT_DELAY_SECONDS) -> None:
        self._selector = selector
        self._debouncer = Debouncer(delay_seconds)

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def search_branches(self, query: str) -> asyncio.Task[list[int]]:
        return self._debouncer.submit(self._selector.search_branches, query)

    def search_departments(self, query: str) -> asyncio.Task[list[int]]:
        return self._debouncer.submit(self._selector.search_departments, query)

    def cancel(self) -> None:
        self._debouncer.cancel()
