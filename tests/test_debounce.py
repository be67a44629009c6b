from __future__ import annotations

import asyncio

import pytest

from portal.domain.resolver import BranchDepartmentLink, CompositeKeyResolver
from portal.domain.selector import DualDimensionSelector
from portal.infra.debounce import Debouncer
from portal.services.selection_service import OptionSearch


def test_only_last_submission_runs() -> None:
    calls: list[str] = []

    async def scenario() -> None:
        debouncer = Debouncer(delay_seconds=0.01)
        first = debouncer.submit(calls.append, "a")
        second = debouncer.submit(calls.append, "ab")
        assert debouncer.pending
        await second
        with pytest.raises(asyncio.CancelledError):
            await first
        assert not debouncer.pending

    asyncio.run(scenario())
    assert calls == ["ab"]


def test_cancel_drops_pending_call() -> None:
    calls: list[int] = []

    async def scenario() -> None:
        debouncer = Debouncer(delay_seconds=0.01)
        task = debouncer.submit(calls.append, 1)
        debouncer.cancel()
        await asyncio.sleep(0.03)
        assert task.cancelled()

    asyncio.run(scenario())
    assert calls == []


def test_option_search_returns_latest_query_result() -> None:
    selector = DualDimensionSelector(
        CompositeKeyResolver([BranchDepartmentLink(id=11, branch_id=1, department_id=1)]),
        lambda _links: None,
        allow_multiple=True,
        branch_labels={1: "Head Office"},
    )

    async def scenario() -> list[int]:
        search = OptionSearch(selector, delay_seconds=0.01)
        search.search_branches("zzz")
        return await search.search_branches("head")

    assert asyncio.run(scenario()) == [1]
