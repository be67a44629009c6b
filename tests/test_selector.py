from __future__ import annotations

from portal.domain.resolver import (
    BranchDepartmentLink,
    CompositeKeyResolver,
    ManagerScope,
    SelectionSentinel,
)
from portal.domain.selector import DualDimensionSelector

LINKS = [
    BranchDepartmentLink(id=11, branch_id=1, department_id=1),
    BranchDepartmentLink(id=12, branch_id=1, department_id=2),
    BranchDepartmentLink(id=21, branch_id=2, department_id=1),
]


def _selector(
    emitted: list[list[int]],
    *,
    allow_multiple: bool = True,
    scope: ManagerScope | None = None,
    value: list[int] | None = None,
) -> DualDimensionSelector:
    return DualDimensionSelector(
        CompositeKeyResolver(LINKS),
        emitted.append,
        allow_multiple=allow_multiple,
        managed_scope=scope,
        value=value,
        branch_labels={1: "Head Office", 2: "Downtown"},
        department_labels={1: "Sales", 2: "Support"},
    )


def test_select_branch_then_department_emits_the_link() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)

    assert selector.select_branches([1]) == []
    assert selector.select_departments([1]) == [11]
    assert emitted == [[], [11]]

    assert selector.select_departments([]) == []
    assert selector.selected_branch_ids == [1]
    assert selector.selected_department_ids == []
    assert emitted[-1] == []


def test_two_branches_one_department() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([1, 2])
    assert selector.select_departments([1]) == [11, 21]
    assert selector.selected_link_ids == [11, 21]


def test_single_select_keeps_last_branch() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted, allow_multiple=False)
    selector.select_branches([1, 2])
    assert selector.selected_branch_ids == [2]
    assert selector.select_departments([2, 1]) == [21]
    assert selector.selected_department_ids == [1]


def test_echoed_value_does_not_reset_branch_pick() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([1])

    # The parent stores the emitted [] and hands it back.
    assert selector.sync(emitted[-1]) is False
    assert selector.selected_branch_ids == [1]

    selector.select_departments([1, 2])
    assert selector.sync([12, 11]) is False
    assert selector.selected_department_ids == [1, 2]


def test_external_value_overwrites_state() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([1])

    assert selector.sync([21]) is True
    assert selector.selected_branch_ids == [2]
    assert selector.selected_department_ids == [1]
    assert selector.last_emitted == [21]
    assert emitted == [[]]


def test_initial_value_is_collapsed_without_emitting() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted, value=[11, 21])
    assert selector.selected_branch_ids == [1, 2]
    assert selector.selected_department_ids == [1]
    assert emitted == []


def test_single_select_sync_keeps_last_collapsed_ids() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted, allow_multiple=False, value=[11, 21])
    assert selector.selected_branch_ids == [2]
    assert selector.selected_department_ids == [1]


def test_changing_branches_prunes_unreachable_departments() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([1])
    assert selector.select_departments([2]) == [12]

    assert selector.select_branches([2]) == []
    assert selector.selected_department_ids == []


def test_clearing_branches_clears_departments() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([1, 2])
    selector.select_departments([1])
    assert selector.clear() == []
    assert selector.selected_branch_ids == []
    assert selector.selected_department_ids == []
    assert emitted[-1] == []


def test_sentinels_resolve_against_visible_options() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    selector.select_branches([SelectionSentinel.ALL])
    assert selector.selected_branch_ids == [1, 2]
    assert selector.select_departments([SelectionSentinel.ALL]) == [11, 12, 21]
    assert selector.select_departments([SelectionSentinel.NONE]) == []


def test_manager_scope_limits_options_and_links() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted, scope=ManagerScope.managing([21]))
    assert selector.available_branches() == [2]
    selector.select_branches([SelectionSentinel.ALL])
    assert selector.available_departments() == [1]
    assert selector.select_departments([1]) == [21]


def test_search_matches_labels_case_insensitively() -> None:
    emitted: list[list[int]] = []
    selector = _selector(emitted)
    assert selector.search_branches("DOWN") == [2]
    assert selector.search_branches("  ") == [1, 2]
    assert selector.search_departments("sales") == []

    selector.select_branches([1])
    assert selector.search_departments("sup") == [2]
