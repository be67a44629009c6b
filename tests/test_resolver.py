from __future__ import annotations

from itertools import combinations

from portal.domain.resolver import (
    BranchDepartmentLink,
    CompositeKeyResolver,
    ManagerScope,
    SelectionSentinel,
    resolve_selection,
)

LINKS = [
    BranchDepartmentLink(id=11, branch_id=1, department_id=1),
    BranchDepartmentLink(id=12, branch_id=1, department_id=2),
    BranchDepartmentLink(id=21, branch_id=2, department_id=1),
]


def _resolver() -> CompositeKeyResolver:
    return CompositeKeyResolver(LINKS)


def test_expand_returns_links_for_every_existing_pair() -> None:
    resolver = _resolver()
    assert resolver.expand([1], [1]) == [11]
    assert resolver.expand([1, 2], [1]) == [11, 21]
    assert resolver.expand([1], [1, 2]) == [11, 12]
    assert resolver.expand([2], [2]) == []


def test_expand_requires_both_dimensions() -> None:
    resolver = _resolver()
    assert resolver.expand([], [1, 2]) == []
    assert resolver.expand([1, 2], []) == []


def test_expand_respects_manager_scope() -> None:
    resolver = _resolver()
    scope = ManagerScope.managing([21])
    assert resolver.expand([1, 2], [1], scope) == [21]
    assert resolver.expand([1, 2], [1], ManagerScope.unrestricted()) == [11, 21]


def test_collapse_ignores_unknown_links() -> None:
    resolver = _resolver()
    assert resolver.collapse([11, 21]) == ([1, 2], [1])
    assert resolver.collapse([999]) == ([], [])
    assert resolver.collapse([]) == ([], [])


def test_expand_of_collapse_is_a_superset() -> None:
    resolver = _resolver()
    ids = [link.id for link in LINKS]
    for size in range(1, len(ids) + 1):
        for subset in combinations(ids, size):
            branches, departments = resolver.collapse(subset)
            assert set(subset) <= set(resolver.expand(branches, departments))


def test_collapse_is_lossy() -> None:
    resolver = _resolver()
    branches, departments = resolver.collapse([12, 21])
    assert resolver.expand(branches, departments) == [11, 12, 21]


def test_duplicate_pair_keeps_first_link() -> None:
    resolver = CompositeKeyResolver(
        [
            BranchDepartmentLink(id=5, branch_id=1, department_id=1),
            BranchDepartmentLink(id=6, branch_id=1, department_id=1),
        ]
    )
    assert resolver.get(6) is None
    assert resolver.expand([1], [1]) == [5]
    assert [link.id for link in resolver.links] == [5]


def test_scope_limited_option_lists() -> None:
    resolver = _resolver()
    scope = ManagerScope.managing([21])
    assert resolver.branches_in_scope() == [1, 2]
    assert resolver.branches_in_scope(scope) == [2]
    assert resolver.departments_in_scope(scope) == [1]
    assert resolver.reachable_departments([1]) == [1, 2]
    assert resolver.reachable_departments([1], scope) == []
    assert resolver.reachable_departments([]) == []


def test_read_only_scope_permits_nothing() -> None:
    scope = ManagerScope.read_only()
    assert not scope.is_unrestricted()
    assert not scope.permits_link(11)
    assert not scope.can_upload_knowledge
    assert _resolver().branches_in_scope(scope) == []


def test_resolve_selection_sentinels() -> None:
    universe = [1, 2, 3]
    assert resolve_selection([SelectionSentinel.ALL], universe) == [1, 2, 3]
    assert resolve_selection([2, SelectionSentinel.ALL], universe) == [2, 1, 3]
    assert resolve_selection([1, SelectionSentinel.NONE, 2], universe) == []
    assert resolve_selection([3, 3, 1], universe) == [3, 1]
    assert resolve_selection([], universe) == []
