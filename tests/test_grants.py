from __future__ import annotations

from portal.domain.grants import PUBLIC, AccessLevel, GrantSet, classify_access_level, normalize_ids
from portal.domain.permissions import PERM_KNOWLEDGE_WRITE, PERM_ORG_WRITE, has_permission, permissions_for


def test_normalize_ids_accepts_digit_strings_only() -> None:
    assert normalize_ids([1, "2", " 3 ", "x", True, None]) == frozenset({1, 2, 3})
    assert normalize_ids(None) == frozenset()


def test_public_grant_set() -> None:
    assert PUBLIC.is_public()
    assert not GrantSet.from_lists(employees=[1]).is_public()
    assert GrantSet.from_lists(branches=["2", 1]).as_dict() == {
        "branches": [1, 2],
        "departments": [],
        "employees": [],
        "branch_departments": [],
    }


def test_access_level_order() -> None:
    everything = GrantSet.from_lists(branches=[1], departments=[2], employees=[3], branch_departments=[4])
    assert classify_access_level(everything) == AccessLevel.SPECIFIC_BRANCH_DEPARTMENTS
    assert classify_access_level(GrantSet.from_lists(departments=[2], employees=[3])) == AccessLevel.SPECIFIC_DEPARTMENTS
    assert classify_access_level(GrantSet.from_lists(employees=[3])) == AccessLevel.SPECIFIC_EMPLOYEES
    assert classify_access_level(PUBLIC) == AccessLevel.ALL_EMPLOYEES


def test_role_permissions() -> None:
    admin = {"permissions": permissions_for(is_admin=True, is_manager=False)}
    manager = {"permissions": permissions_for(is_admin=False, is_manager=True)}
    employee = {"permissions": permissions_for(is_admin=False, is_manager=False)}
    assert has_permission(admin, PERM_ORG_WRITE)
    assert has_permission(manager, PERM_KNOWLEDGE_WRITE)
    assert not has_permission(manager, PERM_ORG_WRITE)
    assert not has_permission(employee, PERM_KNOWLEDGE_WRITE)
    assert not has_permission({"permissions": "*"}, PERM_ORG_WRITE)
