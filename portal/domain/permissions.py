from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_KNOWLEDGE_READ = "knowledge.read"
PERM_KNOWLEDGE_WRITE = "knowledge.write"
PERM_ORG_READ = "org.read"
PERM_ORG_WRITE = "org.write"

ADMIN_PERMISSIONS = [PERM_WILDCARD]
MANAGER_PERMISSIONS = [PERM_KNOWLEDGE_READ, PERM_KNOWLEDGE_WRITE, PERM_ORG_READ]
EMPLOYEE_PERMISSIONS = [PERM_KNOWLEDGE_READ, PERM_ORG_READ]


def permissions_for(*, is_admin: bool, is_manager: bool) -> list[str]:
    if is_admin:
        return list(ADMIN_PERMISSIONS)
    if is_manager:
        return list(MANAGER_PERMISSIONS)
    return list(EMPLOYEE_PERMISSIONS)


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
