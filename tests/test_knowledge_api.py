from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine, select

from portal import main as app_main
from portal.domain.models import AuditLog, EventRecord
from portal.infra import audit, db, events, redis_state
from portal.services import knowledge_service


class FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def set(self, key: str, value: str) -> bool:
        self._store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def incr(self, key: str) -> int:
        value = int(self._store.get(key, "0")) + 1
        self._store[key] = str(value)
        return value

    def ping(self) -> bool:
        return True


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def knowledge_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    fake_redis: FakeRedis,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "knowledge_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)

    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    monkeypatch.setattr(redis_state, "get_redis", lambda: fake_redis)
    knowledge_service.tree_store.reset()

    client = TestClient(app_main.app)
    yield client
    client.close()
    knowledge_service.tree_store.reset()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, username: str, password: str) -> str:
    response = client.post("/api/identity/dev-login", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.json()["access_token"]


def _post(client: TestClient, token: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
    response = client.post(path, json=payload, headers=_auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()


def _seed(client: TestClient) -> dict[str, str]:
    response = client.post("/api/identity/bootstrap-admin", json={"username": "admin", "password": "admin-pass"})
    assert response.status_code == 201
    admin = _login(client, "admin", "admin-pass")

    head = _post(client, admin, "/api/org/branches", {"name": "Head Office"})["id"]
    downtown = _post(client, admin, "/api/org/branches", {"name": "Downtown"})["id"]
    sales = _post(client, admin, "/api/org/departments", {"name": "Sales"})["id"]
    support = _post(client, admin, "/api/org/departments", {"name": "Support"})["id"]
    _post(client, admin, "/api/org/branch-departments", {"branch_id": head, "department_id": sales})
    head_support = _post(
        client, admin, "/api/org/branch-departments", {"branch_id": head, "department_id": support}
    )["id"]
    downtown_sales = _post(
        client, admin, "/api/org/branch-departments", {"branch_id": downtown, "department_id": sales}
    )["id"]

    people = {
        "mia": {"is_manager": True, "branch_department_ids": [downtown_sales]},
        "eve": {"branch_department_ids": [head_support]},
        "sam": {"branch_department_ids": [downtown_sales]},
    }
    for username, extra in people.items():
        _post(
            client,
            admin,
            "/api/org/employees",
            {"username": username, "password": f"{username}-pass", "name": username.title(), **extra},
        )

    tokens = {"admin": admin}
    for username in people:
        tokens[username] = _login(client, username, f"{username}-pass")
    return tokens


def _tree(client: TestClient, token: str, **params: Any) -> list[dict[str, Any]]:
    response = client.get("/api/knowledge/folders/tree", headers=_auth_header(token), params=params)
    assert response.status_code == 200
    return response.json()["folders"]


def _names(folders: list[dict[str, Any]]) -> list[str]:
    return [item["name"] for item in folders]


def test_tree_hides_unreadable_subtrees(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    policies = _post(
        knowledge_client,
        admin,
        "/api/knowledge/folders",
        {"name": "Policies", "permitted_departments": ["2"]},
    )
    _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "HR", "parent": policies["id"]})
    _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "General"})

    eve_tree = _tree(knowledge_client, tokens["eve"])
    assert _names(eve_tree) == ["Policies", "General"]
    hr = eve_tree[0]["folders"][0]
    assert hr["name"] == "HR"
    assert hr["effective_permissions"]["departments"] == [2]
    assert hr["access_level"] == "Specific Departments"
    assert eve_tree[1]["access_level"] == "All Employees"
    assert eve_tree[0]["created_by"]["is_admin"] is True
    assert eve_tree[0]["can_edit"] is False

    assert _names(_tree(knowledge_client, tokens["sam"])) == ["General"]
    assert _names(_tree(knowledge_client, admin)) == ["Policies", "General"]


def test_unreadable_is_not_found_and_admin_folder_is_forbidden(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    policies = _post(
        knowledge_client,
        admin,
        "/api/knowledge/folders",
        {"name": "Policies", "permitted_departments": ["2"]},
    )
    general = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "General"})

    hidden = knowledge_client.get(f"/api/knowledge/folders/{policies['id']}", headers=_auth_header(tokens["sam"]))
    assert hidden.status_code == 404

    rename = knowledge_client.put(
        f"/api/knowledge/folders/{general['id']}",
        json={"name": "Renamed"},
        headers=_auth_header(tokens["mia"]),
    )
    assert rename.status_code == 403

    hidden_rename = knowledge_client.put(
        f"/api/knowledge/folders/{policies['id']}",
        json={"name": "Renamed"},
        headers=_auth_header(tokens["mia"]),
    )
    assert hidden_rename.status_code == 404

    missing = knowledge_client.get("/api/knowledge/folders/999", headers=_auth_header(admin))
    assert missing.status_code == 404


def test_manager_edits_own_folder_within_scope(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    mia = tokens["mia"]
    folder = _post(
        knowledge_client,
        mia,
        "/api/knowledge/folders",
        {"name": "Downtown sales", "permitted_branch_departments": ["3"]},
    )
    assert folder["permitted_branch_departments"] == [3]

    renamed = knowledge_client.put(
        f"/api/knowledge/folders/{folder['id']}",
        json={"name": "Downtown sales team"},
        headers=_auth_header(mia),
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Downtown sales team"
    assert renamed.json()["permitted_branch_departments"] == [3]

    outside = knowledge_client.put(
        f"/api/knowledge/folders/{folder['id']}",
        json={"permitted_branch_departments": ["1"]},
        headers=_auth_header(mia),
    )
    assert outside.status_code == 403

    outside_create = knowledge_client.post(
        "/api/knowledge/folders",
        json={"name": "Head office", "permitted_branch_departments": ["1"]},
        headers=_auth_header(mia),
    )
    assert outside_create.status_code == 403

    employee_create = knowledge_client.post(
        "/api/knowledge/folders",
        json={"name": "Mine"},
        headers=_auth_header(tokens["eve"]),
    )
    assert employee_create.status_code == 403

    sam_view = _tree(knowledge_client, tokens["sam"])
    assert _names(sam_view) == ["Downtown sales team"]
    assert sam_view[0]["access_level"] == "Specific Branch Departments"
    assert _tree(knowledge_client, tokens["eve"]) == []


def test_unknown_ids_are_dropped_and_bad_ids_rejected(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    folder = _post(
        knowledge_client,
        admin,
        "/api/knowledge/folders",
        {"name": "Shared", "permitted_employees": ["3", "999"], "permitted_branches": [" 2 "]},
    )
    assert folder["permitted_employees"] == [3]
    assert folder["permitted_branches"] == [2]

    bad = knowledge_client.post(
        "/api/knowledge/folders",
        json={"name": "Broken", "permitted_departments": ["sales"]},
        headers=_auth_header(admin),
    )
    assert bad.status_code == 422


def test_folder_cannot_move_under_itself_or_descendant(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    parent = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "Parent"})
    child = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "Child", "parent": parent["id"]})
    other = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "Other"})

    for target in (parent["id"], child["id"]):
        response = knowledge_client.put(
            f"/api/knowledge/folders/{parent['id']}",
            json={"parent": target},
            headers=_auth_header(admin),
        )
        assert response.status_code == 409

    moved = knowledge_client.put(
        f"/api/knowledge/folders/{child['id']}",
        json={"parent": other["id"]},
        headers=_auth_header(admin),
    )
    assert moved.status_code == 200
    path = knowledge_client.get(f"/api/knowledge/folders/{child['id']}/path", headers=_auth_header(admin))
    assert [item["name"] for item in path.json()] == ["Other", "Child"]

    to_root = knowledge_client.put(
        f"/api/knowledge/folders/{child['id']}",
        json={"parent": None},
        headers=_auth_header(admin),
    )
    assert to_root.status_code == 200
    assert to_root.json()["parent_id"] is None


def test_files_inherit_unless_overridden(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    folder = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "Library"})
    _post(
        knowledge_client,
        admin,
        "/api/knowledge/files",
        {"folder": folder["id"], "name": "handbook.pdf", "file_url": "https://files.example/handbook.pdf"},
    )
    private = _post(
        knowledge_client,
        admin,
        "/api/knowledge/files",
        {
            "folder": folder["id"],
            "name": "sam-contract.pdf",
            "inherits_parent_permissions": False,
            "permitted_employees": ["4"],
        },
    )

    eve_files = _tree(knowledge_client, tokens["eve"])[0]["files"]
    assert [item["name"] for item in eve_files] == ["handbook.pdf"]
    sam_files = _tree(knowledge_client, tokens["sam"])[0]["files"]
    assert [item["name"] for item in sam_files] == ["handbook.pdf", "sam-contract.pdf"]
    assert sam_files[1]["access_level"] == "Specific Employees"

    hidden = knowledge_client.put(
        f"/api/knowledge/files/{private['id']}",
        json={"name": "renamed.pdf"},
        headers=_auth_header(tokens["mia"]),
    )
    assert hidden.status_code == 404

    as_sam = _tree(knowledge_client, admin, employee_id=4)
    assert [item["name"] for item in as_sam[0]["files"]] == ["handbook.pdf", "sam-contract.pdf"]
    as_eve = _tree(knowledge_client, admin, employee_id=3)
    assert [item["name"] for item in as_eve[0]["files"]] == ["handbook.pdf"]

    not_admin = knowledge_client.get(
        "/api/knowledge/folders/tree",
        params={"employee_id": 4},
        headers=_auth_header(tokens["eve"]),
    )
    assert not_admin.status_code == 403


def test_delete_requires_empty_folder(knowledge_client: TestClient, fake_redis: FakeRedis) -> None:
    tokens = _seed(knowledge_client)
    admin = tokens["admin"]
    folder = _post(knowledge_client, admin, "/api/knowledge/folders", {"name": "Archive"})
    item = _post(knowledge_client, admin, "/api/knowledge/files", {"folder": folder["id"], "name": "old.txt"})
    assert _names(_tree(knowledge_client, admin)) == ["Archive"]

    blocked = knowledge_client.delete(f"/api/knowledge/folders/{folder['id']}", headers=_auth_header(admin))
    assert blocked.status_code == 409

    removed_file = knowledge_client.delete(f"/api/knowledge/files/{item['id']}", headers=_auth_header(admin))
    assert removed_file.status_code == 204
    removed_folder = knowledge_client.delete(f"/api/knowledge/folders/{folder['id']}", headers=_auth_header(admin))
    assert removed_folder.status_code == 204
    assert _tree(knowledge_client, admin) == []
    assert fake_redis.get(redis_state.TREE_GENERATION_KEY) == "4"


def test_mutations_are_audited_and_published(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    folder = _post(knowledge_client, tokens["admin"], "/api/knowledge/folders", {"name": "Audited"})

    with Session(db.get_engine(), expire_on_commit=False) as session:
        audit_rows = session.exec(select(AuditLog).where(AuditLog.action == "knowledge.folder.create")).all()
        event_rows = session.exec(
            select(EventRecord).where(EventRecord.event_type == "knowledge.folder.created")
        ).all()

    assert len(audit_rows) == 1
    assert audit_rows[0].resource == f"knowledge_folder:{folder['id']}"
    assert audit_rows[0].actor_id == "1"
    assert audit_rows[0].detail["result"]["outcome"] == "success"
    assert len(event_rows) == 1
    assert event_rows[0].payload["folder_id"] == folder["id"]


def test_manager_cannot_move_into_admin_folder(knowledge_client: TestClient) -> None:
    tokens = _seed(knowledge_client)
    mia = tokens["mia"]
    general = _post(knowledge_client, tokens["admin"], "/api/knowledge/folders", {"name": "General"})
    sales = _post(
        knowledge_client,
        mia,
        "/api/knowledge/folders",
        {"name": "Downtown sales", "permitted_branch_departments": ["3"]},
    )
    archive = _post(knowledge_client, mia, "/api/knowledge/folders", {"name": "Downtown archive"})
    item = _post(knowledge_client, mia, "/api/knowledge/files", {"folder": sales["id"], "name": "targets.xlsx"})

    into_admin = knowledge_client.put(
        f"/api/knowledge/files/{item['id']}",
        json={"folder": general["id"]},
        headers=_auth_header(mia),
    )
    assert into_admin.status_code == 403

    folder_into_admin = knowledge_client.put(
        f"/api/knowledge/folders/{archive['id']}",
        json={"parent": general["id"]},
        headers=_auth_header(mia),
    )
    assert folder_into_admin.status_code == 403

    into_own = knowledge_client.put(
        f"/api/knowledge/files/{item['id']}",
        json={"folder": archive["id"]},
        headers=_auth_header(mia),
    )
    assert into_own.status_code == 200
    assert into_own.json()["folder_id"] == archive["id"]
