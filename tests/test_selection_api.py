from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine

from portal import main as app_main
from portal.infra import audit, db, events


@pytest.fixture()
def selection_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "selection_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    monkeypatch.setattr(audit, "engine", test_engine)
    monkeypatch.setattr(events, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


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


def _seed(client: TestClient) -> tuple[str, str]:
    client.post("/api/identity/bootstrap-admin", json={"username": "admin", "password": "admin-pass"})
    admin = _login(client, "admin", "admin-pass")
    for name in ("Head Office", "Downtown"):
        _post(client, admin, "/api/org/branches", {"name": name})
    for name in ("Sales", "Support"):
        _post(client, admin, "/api/org/departments", {"name": name})
    # Links: 1 = Head Office/Sales, 2 = Head Office/Support, 3 = Downtown/Sales.
    for branch_id, department_id in ((1, 1), (1, 2), (2, 1)):
        _post(client, admin, "/api/org/branch-departments", {"branch_id": branch_id, "department_id": department_id})
    _post(
        client,
        admin,
        "/api/org/employees",
        {"username": "mia", "password": "mia-pass", "name": "Mia", "is_manager": True, "branch_department_ids": [3]},
    )
    return admin, _login(client, "mia", "mia-pass")


def test_expand_resolves_sentinels_and_scope(selection_client: TestClient) -> None:
    admin, manager = _seed(selection_client)

    response = selection_client.post(
        "/api/access/selection/expand",
        json={"branch_ids": ["all"], "department_ids": [1]},
        headers=_auth_header(admin),
    )
    assert response.status_code == 200
    assert response.json() == {"branch_ids": [1, 2], "department_ids": [1], "branch_department_ids": [1, 3]}

    scoped = selection_client.post(
        "/api/access/selection/expand",
        json={"branch_ids": ["ALL"], "department_ids": ["1"]},
        headers=_auth_header(manager),
    )
    assert scoped.json()["branch_department_ids"] == [3]
    assert scoped.json()["branch_ids"] == [2]

    cleared = selection_client.post(
        "/api/access/selection/expand",
        json={"branch_ids": [1, "none"], "department_ids": [1]},
        headers=_auth_header(admin),
    )
    assert cleared.json()["branch_department_ids"] == []

    invalid = selection_client.post(
        "/api/access/selection/expand",
        json={"branch_ids": ["head"], "department_ids": []},
        headers=_auth_header(admin),
    )
    assert invalid.status_code == 422


def test_collapse_filters_unknown_and_out_of_scope_links(selection_client: TestClient) -> None:
    admin, manager = _seed(selection_client)

    response = selection_client.post(
        "/api/access/selection/collapse",
        json={"branch_department_ids": [1, 3, 99]},
        headers=_auth_header(admin),
    )
    assert response.json() == {"branch_ids": [1, 2], "department_ids": [1], "branch_department_ids": [1, 3]}

    scoped = selection_client.post(
        "/api/access/selection/collapse",
        json={"branch_department_ids": [1, 3]},
        headers=_auth_header(manager),
    )
    assert scoped.json() == {"branch_ids": [2], "department_ids": [1], "branch_department_ids": [3]}


def test_options_follow_selected_branches(selection_client: TestClient) -> None:
    admin, manager = _seed(selection_client)

    nothing_selected = selection_client.get("/api/access/selection/options", headers=_auth_header(admin))
    assert nothing_selected.json() == {"branch_ids": [1, 2], "department_ids": []}

    head_office = selection_client.get(
        "/api/access/selection/options",
        params={"branch_ids": [1], "department_query": "sup"},
        headers=_auth_header(admin),
    )
    assert head_office.json() == {"branch_ids": [1, 2], "department_ids": [2]}

    searched = selection_client.get(
        "/api/access/selection/options",
        params={"branch_query": "DOWN"},
        headers=_auth_header(admin),
    )
    assert searched.json()["branch_ids"] == [2]

    scoped = selection_client.get(
        "/api/access/selection/options",
        params={"branch_ids": [1, 2]},
        headers=_auth_header(manager),
    )
    assert scoped.json() == {"branch_ids": [2], "department_ids": [1]}
