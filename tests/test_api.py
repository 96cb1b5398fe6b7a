import time

import pytest
from fastapi.testclient import TestClient

from cornerstone_core.api.security import create_session_token, parse_session_token
from cornerstone_core.core.runtime import CornerstoneRuntime
from cornerstone_core.main import create_app
from cornerstone_core.utils.config import Settings

from .conftest import ECHO_ENVELOPE, OTHER_USER, OWNER, write_script


def _auth(user_id=OWNER):
    return {"Authorization": f"Bearer {create_session_token(user_id)}"}


@pytest.fixture
def client(tmp_path, work_dir):
    write_script(work_dir, "echo.py", ECHO_ENVELOPE)
    runtime = CornerstoneRuntime(
        settings=Settings(DATABASE_PATH=str(tmp_path / "api.db"), PLUGIN_WORK_DIR=str(work_dir), PLUGIN_TIMEOUT=20)
    )
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


@pytest.fixture
def table_id(client):
    database = client.post("/databases", json={"name": "crm"}, headers=_auth())
    assert database.status_code == 201
    table = client.post(f"/databases/{database.json()['id']}/tables", json={"name": "contacts"}, headers=_auth())
    assert table.status_code == 201
    return table.json()["id"]


@pytest.fixture
def plugin_id(client):
    resp = client.post(
        "/plugins",
        json={"name": "echo", "language": "python", "entry_file": "echo.py", "config_values": "{}"},
        headers=_auth(),
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def _wait_for_executions(client, plugin_id, count, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        items = client.get(f"/plugins/{plugin_id}/executions", headers=_auth()).json()
        if len(items) >= count and all(item["status"] != "running" for item in items):
            return items
        time.sleep(0.05)
    raise AssertionError(f"expected {count} finished executions for {plugin_id}")


def test_session_token_round_trip():
    token = create_session_token("usr_1")
    assert parse_session_token(token) == "usr_1"
    assert parse_session_token(token + "x") is None
    assert parse_session_token("garbage") is None
    assert parse_session_token(None) is None


def test_requests_without_session_are_rejected(client):
    assert client.get("/plugins").status_code == 401
    assert client.get("/plugins", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_session_cookie_is_accepted(client):
    client.cookies.set("cornerstone_session", create_session_token(OWNER))
    assert client.get("/plugins").status_code == 200


def test_plugin_crud(client, plugin_id):
    listed = client.get("/plugins", headers=_auth()).json()
    assert [p["id"] for p in listed] == [plugin_id]

    duplicate = client.post("/plugins", json={"name": "echo", "language": "python", "entry_file": "echo.py"}, headers=_auth())
    assert duplicate.status_code == 409

    updated = client.put(f"/plugins/{plugin_id}", json={"name": "echo-2", "timeout": 10}, headers=_auth())
    assert updated.status_code == 200
    assert updated.json()["timeout"] == 10

    assert client.get(f"/plugins/{plugin_id}", headers=_auth(OTHER_USER)).status_code == 404
    assert client.delete(f"/plugins/{plugin_id}", headers=_auth()).status_code == 200
    assert client.get(f"/plugins/{plugin_id}", headers=_auth()).status_code == 404


def test_invalid_plugin_definition_is_rejected(client):
    resp = client.post("/plugins", json={"name": "rb", "language": "ruby", "entry_file": "x.rb"}, headers=_auth())
    assert resp.status_code == 422


def test_bind_unbind_and_list(client, plugin_id, table_id):
    bind = client.post(f"/plugins/{plugin_id}/bind", json={"table_id": table_id, "trigger": "create"}, headers=_auth())
    assert bind.status_code == 201

    again = client.post(f"/plugins/{plugin_id}/bind", json={"table_id": table_id, "trigger": "create"}, headers=_auth())
    assert again.status_code == 409

    missing_table = client.post(f"/plugins/{plugin_id}/bind", json={"table_id": "tbl_nope", "trigger": "create"}, headers=_auth())
    assert missing_table.status_code == 404

    details = client.get(f"/plugins/{plugin_id}/bindings", headers=_auth()).json()
    assert len(details) == 1
    assert details[0]["table_name"] == "contacts"
    assert details[0]["database_name"] == "crm"

    unbind = client.request("DELETE", f"/plugins/{plugin_id}/unbind", json={"table_id": table_id}, headers=_auth())
    assert unbind.status_code == 200
    assert unbind.json()["removed"] == 1

    again = client.request("DELETE", f"/plugins/{plugin_id}/unbind", json={"table_id": table_id}, headers=_auth())
    assert again.status_code == 404


def test_manual_execute(client, plugin_id, table_id):
    not_bound = client.post(
        f"/plugins/{plugin_id}/execute",
        json={"table_id": table_id, "trigger": "manual"},
        headers=_auth(),
    )
    assert not_bound.status_code == 404
    assert client.get(f"/plugins/{plugin_id}/executions", headers=_auth()).json() == []

    client.post(f"/plugins/{plugin_id}/bind", json={"table_id": table_id, "trigger": "manual"}, headers=_auth())
    resp = client.post(
        f"/plugins/{plugin_id}/execute",
        json={"table_id": table_id, "trigger": "manual", "payload": {"dry_run": True}},
        headers=_auth(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "success"
    assert body["trigger"] == "manual"
    assert body["finished_at"] is not None

    history = client.get(f"/plugins/{plugin_id}/executions?limit=500", headers=_auth()).json()
    assert [item["id"] for item in history] == [body["id"]]


def test_record_mutation_triggers_bound_plugin(client, plugin_id, table_id):
    client.post(f"/plugins/{plugin_id}/bind", json={"table_id": table_id, "trigger": "create"}, headers=_auth())

    record = client.post(f"/tables/{table_id}/records", json={"data": {"name": "Ada"}}, headers=_auth())
    assert record.status_code == 201

    (execution,) = _wait_for_executions(client, plugin_id, 1)
    assert execution["trigger"] == "create"
    assert execution["record_id"] == record.json()["id"]
    assert execution["status"] == "success"


def test_record_routes_report_missing_targets(client, table_id):
    assert client.post("/tables/tbl_nope/records", json={"data": {}}, headers=_auth()).status_code == 404
    assert client.put("/records/rec_nope", json={"data": {}}, headers=_auth()).status_code == 404
    assert client.delete("/records/rec_nope", headers=_auth()).status_code == 404
    assert client.post(f"/tables/{table_id}/records", json={"data": {}}, headers=_auth(OTHER_USER)).status_code == 404


def test_plugin_runtime_settings(client, work_dir):
    current = client.get("/settings/plugin-runtime", headers=_auth())
    assert current.json() == {"timeout": 20, "work_dir": str(work_dir)}

    updated = client.put("/settings/plugin-runtime", json={"timeout": 90, "work_dir": str(work_dir)}, headers=_auth())
    assert updated.status_code == 200
    assert updated.json()["timeout"] == 90

    assert client.put("/settings/plugin-runtime", json={"timeout": 0, "work_dir": "x"}, headers=_auth()).status_code == 422


def test_system_status_and_logs(client):
    status = client.get("/system/status").json()
    assert status["status"] == "ok"
    assert status["dispatcher"]["running"] is True
    assert status["dispatcher"]["workers"] == 4

    assert client.get("/logs/history").status_code == 401
    history = client.get("/logs/history?limit=5", headers=_auth())
    assert history.status_code == 200
    assert len(history.json()) <= 5
