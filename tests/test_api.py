"""
API tests: routes, error mapping and the token gate.
"""

import sqlite3
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from livecms.api.main import app
from livecms.core import dao, history
from livecms.core.locks import RateLimiter


@pytest.fixture
def client(project, monkeypatch):
    monkeypatch.setattr(history, "_default_controller", None)
    return TestClient(app)


def update_body(**overrides):
    body = {
        "id": "lead",
        "value": "Hello there",
        "oldValue": "Hello world",
        "filePath": "templates/page.html",
    }
    body.update(overrides)
    return body


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["db_health"] is True


def test_scan_markup(client):
    response = client.post("/scan", json={"markup": "<main><h1>Hi</h1><p>Copy</p></main>", "inject": True})

    assert response.status_code == 200
    data = response.json()
    assert data["stats"]["editable"] == 2
    assert len(data["generated_ids"]) == 2
    assert 'data-cms-editable="true"' in data["markup"]


def test_scan_types_filter_alias(client):
    response = client.post("/scan", json={"markup": "<main><h1>Hi</h1><p>Copy</p></main>", "typesFilter": ["heading"]})

    editables = [e for e in response.json()["elements"] if e["classification"]["kind"] == "editable"]
    assert [e["text"] for e in editables] == ["Hi"]


def test_scan_requires_markup_or_url(client):
    response = client.post("/scan", json={})

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_update_content(client, project):
    response = client.post("/content/update", json=update_body(), headers={"X-User-Id": "alice"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["history_id"]
    assert data["file_path"] == "templates/page.html"
    assert "Hello there" in (project / "templates" / "page.html").read_text(encoding="utf-8")

    records = client.get("/history/lead").json()["records"]
    assert records[0]["actor"] == "alice"


def test_update_uses_metadata_original(client, project):
    body = update_body(metadata={"original": "Hello world"})
    del body["oldValue"]

    response = client.post("/content/update", json=body)

    assert response.status_code == 200


def test_mismatch_maps_to_409(client):
    response = client.post("/content/update", json=update_body(oldValue="Not there"))

    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "PatchMismatch"
    assert "re-scan" in data["message"]
    assert "details" in data


def test_ambiguous_maps_to_409(client, project):
    (project / "templates" / "twice.html").write_text("<p>Same</p>\n<p>Same</p>\n")

    response = client.post("/content/update", json=update_body(
        oldValue="Same", value="Other", filePath="templates/twice.html"))

    assert response.status_code == 409
    assert response.json()["error"] == "AmbiguousMatch"
    assert response.json()["details"]["lines"] == [1, 2]


def test_line_number_disambiguates(client, project):
    (project / "templates" / "twice.html").write_text("<p>Same</p>\n<p>Same</p>\n")

    response = client.post("/content/update", json=update_body(
        oldValue="Same", value="Other", filePath="templates/twice.html", lineNumber=2))

    assert response.status_code == 200
    assert (project / "templates" / "twice.html").read_text() == "<p>Same</p>\n<p>Other</p>\n"


def test_syntax_risk_maps_to_422(client):
    response = client.post("/content/update", json=update_body(value="Hello <b"))

    assert response.status_code == 422
    assert response.json()["error"] == "SyntaxRisk"


def test_dangerous_value_maps_to_422(client):
    response = client.post("/content/update", json=update_body(value="<script>x</script>"))

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


def test_path_traversal_maps_to_422(client):
    response = client.post("/content/update", json=update_body(filePath="../../etc/passwd"))

    assert response.status_code == 422


def test_lock_conflict_maps_to_423(client):
    history.get_controller().locks.acquire("lead", "bob")

    response = client.post("/content/update", json=update_body())

    assert response.status_code == 423
    assert response.json()["details"]["holder"] == "bob"


def test_rate_limit_maps_to_429(client):
    history.get_controller().rate_limiter = RateLimiter(max_writes=0, window_sec=60)

    response = client.post("/content/update", json=update_body())

    assert response.status_code == 429
    assert response.json()["error"] == "RateLimited"


def test_token_gate(client, monkeypatch):
    monkeypatch.setenv("CMS_API_TOKEN", "secret")

    denied = client.post("/scan", json={"markup": "<p>x</p>"})
    allowed = client.post("/scan", json={"markup": "<p>x</p>"}, headers={"X-CMS-Token": "secret"})

    assert denied.status_code == 403
    assert denied.json()["error"] == "PermissionError"
    assert allowed.status_code == 200
    assert client.get("/health").status_code == 200


def test_bulk_update(client):
    response = client.post("/content/bulk", json={"updates": [
        update_body(),
        update_body(id="title", oldValue="Nope", value="x"),
    ]})

    assert response.status_code == 200
    data = response.json()
    assert data["summary"] == {"total": 2, "successful": 1, "failed": 1}
    assert data["errors"][0]["error"] == "PatchMismatch"


def test_bulk_duplicates_rejected(client, project):
    response = client.post("/content/bulk", json={"updates": [update_body(), update_body(value="Again")]})

    assert response.status_code == 422
    assert "Hello world" in (project / "templates" / "page.html").read_text(encoding="utf-8")


def test_history_restore(client, project):
    history_id = client.post("/content/update", json=update_body()).json()["history_id"]

    response = client.post(f"/history/{history_id}/restore")

    assert response.status_code == 200
    assert "Hello world" in (project / "templates" / "page.html").read_text(encoding="utf-8")
    actions = [r["action"] for r in client.get("/history/lead").json()["records"]]
    assert actions == ["restore", "update"]


def test_restore_missing_history_is_404(client):
    response = client.post("/history/424242/restore")

    assert response.status_code == 404


def test_backups_list_and_restore(client, project):
    client.post("/content/update", json=update_body())

    listing = client.get("/backups", params={"file": "templates/page.html"}).json()
    assert len(listing["backups"]) == 1

    response = client.post("/backups/restore", json={
        "backupFile": listing["backups"][0]["file"],
        "filePath": "templates/page.html",
    })

    assert response.status_code == 200
    assert "Hello world" in (project / "templates" / "page.html").read_text(encoding="utf-8")


def test_backup_restore_outside_backup_dir(client, project):
    response = client.post("/backups/restore", json={
        "backupFile": str(project / "templates" / "page.html"),
        "filePath": "templates/page.html",
    })

    assert response.status_code == 422


def test_update_reports_history_failure_after_write(client, project):
    with patch.object(dao, "add_history_record", side_effect=sqlite3.OperationalError("database is locked")):
        response = client.post("/content/update", json=update_body())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["history_id"] is None
    assert data["history_error"] == "database is locked"
    assert "Hello there" in (project / "templates" / "page.html").read_text(encoding="utf-8")
