import pytest
from fastapi.testclient import TestClient

from app_manager.api import create_app

from tests.conftest import FakeProber

PREFIXES = {"local": "http://localhost", "network": "http://10.0.0.5", "external": "http://203.0.113.9"}


@pytest.fixture
def flask_app(app_dir):
    return {"Name": "Demo", "Type": "Flask", "AppPath": str(app_dir), "IndexPath": "app.py", "Port": 5000}


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def manager(make_manager, flask_app, prober):
    return make_manager([flask_app], prober=prober)


@pytest.fixture
def client(manager):
    return TestClient(create_app(manager, manager.registry.repo, prefixes=lambda: PREFIXES))


def test_api_forces_auto_mode(manager, client):
    assert manager.auto is True


def test_list_apps(client):
    r = client.get("/apps")
    assert r.status_code == 200
    [demo] = r.json()
    assert demo["name"] == "Demo"
    assert demo["status"] == "stopped"
    assert demo["port"] == 5000


def test_dashboard_lists_links(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "Demo" in r.text
    assert "http://10.0.0.5:5000" in r.text
    assert "http://203.0.113.9:5000" in r.text


def test_create_validates(client, tmp_path):
    r = client.post("/apps", json={"Name": "", "Type": "Flask", "AppPath": str(tmp_path / "nope")})
    assert r.status_code == 422
    fields = {e["field"] for e in r.json()["detail"]["errors"]}
    assert {"Name", "AppPath", "IndexPath"} <= fields


def test_create_and_duplicate(client, app_dir):
    payload = {"Name": "Reports", "Type": "StreamlitApp", "AppPath": str(app_dir), "IndexPath": "app.py", "Port": 8502}
    r = client.post("/apps", json=payload)
    assert r.status_code == 200
    assert r.json()["name"] == "Reports"

    r = client.post("/apps", json={**payload, "Name": "reports"})
    assert r.status_code == 409


def test_update_app(client):
    r = client.put("/apps/demo", json={"Port": 5050})
    assert r.status_code == 200
    assert r.json()["port"] == 5050


def test_update_running_app_is_rejected(client, prober):
    prober.occupied.add(5000)
    assert client.put("/apps/Demo", json={"Port": 5050}).status_code == 400
    assert client.delete("/apps/Demo").status_code == 400


def test_delete_app(client):
    assert client.delete("/apps/Demo").json() == {"ok": True}
    assert client.get("/apps").json() == []
    assert client.delete("/apps/Demo").status_code == 404


def test_unknown_app(client):
    assert client.post("/apps/ghost/start").status_code == 404
    assert client.get("/apps/ghost/logs").status_code == 404


def test_start_stop_and_logs(client, manager, prober):
    r = client.post("/apps/Demo/start")
    assert r.status_code == 200
    assert r.json()["outcome"] == "launched"
    assert manager.backend.opened

    prober.occupied.add(5000)
    r = client.post("/apps/Demo/stop")
    assert r.json()["outcome"] == "stopped"
    assert r.json()["still_serving"] is False

    lines = client.get("/apps/Demo/logs").json()["lines"]
    assert any(line.startswith("[manager] Launched") for line in lines)


def test_stop_without_port_is_conflict(make_manager, app_dir):
    manager = make_manager([{"Name": "Job", "AppPath": str(app_dir), "CustomCommand": "./run"}])
    client = TestClient(create_app(manager, manager.registry.repo, prefixes=lambda: PREFIXES))
    assert client.post("/apps/Job/stop").status_code == 409


def test_start_without_backend(make_manager, flask_app):
    manager = make_manager([flask_app], backend=None)
    client = TestClient(create_app(manager, manager.registry.repo, prefixes=lambda: PREFIXES))
    assert client.post("/apps/Demo/start").status_code == 503
    assert client.get("/sessions").json() == []


def test_sessions(client, manager):
    client.post("/apps/Demo/start")
    assert client.get("/sessions").json() == [{"name": "Demo", "alive": True}]


def test_import_yaml(client, tmp_path):
    yml = tmp_path / "more.yaml"
    yml.write_text("apps:\n  Job:\n    AppPath: /srv/job\n    CustomCommand: ./run\n")
    r = client.post("/apps/import-yaml", json={"path": str(yml)})
    assert r.json() == {"ok": True, "imported": ["Job"], "count": 1}
    assert client.post("/apps/import-yaml", json={"path": str(tmp_path / "nope.yaml")}).status_code == 404
