from fastapi.testclient import TestClient

from gitsmith.orchestrator.app import app

client = TestClient(app)


def test_health():
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_components_unavailable_before_startup():
    response = client.get("/api/workspaces/list")
    assert response.status_code == 503
