# tests/test_health.py
from fastapi.testclient import TestClient


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_describes_the_service(client: TestClient) -> None:
    body = client.get("/").json()
    assert body["name"] == "Gym Floor"
    assert body["docs"] == "/docs"


def test_openapi_documents_structured_errors(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()
    claim = schema["paths"]["/api/v1/equipment/{equipment_id}/claim"]["post"]
    assert {"201", "404", "409"} <= set(claim["responses"])
    assert "ErrorResponse" in schema["components"]["schemas"]
