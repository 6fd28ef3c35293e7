import pytest
from fastapi import Query, status
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.errors import InternalConfigurationError, StorageError
from app.main import create_app


def test_cors_preflight_returns_204_with_headers() -> None:
    client = TestClient(create_app())

    response = client.options(
        "/api/users/00000000-0000-0000-0000-000000000001/permissions",
        headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "content-type, x-principal-id",
        },
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"
    assert "PUT" in response.headers["access-control-allow-methods"]
    assert response.headers["access-control-allow-headers"] == "content-type, x-principal-id"
    assert response.headers["vary"] == "Origin"


def test_cors_preflight_without_request_headers_uses_allowlist() -> None:
    client = TestClient(create_app())

    response = client.options(
        "/api/me/permissions",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert response.headers["access-control-allow-headers"] == "content-type, x-principal-id"


def test_cors_preflight_from_unknown_origin_gets_no_cors_headers() -> None:
    client = TestClient(create_app())

    response = client.options(
        "/api/me/permissions",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert "access-control-allow-origin" not in response.headers


def test_startup_passes_enforcement_coverage() -> None:
    with TestClient(create_app()) as client:
        response = client.get("/api/me/permissions")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_startup_refuses_unguarded_mutation() -> None:
    app = create_app()

    @app.delete("/api/events/{event_id}")
    async def delete_event(event_id: int):
        return None

    with pytest.raises(InternalConfigurationError):
        with TestClient(app):
            pass


def test_health_reports_ok() -> None:
    client = TestClient(create_app())
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


def _failing_app():
    app = create_app()

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret connection string")

    @app.get("/storage")
    async def storage():
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    @app.get("/storage-error")
    async def storage_error():
        raise StorageError(details={"dsn": "postgresql://user:pass@db/church"})

    return TestClient(app, raise_server_exceptions=False)


def test_unhandled_exception_returns_500_without_details() -> None:
    response = _failing_app().get("/boom")

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {
        "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}
    }
    assert "secret" not in response.text


@pytest.mark.parametrize("path", ["/storage", "/storage-error"])
def test_storage_failures_fail_closed_with_503(path: str) -> None:
    response = _failing_app().get(path)

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["error"]["code"] == "STORAGE_ERROR"
    assert response.json()["error"]["details"] is None


def test_validation_errors_use_the_error_envelope() -> None:
    app = create_app()

    @app.get("/echo")
    async def echo(limit: int = Query(..., ge=1)):
        return {"limit": limit}

    response = TestClient(app).get("/echo", params={"limit": 0})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert response.json()["error"]["details"][0]["loc"] == ["query", "limit"]
