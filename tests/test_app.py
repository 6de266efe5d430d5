"""Tests for cross-cutting behaviour: health, error bodies, headers and the UI page."""

import pytest

import pinboard
from schemas import (
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnexpectedError,
    ValidationError,
    error_for_status,
)


def test_health(client):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


def test_unknown_route_is_tagged_404(client):
    resp = client.get("/api/nope")

    assert resp.status_code == 404
    assert resp.get_json() == {"error": "not_found", "message": "Route not found"}


def test_wrong_method_keeps_status_with_tagged_body(client):
    resp = client.put("/api/health")

    assert resp.status_code == 405
    assert resp.get_json()["error"] == "validation"


def test_unhandled_exception_is_generic_500(client, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(pinboard, "select_pins", explode)

    resp = client.get("/api/pins")

    assert resp.status_code == 500
    assert resp.get_json() == {"error": "unexpected", "message": "Something went wrong!"}
    assert "disk on fire" not in resp.get_data(as_text=True)


def test_security_headers_are_set(client):
    resp = client.get("/api/health")

    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert "Content-Security-Policy" in resp.headers


def test_cors_allows_api_origin(client):
    resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})

    assert resp.headers.get("Access-Control-Allow-Origin") in ("*", "http://localhost:5173")


def test_index_serves_single_page_ui(client):
    resp = client.get("/")

    assert resp.status_code == 200
    assert b"pinStore" in resp.data


def test_upload_route_rejects_traversal(client):
    resp = client.get("/uploads/../pinboard.py")

    assert resp.status_code == 404


@pytest.mark.parametrize(
    "error, status, kind",
    [
        (ValidationError(), 400, "validation"),
        (AuthError(), 401, "unauthorized"),
        (ForbiddenError(), 403, "forbidden"),
        (NotFoundError(), 404, "not_found"),
        (ConflictError(), 409, "conflict"),
        (UnexpectedError(), 500, "unexpected"),
    ],
)
def test_error_taxonomy(error, status, kind):
    assert error.status_code == status
    assert error.to_dict() == {"error": kind, "message": error.default_message}


def test_error_for_status_keeps_unmapped_codes():
    err = error_for_status(418, "teapot")

    assert err.status_code == 418
    assert err.kind == "validation"
    assert error_for_status(405).kind == "validation"
    assert error_for_status(405).status_code == 405
    assert error_for_status(503).kind == "unexpected"
    assert isinstance(error_for_status(404), NotFoundError)
