from conftest import STUDENT

from achievement_tracker.errors import StoreUnavailable
from achievement_tracker.schemas import error_envelope


def test_success_response_contains_trace_id_and_success_envelope(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.headers.get("x-trace-id")
    assert resp.headers.get("x-request-id")

    body = resp.json()
    assert body["success"] is True
    assert body["data"] == {"status": "ok"}
    assert body["meta"]["trace_id"]


def test_error_response_contains_standard_error_object(client):
    resp = client.get("/route-not-exists")
    assert resp.status_code == 404
    assert resp.headers.get("x-trace-id")
    assert resp.headers.get("x-request-id")

    body = resp.json()
    assert body["success"] is False
    assert set(body["error"].keys()) >= {"code", "message", "retryable", "class"}
    assert body["meta"]["trace_id"]


def test_store_unavailable_is_retryable_503(client, content_store, monkeypatch):
    def _down(**_kwargs):
        raise StoreUnavailable()

    monkeypatch.setattr(content_store, "create", _down)
    resp = client.post(
        "/api/v1/achievements",
        json={"category": "other", "title": "t", "description": "d"},
        actor=STUDENT,
    )
    assert resp.status_code == 503
    error = resp.json()["error"]
    assert error["code"] == "STORE_UNAVAILABLE"
    assert error["retryable"] is True
    assert error["class"] == "transient"


def test_validation_details_are_rendered(client):
    resp = client.post(
        "/api/v1/achievements",
        json={"category": "competition", "title": "t", "description": "d", "details": {"rank": "first"}},
        actor=STUDENT,
    )
    assert resp.status_code == 400
    errors = resp.json()["error"]["details"]["errors"]
    assert errors[0]["loc"][-1] == "rank"


def test_error_envelope_omits_absent_details():
    body = error_envelope(code="X", message="m", error_class="validation", retryable=False, trace_id="t")
    assert "details" not in body["error"]
    assert body["meta"] == {"trace_id": "t"}
