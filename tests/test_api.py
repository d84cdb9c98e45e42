from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
from fastapi.testclient import TestClient

from app.main import create_app


def issue_token(*, secret: str = "jwt_test_secret", ttl_minutes: int = 30) -> str:
    now = datetime.now(UTC)
    claims = {
        "iss": "test-issuer",
        "aud": "test-audience",
        "sub": "reviewer_1",
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def _rule_payload(name: str = "deposit cap", **overrides) -> dict:
    payload = {
        "name": name,
        "rule_type": "specific",
        "applicable_contract_types": ["lease"],
        "applicable_clause_types": ["payment"],
        "content": "Deposit must not exceed three months of rent.",
        "mode": "standard",
    }
    payload.update(overrides)
    return payload


def test_healthz_is_public():
    resp = TestClient(create_app()).get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "ok"
    assert resp.headers["x-trace-id"]


def test_api_requires_bearer_token():
    resp = TestClient(create_app()).get("/api/v1/review-rules")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


def test_api_rejects_expired_and_foreign_tokens():
    raw = TestClient(create_app())
    expired = issue_token(ttl_minutes=-1)
    resp = raw.get("/api/v1/review-rules", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    forged = issue_token(secret="other_secret")
    resp = raw.get("/api/v1/review-rules", headers={"Authorization": f"Bearer {forged}"})
    assert resp.json()["error"]["message"] == "invalid token signature"


def test_review_rule_crud(client):
    created = client.post("/api/v1/review-rules", json=_rule_payload())
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    rule_id = body["data"]["rule_id"]
    assert body["data"]["mode"] == "standard"

    assert client.get(f"/api/v1/review-rules/{rule_id}").json()["data"]["name"] == "deposit cap"
    updated = client.put(f"/api/v1/review-rules/{rule_id}", json=_rule_payload(content="Two months at most."))
    assert updated.json()["data"]["content"] == "Two months at most."
    assert client.post(f"/api/v1/review-rules/{rule_id}/disable").json()["data"]["enabled"] is False
    assert client.get("/api/v1/review-rules", params={"enabled": "false"}).json()["data"]["total"] == 1
    assert client.post(f"/api/v1/review-rules/{rule_id}/enable").json()["data"]["enabled"] is True
    assert client.delete(f"/api/v1/review-rules/{rule_id}").json()["data"]["deleted"] is True
    missing = client.get(f"/api/v1/review-rules/{rule_id}")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "RULE_NOT_FOUND"


def test_review_rule_validation_errors(client):
    resp = client.post("/api/v1/review-rules", json=_rule_payload(rule_type="extended"))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "RULE_DEFINITION_INVALID"

    client.post("/api/v1/review-rules", json=_rule_payload())
    conflict = client.post("/api/v1/review-rules", json=_rule_payload())
    assert conflict.status_code == 409
    assert conflict.json()["error"]["code"] == "RULE_NAME_CONFLICT"

    bad_payload = client.post("/api/v1/review-rules", json={"name": "x"})
    assert bad_payload.status_code == 400
    assert bad_payload.json()["error"]["code"] == "REQ_VALIDATION_FAILED"


def test_applicable_rules_follow_selection_order(client):
    client.post(
        "/api/v1/review-rules",
        json=_rule_payload(
            "fallback payment",
            rule_type="fallback",
            applicable_contract_types=["FALLBACK"],
            mode="relaxed",
        ),
    )
    client.post("/api/v1/review-rules", json=_rule_payload("specific payment"))
    resp = client.post(
        "/api/v1/review-rules/applicable",
        json={"contract_type": "lease", "clause_type": "payment", "mode": "strict"},
    )
    assert [x["name"] for x in resp.json()["data"]["items"]] == ["specific payment", "fallback payment"]

    unknown = client.post(
        "/api/v1/review-rules/applicable",
        json={"contract_type": "lease", "clause_type": "payment", "mode": "lenient"},
    )
    assert unknown.status_code == 400


def test_extraction_lifecycle_over_http(client):
    rule_id = client.post("/api/v1/review-rules", json=_rule_payload()).json()["data"]["rule_id"]
    triggered = client.post(
        "/api/v1/extractions",
        json={"contract_id": "ct_http", "contract_type": "lease"},
        headers={"x-test-subject": "reviewer_9"},
    )
    assert triggered.status_code == 201
    run = triggered.json()["data"]
    assert run["status"] == "pending"
    assert run["requested_by"] == "reviewer_9"

    duplicate = client.post("/api/v1/extractions", json={"contract_id": "ct_http"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "EXTRACTION_ALREADY_ACTIVE"

    begun = client.post(f"/api/v1/extractions/{run['run_id']}/begin", json={"clause_type": "payment"})
    assert begun.json()["data"]["rule_snapshot"] == [rule_id]
    done = client.post(f"/api/v1/extractions/{run['run_id']}/complete", json={"outcome_summary": "ok"})
    assert done.json()["data"]["status"] == "succeeded"
    assert done.json()["data"]["duration_ms"] is not None

    again = client.post(f"/api/v1/extractions/{run['run_id']}/fail", json={"error_message": "late"})
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "EXTRACTION_TRANSITION_INVALID"

    listing = client.get("/api/v1/contracts/ct_http/extractions").json()["data"]
    assert listing["total"] == 1
    assert listing["active_run_id"] is None

    audit = client.get("/api/v1/audit/contracts/ct_http").json()["data"]
    assert [x["action"] for x in audit["items"]] == ["started", "succeeded"]
    assert audit["latest_run_id"] == run["run_id"]
    assert audit["items"][0]["actor_id"] == "reviewer_9"
    assert client.get(f"/api/v1/audit/runs/{run['run_id']}").json()["data"]["total"] == 2
    integrity = client.get("/api/v1/audit/integrity").json()["data"]
    assert integrity == {"valid": True, "checked_count": 2, "last_hash": audit["items"][-1]["audit_hash"]}


def test_extraction_failure_and_unknown_run(client):
    run_id = client.post("/api/v1/extractions", json={"contract_id": "ct_fail"}).json()["data"]["run_id"]
    client.post(f"/api/v1/extractions/{run_id}/begin", json={"clause_type": "payment", "mode": 0})
    failed = client.post(f"/api/v1/extractions/{run_id}/fail", json={"error_message": "parse error"})
    assert failed.json()["data"]["error_message"] == "parse error"
    assert client.get(f"/api/v1/extractions/{run_id}").json()["data"]["status"] == "failed"

    missing = client.get("/api/v1/extractions/run_missing")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "EXTRACTION_RUN_NOT_FOUND"


def test_trace_id_is_echoed(client):
    resp = client.get("/api/v1/review-rules", headers={"x-trace-id": "trace_fixed"})
    assert resp.headers["x-trace-id"] == "trace_fixed"
    assert resp.json()["meta"]["trace_id"] == "trace_fixed"


def test_strict_trace_id_mode(monkeypatch):
    monkeypatch.setenv("TRACE_ID_STRICT_REQUIRED", "true")
    raw = TestClient(create_app())
    resp = raw.get("/api/v1/review-rules", headers={"Authorization": f"Bearer {issue_token()}"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "TRACE_ID_REQUIRED"


def test_review_rule_catalog_queries(client):
    first = client.post("/api/v1/review-rules", json=_rule_payload(category="payment terms")).json()["data"]
    client.post(
        "/api/v1/review-rules",
        json=_rule_payload("notice period", mode="strict", category="termination"),
    )
    client.post(f"/api/v1/review-rules/{first['rule_id']}/disable")

    taken = client.get("/api/v1/review-rules/name-availability", params={"name": "deposit cap"}).json()["data"]
    assert taken == {"name": "deposit cap", "available": False}
    free = client.get("/api/v1/review-rules/name-availability", params={"name": "late fee"}).json()["data"]
    assert free["available"] is True

    assert client.get("/api/v1/review-rules/count").json()["data"]["count"] == 2
    assert client.get("/api/v1/review-rules/count", params={"enabled": "true"}).json()["data"]["count"] == 1

    effective = client.get("/api/v1/review-rules/effective", params={"mode": "strict"}).json()["data"]
    assert [x["name"] for x in effective["items"]] == ["notice period"]
    assert client.get("/api/v1/review-rules/effective", params={"mode": "standard"}).json()["data"]["total"] == 0
    assert client.get("/api/v1/review-rules/effective", params={"mode": "bogus"}).status_code == 400

    by_category = client.get(
        "/api/v1/review-rules/by-categories",
        params=[("categories", "payment terms"), ("categories", "termination")],
    ).json()["data"]
    assert by_category["total"] == 2
    assert {x["category"] for x in by_category["items"]} == {"payment terms", "termination"}


def test_audit_queries_by_actor_and_time_range(client):
    run_id = client.post("/api/v1/extractions", json={"contract_id": "ct_audit_q"}).json()["data"]["run_id"]
    client.post(f"/api/v1/extractions/{run_id}/begin", json={"clause_type": "payment"})
    client.post(f"/api/v1/extractions/{run_id}/complete", json={"outcome_summary": "ok"})

    by_actor = client.get("/api/v1/audit/actors/reviewer_1").json()["data"]
    assert [x["action"] for x in by_actor["items"]] == ["started", "succeeded"]
    limited = client.get("/api/v1/audit/actors/reviewer_1", params={"limit": 1}).json()["data"]
    assert [x["action"] for x in limited["items"]] == ["succeeded"]
    assert client.get("/api/v1/audit/actors/reviewer_1", params={"limit": 0}).status_code == 400

    now = datetime.now(UTC)
    window = {
        "start": (now - timedelta(minutes=5)).isoformat(),
        "end": (now + timedelta(minutes=5)).isoformat(),
    }
    assert client.get("/api/v1/audit/logs", params=window).json()["data"]["total"] == 2
    assert client.get("/api/v1/audit/logs/count", params=window).json()["data"]["count"] == 2

    inverted = client.get("/api/v1/audit/logs", params={"start": window["end"], "end": window["start"]})
    assert inverted.status_code == 400
    assert inverted.json()["error"]["code"] == "REQ_VALIDATION_FAILED"
