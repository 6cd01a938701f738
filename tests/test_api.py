"""API tests through FastAPI's TestClient."""

import asyncio

from gate.api import gate as gate_api
from gate.config import settings
from gate.utils.canonical import digest, hash_value


def _scenario(client, scenario_id):
    resp = client.get(f"/v1/gate/scenarios/{scenario_id}")
    assert resp.status_code == 200
    return resp.json()


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}
    metrics = client.get("/metrics").json()
    assert metrics["rules"] == 7


def test_evaluate_scenario(client):
    body = _scenario(client, "normal-purchase")
    resp = client.post("/v1/gate/evaluate", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["verdict"] == "AUTHORIZED"
    assert data["triggered_rule"]["id"] == "RULE-006"
    assert data["request_id"] == body["id"]


def test_evaluate_rejects_malformed_body(client):
    body = _scenario(client, "normal-purchase")
    del body["transaction"]
    resp = client.post("/v1/gate/evaluate", json=body)
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "INVALID_INPUT"
    assert data["verdict"] == "BLOCKED"


def test_evaluate_rejects_unknown_enum(client):
    body = _scenario(client, "normal-purchase")
    body["agent"]["type"] = "ROGUE"
    resp = client.post("/v1/gate/evaluate", json=body)
    assert resp.status_code == 400
    assert resp.json()["verdict"] == "BLOCKED"


def test_evaluate_rejects_coerced_scalars(client):
    """Numeric strings and truthy strings are not numbers or booleans."""
    body = _scenario(client, "normal-purchase")
    body["transaction"]["amount"] = "45"
    as_string = client.post("/v1/gate/evaluate", json=body)

    body = _scenario(client, "normal-purchase")
    body["transaction"]["recipient"]["verified"] = "yes"
    as_word = client.post("/v1/gate/evaluate", json=body)

    for resp in (as_string, as_word):
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_INPUT"
        assert resp.json()["verdict"] == "BLOCKED"


def test_seal_scenario_is_externally_verifiable(client):
    resp = client.post("/v1/gate/seal", json={"scenario_id": "normal-purchase"})
    assert resp.status_code == 200
    pack = resp.json()["evidence_pack"]
    assert hash_value(pack["request"]) == pack["request_hash"]
    assert hash_value(pack["evaluation"]) == pack["evaluation_hash"]
    assert digest(pack["request_hash"] + pack["evaluation_hash"]) == pack["receipt_hash"]
    assert "approval" not in pack

    stored = client.get(f"/v1/gate/evidence/{pack['gate_id']}")
    assert stored.status_code == 200
    assert stored.json()["verified"] is True
    assert stored.json()["evidence_pack"]["receipt_hash"] == pack["receipt_hash"]


def test_seal_escalation_without_decision_is_pending(client):
    resp = client.post("/v1/gate/seal", json={"scenario_id": "over-limit"})
    assert resp.status_code == 200
    approval = resp.json()["evidence_pack"]["approval"]
    assert approval["status"] == "PENDING"
    assert approval["auto_action"] == "EXPIRE"


def test_seal_escalation_with_decision(client):
    resp = client.post(
        "/v1/gate/seal",
        json={"scenario_id": "over-limit", "approval_decision": "APPROVED", "decided_by": "alice"},
    )
    assert resp.status_code == 200
    approval = resp.json()["evidence_pack"]["approval"]
    assert approval["status"] == "APPROVED"
    assert approval["decided_by"] == "alice"

    resp = client.post(
        "/v1/gate/seal", json={"scenario_id": "over-limit", "approval_decision": "REJECTED"}
    )
    approval = resp.json()["evidence_pack"]["approval"]
    assert approval["status"] == "REJECTED"
    assert approval["decided_by"] == settings.default_reviewer


def test_seal_rejects_decision_for_non_escalated(client):
    resp = client.post(
        "/v1/gate/seal", json={"scenario_id": "normal-purchase", "approval_decision": "APPROVED"}
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "approval_decision is only valid for REQUIRES_HUMAN_APPROVAL decisions",
        "code": "INVALID_INPUT",
        "verdict": "BLOCKED",
    }


def test_seal_requires_exactly_one_source(client):
    body = _scenario(client, "normal-purchase")
    both = client.post("/v1/gate/seal", json={"scenario_id": "normal-purchase", "request": body})
    neither = client.post("/v1/gate/seal", json={})
    unknown = client.post("/v1/gate/seal", json={"scenario_id": "nope"})
    for resp in (both, neither, unknown):
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_INPUT"
        assert resp.json()["verdict"] == "BLOCKED"


def test_seal_with_supplied_evaluation(client):
    body = _scenario(client, "prompt-injection")
    evaluation = client.post("/v1/gate/evaluate", json=body).json()

    resp = client.post("/v1/gate/seal", json={"request": body, "evaluation": evaluation})
    assert resp.status_code == 200
    pack = resp.json()["evidence_pack"]
    assert pack["evaluation"]["timestamp"] == evaluation["timestamp"]
    assert pack["request"]["id"] == body["id"]

    evaluation["verdict"] = "AUTHORIZED"
    resp = client.post("/v1/gate/seal", json={"request": body, "evaluation": evaluation})
    assert resp.status_code == 400
    assert resp.json()["code"] == "EVALUATION_MISMATCH"
    assert resp.json()["verdict"] == "BLOCKED"


def test_seal_failure_reports_blocked(client, monkeypatch):
    def broken_seal(*args, **kwargs):
        raise RuntimeError("hash backend unavailable")

    monkeypatch.setattr(gate_api.sealer, "seal", broken_seal)
    resp = client.post("/v1/gate/seal", json={"scenario_id": "normal-purchase"})
    assert resp.status_code == 500
    assert resp.json() == {
        "error": gate_api.SEAL_FAILED_MESSAGE,
        "code": "SYSTEM_ERROR",
        "verdict": "BLOCKED",
    }


def test_seal_timeout_covers_storing_the_pack(client, monkeypatch):
    async def slow_store(db, pack):
        await asyncio.sleep(1)

    monkeypatch.setattr(settings, "seal_timeout_seconds", 0.05)
    monkeypatch.setattr(gate_api, "create_evidence_pack", slow_store)
    resp = client.post("/v1/gate/seal", json={"scenario_id": "normal-purchase"})
    assert resp.status_code == 500
    assert resp.json() == {
        "error": gate_api.SEAL_FAILED_MESSAGE,
        "code": "SEAL_TIMEOUT",
        "verdict": "BLOCKED",
    }


def test_seal_stored_approval_by_decision_id(client):
    body = _scenario(client, "over-limit")
    opened = client.post("/v1/approvals", json=body).json()
    decision_id = opened["approval"]["decision_id"]
    client.post(
        f"/v1/approvals/{decision_id}/decision",
        json={"status": "APPROVED", "decided_by": "alice"},
    )

    resp = client.post("/v1/gate/seal", json={"decision_id": decision_id})
    assert resp.status_code == 200
    pack = resp.json()["evidence_pack"]
    assert pack["approval"]["decision_id"] == decision_id
    assert pack["approval"]["status"] == "APPROVED"
    assert pack["approval"]["decided_by"] == "alice"
    assert pack["request"]["id"] == body["id"]
    assert pack["evaluation"]["request_id"] == body["id"]
    assert pack["evaluation"]["verdict"] == "REQUIRES_HUMAN_APPROVAL"
    assert hash_value(pack["request"]) == pack["request_hash"]
    assert digest(pack["request_hash"] + pack["evaluation_hash"]) == pack["receipt_hash"]
    assert client.get(f"/v1/gate/evidence/{pack['gate_id']}").json()["verified"] is True


def test_seal_decision_id_errors(client):
    missing = client.post("/v1/gate/seal", json={"decision_id": "approval-missing"})
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"
    assert missing.json()["verdict"] == "BLOCKED"

    body = _scenario(client, "over-limit")
    decision_id = client.post("/v1/approvals", json=body).json()["approval"]["decision_id"]
    overridden = client.post(
        "/v1/gate/seal", json={"decision_id": decision_id, "approval_decision": "APPROVED"}
    )
    assert overridden.status_code == 400
    assert overridden.json()["code"] == "INVALID_INPUT"
    assert client.get(f"/v1/approvals/{decision_id}").json()["status"] == "PENDING"


def test_unknown_evidence_and_scenario(client):
    assert client.get("/v1/gate/evidence/gate-missing").status_code == 404
    assert client.get("/v1/gate/scenarios/nope").status_code == 404


def test_rules_and_scenarios(client):
    rules = client.get("/v1/gate/rules").json()
    assert [r["id"] for r in rules] == [f"RULE-00{i}" for i in range(1, 8)]
    assert all("condition" not in r for r in rules)

    scenarios = client.get("/v1/gate/scenarios").json()
    assert {s["id"]: s["expected_verdict"] for s in scenarios} == {
        "normal-purchase": "AUTHORIZED",
        "over-limit": "REQUIRES_HUMAN_APPROVAL",
        "prompt-injection": "BLOCKED",
    }


def test_scenario_requests_are_fresh(client):
    a = _scenario(client, "over-limit")
    b = _scenario(client, "over-limit")
    assert a["id"] != b["id"]
    assert a["transaction"] == b["transaction"]


def test_approval_lifecycle(client):
    body = _scenario(client, "over-limit")
    resp = client.post("/v1/approvals", json=body)
    assert resp.status_code == 201
    approval = resp.json()["approval"]
    assert approval["status"] == "PENDING"
    assert resp.json()["evaluation"]["verdict"] == "REQUIRES_HUMAN_APPROVAL"
    decision_id = approval["decision_id"]

    assert client.get(f"/v1/approvals/{decision_id}").json()["status"] == "PENDING"

    resp = client.post(
        f"/v1/approvals/{decision_id}/decision",
        json={"status": "APPROVED", "decided_by": "alice", "notes": "Budget confirmed"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "APPROVED"
    assert resp.json()["notes"] == "Budget confirmed"

    again = client.post(
        f"/v1/approvals/{decision_id}/decision", json={"status": "REJECTED", "decided_by": "bob"}
    )
    assert again.status_code == 409
    assert again.json()["code"] == "APPROVAL_TERMINAL"
    assert again.json()["verdict"] == "BLOCKED"
    assert client.get(f"/v1/approvals/{decision_id}").json()["status"] == "APPROVED"


def test_approval_not_opened_for_non_escalated(client):
    body = _scenario(client, "normal-purchase")
    resp = client.post("/v1/approvals", json=body)
    assert resp.status_code == 409
    assert resp.json()["code"] == "NOT_ESCALATED"


def test_approval_decision_validation(client):
    body = _scenario(client, "over-limit")
    decision_id = client.post("/v1/approvals", json=body).json()["approval"]["decision_id"]

    pending = client.post(
        f"/v1/approvals/{decision_id}/decision", json={"status": "PENDING", "decided_by": "alice"}
    )
    assert pending.status_code == 400
    blank = client.post(
        f"/v1/approvals/{decision_id}/decision", json={"status": "APPROVED", "decided_by": "  "}
    )
    assert blank.status_code == 400
    assert blank.json()["code"] == "INVALID_INPUT"
    assert client.get(f"/v1/approvals/{decision_id}").json()["status"] == "PENDING"

    missing = client.post(
        "/v1/approvals/approval-missing/decision", json={"status": "APPROVED", "decided_by": "alice"}
    )
    assert missing.status_code == 404
    assert client.get("/v1/approvals/approval-missing").status_code == 404


def test_expired_approval_cannot_be_approved(client, monkeypatch):
    monkeypatch.setattr(settings, "approval_ttl_hours", 0)
    body = _scenario(client, "over-limit")
    decision_id = client.post("/v1/approvals", json=body).json()["approval"]["decision_id"]

    resp = client.post(
        f"/v1/approvals/{decision_id}/decision", json={"status": "APPROVED", "decided_by": "alice"}
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "APPROVAL_EXPIRED"

    record = client.get(f"/v1/approvals/{decision_id}").json()
    assert record["status"] == "EXPIRED"
    assert "decided_by" not in record
