"""Unit tests for evidence sealing."""

import pytest

from gate.engine import approvals, sealer
from gate.engine.evaluator import evaluate
from gate.engine.scenarios import get_scenario
from gate.errors import SealingError
from gate.schemas.gate import EvidencePack, GateVerdict
from gate.utils.canonical import digest, hash_value

from tests.conftest import T0


def _sealed(scenario_id="normal-purchase", approval=None):
    request = get_scenario(scenario_id)
    evaluation = evaluate(request)
    return sealer.seal(request, evaluation, approval, now=T0)


def test_hashes_recompute_from_payloads():
    pack = _sealed()
    assert pack.request_hash == hash_value(pack.request)
    assert pack.evaluation_hash == hash_value(pack.evaluation)
    assert pack.receipt_hash == digest(pack.request_hash + pack.evaluation_hash)
    assert sealer.verify_pack(pack)


def test_pack_metadata():
    pack = _sealed()
    assert pack.version == "1.0.0"
    assert pack.gate_id.startswith("gate-")
    assert pack.generated_at == "2026-02-07T12:00:00.000Z"
    assert pack.approval is None


def test_pack_hashes_reproducible_from_json():
    pack = _sealed()
    data = pack.model_dump(mode="json", exclude_none=True)
    assert hash_value(data["request"]) == data["request_hash"]
    assert hash_value(data["evaluation"]) == data["evaluation_hash"]
    restored = EvidencePack.model_validate(data)
    assert sealer.verify_pack(restored)


def test_tampered_pack_fails_verification():
    pack = _sealed()
    forged = pack.evaluation.model_copy(update={"verdict": GateVerdict.BLOCKED})
    assert not sealer.verify_pack(pack.model_copy(update={"evaluation": forged}))
    assert not sealer.verify_pack(pack.model_copy(update={"receipt_hash": "0" * 64}))


def test_escalated_pack_carries_approval():
    request = get_scenario("over-limit")
    evaluation = evaluate(request)
    record = approvals.open_approval(evaluation, now=T0)
    pack = sealer.seal(request, evaluation, record)
    assert pack.approval == record
    assert pack.evaluation.verdict == GateVerdict.REQUIRES_HUMAN_APPROVAL
    assert sealer.verify_pack(pack)


def test_each_seal_gets_a_new_gate_id():
    request = get_scenario("normal-purchase")
    evaluation = evaluate(request)
    a = sealer.seal(request, evaluation)
    b = sealer.seal(request, evaluation)
    assert a.gate_id != b.gate_id
    assert a.receipt_hash == b.receipt_hash


def test_unhashable_payload_raises_sealing_error(monkeypatch):
    def broken(obj):
        raise TypeError("Object of type set is not canonicalizable")

    monkeypatch.setattr(sealer, "hash_value", broken)
    request = get_scenario("normal-purchase")
    with pytest.raises(SealingError) as exc_info:
        sealer.seal(request, evaluate(request))
    assert exc_info.value.code == "SYSTEM_ERROR"
