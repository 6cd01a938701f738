"""Evidence sealer - hashes a decision into a tamper-evident pack."""

import logging
from datetime import datetime

from gate.engine.scenarios import generate_id
from gate.errors import SealingError
from gate.schemas.approval import ApprovalRecord
from gate.schemas.gate import EvidencePack, GateRequest, PolicyEvaluation
from gate.utils.canonical import digest, hash_value
from gate.utils.clock import to_iso, utc_now

logger = logging.getLogger(__name__)

PACK_VERSION = "1.0.0"


def receipt_hash(request_hash: str, evaluation_hash: str) -> str:
    """Flat concatenation of the two hex digests, hashed again."""
    return digest(request_hash + evaluation_hash)


def seal(
    request: GateRequest,
    evaluation: PolicyEvaluation,
    approval: ApprovalRecord | None = None,
    now: datetime | None = None,
) -> EvidencePack:
    """
    Seal one decision.

    All three hashes are computed here from the actual payloads. No I/O.
    Raises SealingError if the payloads cannot be hashed.
    """
    try:
        request_hash = hash_value(request)
        evaluation_hash = hash_value(evaluation)
    except (TypeError, ValueError) as e:
        logger.error("Hashing failed for request %s: %s", getattr(request, "id", "?"), e)
        raise SealingError(f"Could not hash decision payload: {e}") from e

    return EvidencePack(
        version=PACK_VERSION,
        gate_id=generate_id("gate"),
        request_hash=request_hash,
        evaluation_hash=evaluation_hash,
        receipt_hash=receipt_hash(request_hash, evaluation_hash),
        request=request,
        evaluation=evaluation,
        approval=approval,
        generated_at=to_iso(now or utc_now()),
    )


def verify_pack(pack: EvidencePack) -> bool:
    """Recompute every hash from the embedded payloads and compare."""
    try:
        request_hash = hash_value(pack.request)
        evaluation_hash = hash_value(pack.evaluation)
    except (TypeError, ValueError):
        return False
    return (
        request_hash == pack.request_hash
        and evaluation_hash == pack.evaluation_hash
        and receipt_hash(request_hash, evaluation_hash) == pack.receipt_hash
    )
