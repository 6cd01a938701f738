"""
Human approval workflow for escalated decisions.

    PENDING --human decision--> APPROVED | REJECTED
    PENDING --now >= expires_at--> EXPIRED

Expiry is the only transition the system performs on its own, and it can
only ever produce EXPIRED. Records are immutable: every transition returns
a new record.
"""

import logging
from datetime import datetime, timedelta

from gate.engine.scenarios import generate_id
from gate.errors import ApprovalExpiredError, ApprovalStateError
from gate.schemas.approval import (
    TERMINAL_STATUSES,
    ApprovalDecision,
    ApprovalRecord,
    ApprovalStatus,
)
from gate.schemas.gate import GateVerdict, PolicyEvaluation
from gate.utils.clock import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

APPROVAL_TTL = timedelta(hours=72)

DEFAULT_NOTES = {
    ApprovalStatus.APPROVED: "Reviewed and approved — valid business need confirmed",
    ApprovalStatus.REJECTED: "Rejected — alternative procurement path required",
}


def open_approval(
    evaluation: PolicyEvaluation,
    now: datetime | None = None,
    ttl: timedelta = APPROVAL_TTL,
) -> ApprovalRecord:
    """Create the PENDING record for an escalated evaluation."""
    if evaluation.verdict != GateVerdict.REQUIRES_HUMAN_APPROVAL:
        raise ApprovalStateError(
            f"Approval only applies to REQUIRES_HUMAN_APPROVAL, got {evaluation.verdict.value}",
            code="NOT_ESCALATED",
        )
    requested_at = now or utc_now()
    record = ApprovalRecord(
        decision_id=generate_id("approval"),
        request_id=evaluation.request_id,
        status=ApprovalStatus.PENDING,
        requested_at=to_iso(requested_at),
        expires_at=to_iso(requested_at + ttl),
    )
    logger.info("Opened approval %s for request %s", record.decision_id, evaluation.request_id)
    return record


def is_terminal(record: ApprovalRecord) -> bool:
    return record.status in TERMINAL_STATUSES


def is_due(record: ApprovalRecord, now: datetime | None = None) -> bool:
    """True when a PENDING record has reached its expiry."""
    if record.status != ApprovalStatus.PENDING:
        return False
    return (now or utc_now()) >= parse_iso(record.expires_at)


def expire_if_due(record: ApprovalRecord, now: datetime | None = None) -> ApprovalRecord:
    """Apply passive expiry. Never produces anything but EXPIRED."""
    now = now or utc_now()
    if not is_due(record, now):
        return record
    logger.info("Approval %s expired without a decision", record.decision_id)
    return record.model_copy(
        update={"status": ApprovalStatus.EXPIRED, "decided_at": to_iso(now)}
    )


def record_decision(
    record: ApprovalRecord,
    status: ApprovalDecision | str,
    decided_by: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ApprovalRecord:
    """
    Record an explicit human decision on a PENDING record.

    Raises ValueError for a status other than APPROVED/REJECTED or a blank
    reviewer, ApprovalExpiredError at or past expires_at, and
    ApprovalStateError if the record is already terminal.
    """
    decision = ApprovalStatus(ApprovalDecision(status).value)
    if not decided_by or not decided_by.strip():
        raise ValueError("decided_by is required for a human decision")

    now = now or utc_now()
    if is_terminal(record):
        raise ApprovalStateError(
            f"Approval {record.decision_id} is already {record.status.value}"
        )
    if is_due(record, now):
        raise ApprovalExpiredError(
            f"Approval {record.decision_id} expired at {record.expires_at}"
        )

    logger.info("Approval %s %s by %s", record.decision_id, decision.value, decided_by)
    return record.model_copy(
        update={
            "status": decision,
            "decided_at": to_iso(now),
            "decided_by": decided_by.strip(),
            "notes": notes if notes is not None else DEFAULT_NOTES[decision],
        }
    )
