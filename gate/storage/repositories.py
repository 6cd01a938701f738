"""Repository functions for approval records and evidence packs."""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gate.engine import approvals
from gate.errors import ApprovalExpiredError, ApprovalStateError
from gate.models import ApprovalRecordRow, EvidencePackRow
from gate.schemas.approval import ApprovalDecision, ApprovalRecord, ApprovalStatus
from gate.schemas.gate import EvidencePack, GateRequest, PolicyEvaluation
from gate.utils.clock import parse_iso, to_iso, utc_now


def _as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def row_to_record(row: ApprovalRecordRow) -> ApprovalRecord:
    decided_at = _as_utc(row.decided_at)
    return ApprovalRecord(
        decision_id=row.decision_id,
        request_id=row.request_id,
        status=ApprovalStatus(row.status),
        requested_at=to_iso(_as_utc(row.requested_at)),
        expires_at=to_iso(_as_utc(row.expires_at)),
        decided_at=to_iso(decided_at) if decided_at else None,
        decided_by=row.decided_by,
        notes=row.notes,
    )


async def create_approval(
    db: AsyncSession,
    record: ApprovalRecord,
    request: GateRequest,
    evaluation: PolicyEvaluation,
) -> ApprovalRecordRow:
    """Persist a freshly opened PENDING record with the decision it gates."""
    row = ApprovalRecordRow(
        decision_id=record.decision_id,
        request_id=record.request_id or evaluation.request_id,
        status=record.status.value,
        requested_at=parse_iso(record.requested_at),
        expires_at=parse_iso(record.expires_at),
        decided_at=None,
        decided_by=None,
        notes=None,
        auto_action=record.auto_action,
        request_json=request.model_dump(mode="json", exclude_none=True),
        evaluation_json=evaluation.model_dump(mode="json", exclude_none=True),
    )
    db.add(row)
    await db.flush()
    return row


async def _load(db: AsyncSession, decision_id: str) -> ApprovalRecordRow | None:
    result = await db.execute(
        select(ApprovalRecordRow)
        .where(ApprovalRecordRow.decision_id == decision_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def expire_approval_if_due(
    db: AsyncSession, decision_id: str, now: datetime | None = None
) -> bool:
    """Compare-and-set PENDING -> EXPIRED once the window has closed."""
    now = now or utc_now()
    result = await db.execute(
        update(ApprovalRecordRow)
        .where(
            ApprovalRecordRow.decision_id == decision_id,
            ApprovalRecordRow.status == ApprovalStatus.PENDING.value,
            ApprovalRecordRow.expires_at <= now,
        )
        .values(status=ApprovalStatus.EXPIRED.value, decided_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_approval(
    db: AsyncSession, decision_id: str, now: datetime | None = None
) -> ApprovalRecord | None:
    """Read a record; a PENDING record past its expiry is expired first."""
    await expire_approval_if_due(db, decision_id, now)
    row = await _load(db, decision_id)
    return row_to_record(row) if row else None


async def decide_approval(
    db: AsyncSession,
    decision_id: str,
    status: ApprovalDecision,
    decided_by: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> ApprovalRecord | None:
    """
    Record a human decision with a single conditional update.

    Returns None if the record does not exist. Raises ApprovalExpiredError
    or ApprovalStateError when the record is no longer PENDING.
    """
    now = now or utc_now()
    row = await _load(db, decision_id)
    if row is None:
        return None

    try:
        decided = approvals.record_decision(row_to_record(row), status, decided_by, notes, now=now)
    except ApprovalExpiredError:
        await expire_approval_if_due(db, decision_id, now)
        raise

    result = await db.execute(
        update(ApprovalRecordRow)
        .where(
            ApprovalRecordRow.decision_id == decision_id,
            ApprovalRecordRow.status == ApprovalStatus.PENDING.value,
            ApprovalRecordRow.expires_at > now,
        )
        .values(
            status=decided.status.value,
            decided_at=now,
            decided_by=decided.decided_by,
            notes=decided.notes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Lost the race to another decision or to expiry
        current = await get_approval(db, decision_id, now)
        if current is not None and current.status == ApprovalStatus.EXPIRED:
            raise ApprovalExpiredError(f"Approval {decision_id} expired at {current.expires_at}")
        state = current.status.value if current else "missing"
        raise ApprovalStateError(f"Approval {decision_id} is already {state}")

    row = await _load(db, decision_id)
    return row_to_record(row)


async def get_approval_subject(
    db: AsyncSession, decision_id: str
) -> tuple[GateRequest, PolicyEvaluation] | None:
    """The request and evaluation an approval was opened for."""
    row = await _load(db, decision_id)
    if row is None:
        return None
    return (
        GateRequest.model_validate(row.request_json),
        PolicyEvaluation.model_validate(row.evaluation_json),
    )


async def create_evidence_pack(db: AsyncSession, pack: EvidencePack) -> EvidencePackRow:
    """Append a sealed pack to the evidence store."""
    row = EvidencePackRow(
        gate_id=pack.gate_id,
        request_id=pack.request.id,
        verdict=pack.evaluation.verdict.value,
        request_hash=pack.request_hash,
        evaluation_hash=pack.evaluation_hash,
        receipt_hash=pack.receipt_hash,
        pack_json=pack.model_dump(mode="json", exclude_none=True),
        generated_at=pack.generated_at,
    )
    db.add(row)
    await db.flush()
    return row


async def get_evidence_pack(db: AsyncSession, gate_id: str) -> EvidencePack | None:
    result = await db.execute(select(EvidencePackRow).where(EvidencePackRow.gate_id == gate_id))
    row = result.scalar_one_or_none()
    return EvidencePack.model_validate(row.pack_json) if row else None
