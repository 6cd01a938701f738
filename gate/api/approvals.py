"""Approval queue endpoints."""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from gate.config import settings
from gate.database import get_db
from gate.engine import approvals
from gate.engine.evaluator import evaluate
from gate.errors import ApprovalExpiredError, ValidationError
from gate.schemas.approval import ApprovalRecord, DecisionRequest
from gate.schemas.gate import GateRequest
from gate.storage.repositories import create_approval, decide_approval, get_approval

router = APIRouter()


@router.post("/approvals", status_code=status.HTTP_201_CREATED)
async def open_approval(
    body: GateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Evaluate a request and queue it for review if it escalates."""
    evaluation = evaluate(body)
    record = approvals.open_approval(
        evaluation, ttl=timedelta(hours=settings.approval_ttl_hours)
    )
    await create_approval(db, record, body, evaluation)
    await db.commit()
    return {
        "approval": record.model_dump(mode="json", exclude_none=True),
        "evaluation": evaluation.model_dump(mode="json", exclude_none=True),
    }


@router.get("/approvals/{decision_id}", response_model=ApprovalRecord, response_model_exclude_none=True)
async def read_approval(
    decision_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Approval record; a pending record past its expiry reads as EXPIRED."""
    record = await get_approval(db, decision_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval not found")
    return record


@router.post(
    "/approvals/{decision_id}/decision",
    response_model=ApprovalRecord,
    response_model_exclude_none=True,
)
async def decide(
    decision_id: str,
    body: DecisionRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Record a human decision on a pending approval."""
    try:
        record = await decide_approval(db, decision_id, body.status, body.decided_by, body.notes)
    except ApprovalExpiredError:
        # keep the expiry we just observed
        await db.commit()
        raise
    except ValueError as e:
        raise ValidationError(str(e)) from e
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval not found")
    await db.commit()
    return record
