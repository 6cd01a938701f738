"""Gate endpoints - evaluate, seal, evidence lookup, rules and scenarios."""

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gate.config import settings
from gate.database import get_db
from gate.engine import approvals, sealer
from gate.engine.evaluator import evaluate
from gate.engine.rules import POLICY_RULES, rules_display
from gate.engine.scenarios import (
    SCENARIO_FIXTURES,
    get_scenario,
    is_valid_scenario_id,
    scenario_meta,
)
from gate.engine.orchestrator import build_orchestrator
from gate.errors import (
    EvaluationMismatchError,
    GateError,
    NotFoundError,
    SealingError,
    ValidationError,
)
from gate.schemas.approval import ApprovalRecord
from gate.schemas.gate import (
    EvidencePack,
    GateErrorResponse,
    GateRequest,
    GateVerdict,
    PolicyEvaluation,
    RuleDisplay,
    ScenarioMeta,
    SealRequest,
    SealResponse,
)
from gate.storage.repositories import (
    create_evidence_pack,
    get_approval,
    get_approval_subject,
    get_evidence_pack,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SEAL_FAILED_MESSAGE = "Receipt generation failed — gate evaluation defaulted to BLOCKED"


def failure_response(status_code: int, error: GateError) -> JSONResponse:
    """Structured failure body; the top-level verdict is always BLOCKED."""
    body = GateErrorResponse(error=error.message, code=error.code)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _check_matches(supplied: PolicyEvaluation, computed: PolicyEvaluation) -> None:
    """Timing fields aside, a supplied evaluation must equal our own."""
    fields = ("request_id", "verdict", "risk_level", "triggered_rule", "rules_evaluated")
    for field in fields:
        if getattr(supplied, field) != getattr(computed, field):
            raise EvaluationMismatchError(
                f"Supplied evaluation disagrees with gate evaluation on '{field}'"
            )


async def stored_decision(
    body: SealRequest, db: AsyncSession
) -> tuple[GateRequest, PolicyEvaluation, ApprovalRecord]:
    """A persisted approval, with passive expiry applied, and what it was opened for."""
    overrides = (body.evaluation, body.approval_decision, body.decided_by, body.notes)
    if any(value is not None for value in overrides):
        raise ValidationError(
            "A stored approval is sealed as recorded; "
            "decide it through /v1/approvals/{decision_id}/decision"
        )
    record = await get_approval(db, body.decision_id)
    if record is None:
        raise NotFoundError(f"Approval {body.decision_id} not found")
    request, evaluation = await get_approval_subject(db, body.decision_id)
    return request, evaluation, record


async def resolve_decision(
    body: SealRequest, db: AsyncSession
) -> tuple[GateRequest, PolicyEvaluation, ApprovalRecord | None]:
    sources = (body.request, body.scenario_id, body.decision_id)
    if sum(source is not None for source in sources) != 1:
        raise ValidationError(
            "Provide exactly one of 'request', 'scenario_id' or 'decision_id'"
        )
    if body.decision_id is not None:
        return await stored_decision(body, db)

    if body.scenario_id is not None:
        if not is_valid_scenario_id(body.scenario_id):
            raise ValidationError(
                "Invalid scenario_id. Must be one of: " + ", ".join(SCENARIO_FIXTURES)
            )
        request = get_scenario(body.scenario_id)
    else:
        request = body.request

    evaluation = evaluate(request)
    if body.evaluation is not None:
        _check_matches(body.evaluation, evaluation)
        evaluation = body.evaluation
    return request, evaluation, approval_for(evaluation, body)


def approval_for(evaluation: PolicyEvaluation, body: SealRequest) -> ApprovalRecord | None:
    escalated = evaluation.verdict == GateVerdict.REQUIRES_HUMAN_APPROVAL
    if body.approval_decision is not None and not escalated:
        raise ValidationError(
            "approval_decision is only valid for REQUIRES_HUMAN_APPROVAL decisions"
        )
    if not escalated:
        return None

    record = approvals.open_approval(
        evaluation, ttl=timedelta(hours=settings.approval_ttl_hours)
    )
    if body.approval_decision is None:
        return record
    try:
        return approvals.record_decision(
            record,
            body.approval_decision,
            body.decided_by or settings.default_reviewer,
            body.notes,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e


@router.post("/gate/evaluate", response_model=PolicyEvaluation)
async def evaluate_request(body: GateRequest):
    """Run the policy cascade. Pure: nothing is stored."""
    return evaluate(body)


@router.post(
    "/gate/seal",
    response_model=SealResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": GateErrorResponse},
        404: {"model": GateErrorResponse},
        500: {"model": GateErrorResponse},
    },
)
async def seal_decision(
    body: SealRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Seal a decision into an evidence pack.
    Sealing and storing the pack share one timeout. Every failure reports
    an effective verdict of BLOCKED.
    """
    try:
        request, evaluation, approval = await resolve_decision(body, db)
    except ValidationError as e:
        return failure_response(status.HTTP_400_BAD_REQUEST, e)
    except NotFoundError as e:
        return failure_response(status.HTTP_404_NOT_FOUND, e)

    async def persist(pack: EvidencePack) -> None:
        await create_evidence_pack(db, pack)
        await db.commit()

    session = build_orchestrator(sink=persist).start(request)
    session.adopt(evaluation, approval)
    outcome = await session.seal()
    if not outcome.sealed:
        logger.error(
            "Gate receipt generation failed for request %s: [%s] %s",
            request.id,
            outcome.error_code,
            outcome.error,
        )
        await db.rollback()
        return failure_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            SealingError(SEAL_FAILED_MESSAGE, code=outcome.error_code),
        )

    pack = outcome.evidence_pack
    logger.info(
        "Sealed %s for request %s (%s)", pack.gate_id, request.id, evaluation.verdict.value
    )
    return SealResponse(evidence_pack=pack, download_url=None)


@router.get("/gate/evidence/{gate_id}")
async def get_evidence(
    gate_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Stored evidence pack, re-verified against its own payloads."""
    pack = await get_evidence_pack(db, gate_id)
    if not pack:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Evidence pack not found")
    return {
        "evidence_pack": pack.model_dump(mode="json", exclude_none=True),
        "verified": sealer.verify_pack(pack),
    }


@router.get("/gate/rules", response_model=list[RuleDisplay])
async def list_rules():
    return rules_display(POLICY_RULES)


@router.get("/gate/scenarios", response_model=list[ScenarioMeta])
async def list_scenarios():
    return scenario_meta()


@router.get("/gate/scenarios/{scenario_id}", response_model=GateRequest, response_model_exclude_none=True)
async def get_scenario_request(scenario_id: str):
    """Fresh request for a scenario (new id and timestamp each call)."""
    if not is_valid_scenario_id(scenario_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scenario not found")
    return get_scenario(scenario_id)
