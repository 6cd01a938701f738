"""
Decision orchestrator - drives one request from evaluation to sealed evidence.

    IDLE -> EVALUATING -> NEEDS_APPROVAL -> SEALING -> SEALED | SEAL_FAILED
    IDLE -> EVALUATING -> SEALING  (AUTHORIZED and BLOCKED skip approval)
    IDLE -> SEALING  (adopt: evaluation and approval decided elsewhere)

Evaluation is local and cannot fail (the evaluator resolves every fault to
BLOCKED). Sealing may be remote, is bounded by a timeout and is never
retried automatically. A sealing failure only means there is no verifiable
receipt: the verdict computed during EVALUATING stands and is reported.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from gate.config import settings
from gate.engine import approvals, evaluator
from gate.engine.transport import (
    EvidenceSink,
    HttpSealTransport,
    LocalSealTransport,
    SealTransport,
)
from gate.errors import (
    ApprovalExpiredError,
    OrchestratorStateError,
    SealingError,
    SealTimeoutError,
)
from gate.schemas.approval import ApprovalDecision, ApprovalRecord, ApprovalStatus
from gate.schemas.gate import EvidencePack, GateRequest, GateVerdict, PolicyEvaluation
from gate.utils.clock import parse_iso, utc_now

logger = logging.getLogger(__name__)

SEAL_TIMEOUT_MESSAGE = "Receipt server timed out — evaluation verdict is valid (computed locally)"


class DecisionState(str, Enum):
    IDLE = "IDLE"
    EVALUATING = "EVALUATING"
    NEEDS_APPROVAL = "NEEDS_APPROVAL"
    SEALING = "SEALING"
    SEALED = "SEALED"
    SEAL_FAILED = "SEAL_FAILED"


@dataclass(frozen=True)
class HumanDecision:
    status: ApprovalDecision
    decided_by: str
    notes: str | None = None


DecisionProvider = Callable[
    [GateRequest, PolicyEvaluation, ApprovalRecord], Awaitable["HumanDecision | None"]
]


@dataclass(frozen=True)
class DecisionOutcome:
    """Snapshot of a session reported to the caller."""

    state: DecisionState
    request: GateRequest
    evaluation: PolicyEvaluation | None
    approval: ApprovalRecord | None = None
    evidence_pack: EvidencePack | None = None
    error: str | None = None
    error_code: str | None = None

    @property
    def sealed(self) -> bool:
        return self.state == DecisionState.SEALED

    @property
    def effective_verdict(self) -> GateVerdict:
        """Verdict after any human decision; sealing state never changes it."""
        if self.evaluation is None:
            return GateVerdict.BLOCKED
        if self.evaluation.verdict != GateVerdict.REQUIRES_HUMAN_APPROVAL:
            return self.evaluation.verdict
        if self.approval is None or self.approval.status == ApprovalStatus.PENDING:
            return GateVerdict.REQUIRES_HUMAN_APPROVAL
        if self.approval.status == ApprovalStatus.APPROVED:
            return GateVerdict.AUTHORIZED
        return GateVerdict.BLOCKED


class DecisionSession:
    """State machine for a single request."""

    def __init__(
        self,
        request: GateRequest,
        transport: SealTransport,
        seal_timeout: float,
        approval_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.request = request
        self.transport = transport
        self.seal_timeout = seal_timeout
        self.approval_ttl = approval_ttl
        self.clock = clock

        self.state = DecisionState.IDLE
        self.evaluation: PolicyEvaluation | None = None
        self.approval: ApprovalRecord | None = None
        self.evidence_pack: EvidencePack | None = None
        self.error: str | None = None
        self.error_code: str | None = None
        self._decided = asyncio.Event()

    def _transition(self, state: DecisionState) -> None:
        logger.debug("Request %s: %s -> %s", self.request.id, self.state.value, state.value)
        self.state = state

    def evaluate(self) -> PolicyEvaluation:
        if self.state != DecisionState.IDLE:
            raise OrchestratorStateError(f"Cannot evaluate from {self.state.value}")
        self._transition(DecisionState.EVALUATING)
        self.evaluation = evaluator.evaluate(self.request)

        if self.evaluation.verdict == GateVerdict.REQUIRES_HUMAN_APPROVAL:
            self.approval = approvals.open_approval(
                self.evaluation, now=self.clock(), ttl=self.approval_ttl
            )
            self._transition(DecisionState.NEEDS_APPROVAL)
        else:
            self._transition(DecisionState.SEALING)
        return self.evaluation

    def adopt(
        self,
        evaluation: PolicyEvaluation,
        approval: ApprovalRecord | None = None,
    ) -> None:
        """
        Take over an evaluation (and approval snapshot) produced elsewhere.

        The session goes straight to SEALING: the approval is sealed as it
        stands, PENDING included, after passive expiry.
        """
        if self.state != DecisionState.IDLE:
            raise OrchestratorStateError(f"Cannot adopt a decision from {self.state.value}")
        if evaluation.request_id != self.request.id:
            raise OrchestratorStateError(
                f"Evaluation is for {evaluation.request_id}, not {self.request.id}"
            )
        self.evaluation = evaluation
        self.approval = (
            approvals.expire_if_due(approval, self.clock()) if approval is not None else None
        )
        self._transition(DecisionState.SEALING)

    def submit_decision(
        self,
        status: ApprovalDecision | str,
        decided_by: str,
        notes: str | None = None,
    ) -> ApprovalRecord:
        """Record an explicit human decision and release any waiter."""
        if self.state != DecisionState.NEEDS_APPROVAL or self.approval is None:
            raise OrchestratorStateError(f"No pending approval in state {self.state.value}")
        try:
            self.approval = approvals.record_decision(
                self.approval, status, decided_by, notes, now=self.clock()
            )
        except ApprovalExpiredError:
            self.expire()
            raise
        self._transition(DecisionState.SEALING)
        self._decided.set()
        return self.approval

    def expire(self, now: datetime | None = None) -> ApprovalRecord | None:
        """Passive expiry check; an expired approval proceeds to sealing."""
        if self.state == DecisionState.NEEDS_APPROVAL and self.approval is not None:
            self.approval = approvals.expire_if_due(self.approval, now or self.clock())
            if self.approval.status == ApprovalStatus.EXPIRED:
                self._transition(DecisionState.SEALING)
                self._decided.set()
        return self.approval

    def remaining_window(self) -> float:
        expires_at = parse_iso(self.approval.expires_at)
        return max((expires_at - self.clock()).total_seconds(), 0.0)

    async def wait_for_decision(self, timeout: float | None = None) -> ApprovalRecord:
        """
        Wait for a human decision, at most until the approval expires.

        Returns the record as it stands afterwards: decided, EXPIRED, or still
        PENDING if `timeout` elapsed first. Never APPROVED without a decision.
        """
        if self.approval is None:
            raise OrchestratorStateError("No approval attached to this decision")
        if self.state != DecisionState.NEEDS_APPROVAL:
            return self.approval

        window = self.remaining_window()
        wait = window if timeout is None else min(timeout, window)
        if wait > 0:
            try:
                await asyncio.wait_for(self._decided.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass
        self.expire()
        return self.approval

    async def seal(self) -> DecisionOutcome:
        """Seal under the timeout. Failures are reported, not raised."""
        if self.state == DecisionState.NEEDS_APPROVAL:
            self.expire()
        if self.state not in (DecisionState.SEALING, DecisionState.SEAL_FAILED):
            raise OrchestratorStateError(f"Cannot seal from {self.state.value}")

        self._transition(DecisionState.SEALING)
        self.error = None
        self.error_code = None
        try:
            pack = await asyncio.wait_for(
                self.transport.seal(self.request, self.evaluation, self.approval),
                timeout=self.seal_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Sealing request %s timed out after %ss", self.request.id, self.seal_timeout)
            self._fail(SealTimeoutError(SEAL_TIMEOUT_MESSAGE))
        except SealingError as e:
            logger.error("Sealing request %s failed: %s", self.request.id, e.message)
            self._fail(e)
        except Exception as e:
            logger.exception("Unexpected sealing failure for request %s", self.request.id)
            self._fail(SealingError(str(e) or type(e).__name__))
        else:
            self.evidence_pack = pack
            self._transition(DecisionState.SEALED)
        return self.outcome()

    def _fail(self, error: SealingError) -> None:
        self.error = error.message
        self.error_code = error.code
        self._transition(DecisionState.SEAL_FAILED)

    def outcome(self) -> DecisionOutcome:
        return DecisionOutcome(
            state=self.state,
            request=self.request,
            evaluation=self.evaluation,
            approval=self.approval,
            evidence_pack=self.evidence_pack,
            error=self.error,
            error_code=self.error_code,
        )


class DecisionOrchestrator:
    """Creates sessions and runs them end to end."""

    def __init__(
        self,
        transport: SealTransport | None = None,
        seal_timeout: float | None = None,
        approval_ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.transport = transport or LocalSealTransport()
        self.seal_timeout = settings.seal_timeout_seconds if seal_timeout is None else seal_timeout
        self.approval_ttl = approval_ttl or timedelta(hours=settings.approval_ttl_hours)
        self.clock = clock

    def start(self, request: GateRequest) -> DecisionSession:
        return DecisionSession(
            request,
            transport=self.transport,
            seal_timeout=self.seal_timeout,
            approval_ttl=self.approval_ttl,
            clock=self.clock,
        )

    async def run(
        self,
        request: GateRequest,
        decision_provider: DecisionProvider | None = None,
    ) -> DecisionOutcome:
        """
        Evaluate, obtain a human decision if escalated, then seal.

        Without a provider (or if it yields nothing before expiry) an
        escalated session is returned unsealed in NEEDS_APPROVAL.
        """
        session = self.start(request)
        session.evaluate()

        if session.state == DecisionState.NEEDS_APPROVAL:
            if decision_provider is None:
                return session.outcome()
            decision = await self._ask(session, decision_provider)
            if decision is not None:
                try:
                    session.submit_decision(decision.status, decision.decided_by, decision.notes)
                except ApprovalExpiredError:
                    logger.info("Decision for %s arrived after expiry", request.id)
            session.expire()
            if session.state == DecisionState.NEEDS_APPROVAL:
                return session.outcome()

        return await session.seal()

    async def _ask(
        self, session: DecisionSession, provider: DecisionProvider
    ) -> HumanDecision | None:
        window = session.remaining_window()
        if window <= 0:
            return None
        try:
            return await asyncio.wait_for(
                provider(session.request, session.evaluation, session.approval),
                timeout=window,
            )
        except asyncio.TimeoutError:
            return None


def build_orchestrator(sink: EvidenceSink | None = None) -> DecisionOrchestrator:
    """Orchestrator wired from settings: remote sealing when configured.

    Either way a sealed pack reaches `sink` inside the seal timeout.
    """
    if settings.remote_seal_url:
        transport: SealTransport = HttpSealTransport(
            settings.remote_seal_url, timeout=settings.seal_timeout_seconds, sink=sink
        )
    else:
        transport = LocalSealTransport(sink=sink)
    return DecisionOrchestrator(transport=transport)
