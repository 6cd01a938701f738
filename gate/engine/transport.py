"""
Seal transports.

Sealing is the only step of a decision that may leave the process. A
transport takes (request, evaluation, approval) and returns the sealed
EvidencePack, raising SealingError when no verifiable receipt could be
produced. Timeouts are enforced by the orchestrator, not here.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

import httpx

from gate.engine import sealer
from gate.errors import SealingError
from gate.schemas.approval import ApprovalRecord, ApprovalStatus
from gate.schemas.gate import EvidencePack, GateRequest, PolicyEvaluation
from gate.utils.canonical import hash_value

logger = logging.getLogger(__name__)

EvidenceSink = Callable[[EvidencePack], Awaitable[None]]


class SealTransport(Protocol):
    async def seal(
        self,
        request: GateRequest,
        evaluation: PolicyEvaluation,
        approval: ApprovalRecord | None = None,
    ) -> EvidencePack: ...


async def deliver(sink: EvidenceSink | None, pack: EvidencePack) -> None:
    """Hand a sealed pack to the sink; any sink failure is a sealing failure."""
    if sink is None:
        return
    try:
        await sink(pack)
    except SealingError:
        raise
    except Exception as e:
        raise SealingError(f"Evidence sink failed: {e}") from e


def check_receipt(
    pack: EvidencePack,
    request: GateRequest,
    evaluation: PolicyEvaluation,
    approval: ApprovalRecord | None = None,
) -> None:
    """Reject a pack that does not verify or does not describe this decision."""
    if not sealer.verify_pack(pack):
        raise SealingError("Receipt hashes do not verify", code="INVALID_RECEIPT")
    mismatches = []
    if pack.request.id != request.id or pack.request_hash != hash_value(request):
        mismatches.append("request")
    if pack.evaluation.verdict != evaluation.verdict:
        mismatches.append("verdict")
    if pack.evaluation.triggered_rule.id != evaluation.triggered_rule.id:
        mismatches.append("triggered_rule")
    decided = approval is not None and approval.status in (
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    )
    if decided and (pack.approval is None or pack.approval.status != approval.status):
        mismatches.append("approval")
    if mismatches:
        raise SealingError(
            "Receipt does not match the sealed decision: " + ", ".join(mismatches),
            code="INVALID_RECEIPT",
        )


class LocalSealTransport:
    """Seal in-process, optionally handing the pack to an async sink."""

    def __init__(self, sink: EvidenceSink | None = None):
        self.sink = sink

    async def seal(
        self,
        request: GateRequest,
        evaluation: PolicyEvaluation,
        approval: ApprovalRecord | None = None,
    ) -> EvidencePack:
        pack = sealer.seal(request, evaluation, approval)
        await deliver(self.sink, pack)
        return pack


class HttpSealTransport:
    """
    Seal through a remote gate's POST /v1/gate/seal.

    Only human decisions (APPROVED/REJECTED) can be conveyed; the remote
    side records an undecided escalation as PENDING. The returned pack must
    verify and describe the local decision before it reaches the sink.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        sink: EvidenceSink | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self.sink = sink

    def _payload(
        self,
        request: GateRequest,
        evaluation: PolicyEvaluation,
        approval: ApprovalRecord | None,
    ) -> dict:
        body = {
            "request": request.model_dump(mode="json", exclude_none=True),
            "evaluation": evaluation.model_dump(mode="json", exclude_none=True),
        }
        if approval is not None:
            if approval.status == ApprovalStatus.EXPIRED:
                raise SealingError(
                    "Expired approvals cannot be sealed remotely", code="UNSUPPORTED"
                )
            if approval.status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
                body["approval_decision"] = approval.status.value
                body["decided_by"] = approval.decided_by
                if approval.notes is not None:
                    body["notes"] = approval.notes
        return body

    async def _post(self, client: httpx.AsyncClient, body: dict) -> httpx.Response:
        return await client.post(f"{self.base_url}/v1/gate/seal", json=body)

    async def seal(
        self,
        request: GateRequest,
        evaluation: PolicyEvaluation,
        approval: ApprovalRecord | None = None,
    ) -> EvidencePack:
        body = self._payload(request, evaluation, approval)
        try:
            if self._client is not None:
                resp = await self._post(self._client, body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await self._post(client, body)
        except httpx.HTTPError as e:
            logger.error("Seal request to %s failed: %s", self.base_url, e)
            raise SealingError(f"Seal transport failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.status_code >= 400:
            raise SealingError(
                data.get("error") or f"Receipt API returned {resp.status_code}",
                code=data.get("code"),
            )
        try:
            pack = EvidencePack.model_validate(data["evidence_pack"])
        except (KeyError, TypeError, ValueError) as e:
            raise SealingError(f"Malformed seal response: {e}") from e

        check_receipt(pack, request, evaluation, approval)
        await deliver(self.sink, pack)
        return pack
