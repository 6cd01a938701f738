"""Gate request, evaluation and evidence schemas."""

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, StrictStr

from gate.schemas.approval import ApprovalDecision, ApprovalRecord


class GateVerdict(str, Enum):
    AUTHORIZED = "AUTHORIZED"
    REQUIRES_HUMAN_APPROVAL = "REQUIRES_HUMAN_APPROVAL"
    BLOCKED = "BLOCKED"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AgentType(str, Enum):
    PURCHASING = "PURCHASING"
    TREASURY = "TREASURY"
    OPERATIONS = "OPERATIONS"
    UNKNOWN = "UNKNOWN"


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    TRANSFER = "TRANSFER"
    REFUND = "REFUND"


def _json_number(value: object) -> object:
    # bool is an int subclass; numeric strings are not numbers
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("amount must be a JSON number")
    return value


Amount = Annotated[float, BeforeValidator(_json_number)]


class Agent(BaseModel):
    """Agent that initiated the request."""

    model_config = ConfigDict(frozen=True)

    id: StrictStr
    type: AgentType
    name: StrictStr
    model: StrictStr | None = None


class Recipient(BaseModel):
    """Transaction recipient - account is masked or partial."""

    model_config = ConfigDict(frozen=True)

    name: StrictStr
    account: StrictStr
    verified: StrictBool


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: TransactionType
    amount: Amount = Field(allow_inf_nan=False)
    currency: StrictStr
    recipient: Recipient
    description: StrictStr


class RequestContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: StrictStr
    ip_address: StrictStr
    user_prompt: StrictStr | None = None
    agent_reasoning: StrictStr | None = None


class GateRequest(BaseModel):
    """One agent-initiated transaction proposal. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    id: StrictStr = Field(min_length=1)
    timestamp: StrictStr
    agent: Agent
    transaction: Transaction
    context: RequestContext


class TriggeredRule(BaseModel):
    id: str
    name: str
    reason: str


class RuleTrace(BaseModel):
    """One inspected rule in the cascade."""

    id: str
    name: str
    matched: bool


class PolicyEvaluation(BaseModel):
    """Output of running the cascade against one request."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    verdict: GateVerdict
    risk_level: RiskLevel
    triggered_rule: TriggeredRule
    rules_evaluated: list[RuleTrace] = Field(default_factory=list)
    evaluation_time_ms: float
    timestamp: str


class RuleDisplay(BaseModel):
    """Policy rule without its condition - safe for serialization."""

    id: str
    name: str
    description: str
    priority: int
    verdict: GateVerdict
    risk_level: RiskLevel
    reason: str


class EvidencePack(BaseModel):
    """Sealed, externally verifiable record of one decision."""

    model_config = ConfigDict(frozen=True)

    version: str = "1.0.0"
    gate_id: str
    request_hash: str
    evaluation_hash: str
    receipt_hash: str
    request: GateRequest
    evaluation: PolicyEvaluation
    approval: ApprovalRecord | None = None
    generated_at: str


class SealRequest(BaseModel):
    """POST /v1/gate/seal request.

    The decision comes from exactly one of scenario_id, request or
    decision_id (a stored approval and the request it was opened for).
    """

    scenario_id: str | None = None
    decision_id: str | None = None
    request: GateRequest | None = None
    evaluation: PolicyEvaluation | None = None
    approval_decision: ApprovalDecision | None = None
    decided_by: str | None = None
    notes: str | None = None


class SealResponse(BaseModel):
    evidence_pack: EvidencePack
    download_url: str | None = None


class GateErrorResponse(BaseModel):
    """Structured failure - always carries an effective BLOCKED verdict."""

    error: str
    code: str
    verdict: GateVerdict = GateVerdict.BLOCKED


class ScenarioMeta(BaseModel):
    id: str
    label: str
    short_description: str
    amount: str
    expected_verdict: GateVerdict
