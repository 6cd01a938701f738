"""Human approval schemas."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ApprovalDecision(str, Enum):
    """Decisions a human reviewer may record."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset(
    {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, ApprovalStatus.EXPIRED}
)


class ApprovalRecord(BaseModel):
    """Approval attached to a REQUIRES_HUMAN_APPROVAL evaluation.

    auto_action is fixed: a pending record can only ever expire on its own.
    """

    model_config = ConfigDict(frozen=True)

    decision_id: str
    request_id: str | None = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: str
    expires_at: str
    decided_at: str | None = None
    decided_by: str | None = None
    notes: str | None = None
    auto_action: Literal["EXPIRE"] = "EXPIRE"


class DecisionRequest(BaseModel):
    """POST /v1/approvals/{decision_id}/decision request."""

    status: ApprovalDecision
    decided_by: str = Field(min_length=1)
    notes: str | None = None
