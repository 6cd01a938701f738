"""Database models."""

from gate.models.approval import ApprovalRecordRow
from gate.models.evidence import EvidencePackRow

__all__ = ["ApprovalRecordRow", "EvidencePackRow"]
