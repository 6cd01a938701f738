"""
Exception hierarchy for the gate.

Every error carries a stable code so the API layer can report it in the
structured failure body ({error, code, verdict: BLOCKED}).
"""


class GateError(Exception):
    """Base exception for all gate errors."""

    code = "SYSTEM_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(GateError):
    """Malformed or inconsistent input, rejected before evaluation."""

    code = "INVALID_INPUT"


class EvaluationMismatchError(ValidationError):
    """A caller-supplied evaluation disagrees with the engine's own result."""

    code = "EVALUATION_MISMATCH"


class SealingError(GateError):
    """Evidence could not be produced. The verdict itself is unaffected."""

    code = "SYSTEM_ERROR"


class SealTimeoutError(SealingError):
    code = "SEAL_TIMEOUT"


class ApprovalStateError(GateError):
    """Approval record is not in a state that allows the operation."""

    code = "APPROVAL_TERMINAL"


class ApprovalExpiredError(ApprovalStateError):
    code = "APPROVAL_EXPIRED"


class OrchestratorStateError(GateError):
    code = "INVALID_STATE"


class NotFoundError(GateError):
    code = "NOT_FOUND"
