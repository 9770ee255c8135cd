"""
Error taxonomy for purchase-order operations.

Every error carries a machine-checkable ``kind`` and a human-readable
message.  Validation and transition errors are raised before any mutation;
RenderFailed and DeliveryFailed only ever occur after a mutation has been
committed and never undo it.
"""
from typing import Optional


class ProcurementError(Exception):
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationFailed(ProcurementError):
    kind = "validation_failed"

    def __init__(self, message: str, problems: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.problems = problems or [message]

    @classmethod
    def from_problems(cls, problems: list[str]) -> "ValidationFailed":
        return cls("; ".join(problems), problems)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "problems": self.problems}


class NotFound(ProcurementError):
    kind = "not_found"


class Conflict(ProcurementError):
    kind = "conflict"


class InvalidTransition(ProcurementError):
    kind = "invalid_transition"


class InvalidDecision(ProcurementError):
    kind = "invalid_decision"


class PermissionDenied(ProcurementError):
    kind = "permission_denied"


class StorageFailure(ProcurementError):
    kind = "storage_failure"


class RenderFailed(ProcurementError):
    kind = "render_failed"


class DeliveryFailed(ProcurementError):
    kind = "delivery_failed"
