"""
Outcome types returned by the core services.

Business-rule violations (illegal transition, locked field) are NOT
exceptions - they are the system working correctly, so they come back as
failed OperationResults the caller can render directly. Only conditions that
should never happen in a consistent database are raised.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from quoteledger.models.enums import AgreementStatus


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    LOCKED_FIELD_VIOLATION = "LOCKED_FIELD_VIOLATION"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    PLAN_LIMIT = "PLAN_LIMIT"


class AgreementNotFoundError(Exception):
    """Raised when an audit event is appended for an agreement that does not exist."""

    def __init__(self, agreement_id: str):
        self.agreement_id = agreement_id
        super().__init__(f"Agreement {agreement_id} not found")


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    allowed_transitions: Optional[List[AgreementStatus]] = None
    locked_fields: Optional[List[str]] = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def not_found(cls, message: str = "Agreement not found") -> "OperationResult":
        return cls(success=False, error=message, code=ErrorCode.NOT_FOUND)

    @classmethod
    def invalid_transition(
        cls, message: str, allowed: List[AgreementStatus]
    ) -> "OperationResult":
        return cls(
            success=False,
            error=message,
            code=ErrorCode.INVALID_TRANSITION,
            allowed_transitions=list(allowed),
        )

    @classmethod
    def locked(cls, fields: List[str]) -> "OperationResult":
        return cls(
            success=False,
            error=(
                f"Cannot modify locked commercial fields: {', '.join(fields)}. "
                "Agreement was locked when accepted."
            ),
            code=ErrorCode.LOCKED_FIELD_VIOLATION,
            locked_fields=list(fields),
        )

    @classmethod
    def invalid(cls, message: str) -> "OperationResult":
        return cls(success=False, error=message, code=ErrorCode.VALIDATION_ERROR)

    @classmethod
    def conflict(cls, message: str) -> "OperationResult":
        return cls(success=False, error=message, code=ErrorCode.CONFLICT)

    @classmethod
    def plan_limit(cls, message: str) -> "OperationResult":
        return cls(success=False, error=message, code=ErrorCode.PLAN_LIMIT)

    def to_dict(self) -> Dict[str, Any]:
        """Failure body for API responses."""
        body: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            body["error"] = self.error
        if self.code is not None:
            body["code"] = self.code.value
        if self.allowed_transitions is not None:
            body["allowedTransitions"] = [s.value for s in self.allowed_transitions]
        if self.locked_fields is not None:
            body["lockedFields"] = self.locked_fields
        return body
