"""
Error Handling for ExamPrep

This module defines the error taxonomy shared by the content, submission,
authorization and scoring components:

1. NotFoundError   - an entity id does not resolve
2. ValidationError - malformed input or an out-of-range value
3. InvariantError  - a structural rule was violated (bad permutation, bound exceeded)
4. ConflictError   - double grading, duplicate membership, concurrent modification
5. ForbiddenError  - authorization denied

Components raise these errors and never swallow them. Only the HTTP layer
translates them into responses.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorCode(Enum):
    """Standard error codes for ExamPrep"""
    UNKNOWN_ERROR = "unknown_error"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    INVARIANT_VIOLATION = "invariant_violation"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None


class ExamPrepError(Exception):
    """Base exception class for all ExamPrep domain errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.timestamp = datetime.utcnow()

    def to_error_info(self) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            details=dict(self.details),
            exception_type=type(self).__name__
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info().model_dump(mode="json")

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        return base_str


class NotFoundError(ExamPrepError):
    """Raised when an entity id does not resolve"""

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(
            message=f"{resource_type} with ID {resource_id} not found",
            code=ErrorCode.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id}
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ValidationError(ExamPrepError):
    """Raised when input is malformed or a value is out of range"""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message=message, code=ErrorCode.VALIDATION_ERROR, details=details)
        self.field = field


class InvariantError(ExamPrepError):
    """Raised when a structural rule of the content hierarchy would be broken"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code=ErrorCode.INVARIANT_VIOLATION, details=details)


class ConflictError(ExamPrepError):
    """
    Raised when an operation conflicts with the current state.

    The ``reason`` attribute is a short machine-readable tag such as
    ``AlreadyGraded`` or ``DuplicateMember``.
    """

    ALREADY_GRADED = "AlreadyGraded"
    DUPLICATE_MEMBER = "DuplicateMember"
    ALREADY_SUBMITTED = "AlreadySubmitted"
    OWNED = "Owned"
    CONCURRENT_MODIFICATION = "ConcurrentModification"

    def __init__(self, reason: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["reason"] = reason
        super().__init__(message=message or reason, code=ErrorCode.CONFLICT, details=details)
        self.reason = reason


class ForbiddenError(ExamPrepError):
    """Raised when the calling principal is not allowed to perform an action"""

    def __init__(self, action: str, resource: Optional[str] = None):
        message = f"Not authorized to {action}"
        if resource:
            message += f" {resource}"
        super().__init__(
            message=message,
            code=ErrorCode.FORBIDDEN,
            details={"action": action, "resource": resource}
        )
        self.action = action
        self.resource = resource


__all__ = [
    'ErrorCode',
    'ErrorInfo',
    'ExamPrepError',
    'NotFoundError',
    'ValidationError',
    'InvariantError',
    'ConflictError',
    'ForbiddenError',
]
