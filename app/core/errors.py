# app/core/errors.py
"""
Client-facing error types.

Each class is an HTTPException with a fixed status code and a structured
detail payload:

    {"code": "<rule>", "message": "<human text>", ...offending values}

so callers can tell a validation problem from a denied request, a missing
record or a broken business rule without parsing the message.
"""
from typing import Any

from fastapi import HTTPException, status


class WorkflowError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "error"

    def __init__(self, message: str, code: str | None = None, **context: Any):
        self.code = code or self.default_code
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message, **context},
        )


class ValidationFailed(WorkflowError):
    """Missing or malformed required input."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "validation_failed"


class AccessDenied(WorkflowError):
    """Caller's role or ownership does not allow the operation."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "access_denied"


class NotFound(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class DomainRuleViolation(WorkflowError):
    """
    A business rule rejected the request: invalid status transition,
    insufficient stock, re-assigning the same worker, area mismatch.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "domain_rule_violation"


class Conflict(WorkflowError):
    """Duplicate business key (e.g. product barcode)."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class InvalidTransition(DomainRuleViolation):
    default_code = "invalid_transition"

    def __init__(self, entity: str, from_status: str, to_status: str):
        super().__init__(
            f"Cannot change {entity} status from {from_status} to {to_status}",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
        )
