from __future__ import annotations

"""
Error taxonomy shared by the lifecycle, resolver and AI insight services.
Views translate these into HTTP responses; services never build responses.
"""

from typing import Any


class WorkflowEngineError(RuntimeError):
    """Base exception for orchestration failures surfaced to callers."""

    code = "workflow_engine_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        errors: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.errors = errors or []

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationFailed(WorkflowEngineError):
    """Missing or malformed input, rejected before any write."""

    code = "validation_error"
    status_code = 400


class NotFound(WorkflowEngineError):
    """A referenced workflow, instance or prerequisite record does not exist."""

    code = "not_found"
    status_code = 404


class InvalidState(WorkflowEngineError):
    """Target workflow inactive or a domain precondition is unmet."""

    code = "invalid_state"
    status_code = 409


class UpstreamFailure(WorkflowEngineError):
    """The AI or notification webhook was unreachable or answered non-2xx."""

    code = "upstream_failure"
    status_code = 502
