"""Custom exceptions for the workflow engine."""

from typing import Optional


class EngineException(Exception):
    """Base exception for service-level errors surfaced to callers."""

    def __init__(self, message: str, status_code: int = 500, code: str = "INTERNAL_ERROR"):
        """Initialize exception with message, status code and error code.

        Args:
            message: Exception message
            status_code: HTTP status code
            code: Machine-readable error code
        """
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message)


class NotFoundError(EngineException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404, "NOT_FOUND")


class InactiveWorkflowError(EngineException):
    """Workflow exists but its active flag is off."""

    def __init__(self, message: str = "Workflow is not active"):
        """Initialize InactiveWorkflowError with 400 status code."""
        super().__init__(message, 400, "INACTIVE")


class InvalidStateError(EngineException):
    """Execution is not in a state that allows the requested action."""

    def __init__(self, message: str = "Execution cannot be cancelled"):
        """Initialize InvalidStateError with 409 status code."""
        super().__init__(message, 409, "INVALID_STATE")


class ConflictError(EngineException):
    """The request conflicts with stored data (duplicate ids or orders)."""

    def __init__(self, message: str = "Resource already exists"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409, "CONFLICT")


# ─── Step failures ──────────────────────────────────────────────

class StepError(Exception):
    """A step failed. The message becomes the execution's error."""


class ConfigurationError(StepError):
    """Malformed step configuration (bad JSON, missing or invalid field)."""


class UpstreamError(StepError):
    """An HTTP or webhook call returned a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class EvaluationError(StepError):
    """An expression could not be parsed or evaluated."""


class UnknownStepTypeError(StepError):
    """The step kind is not recognized by the dispatcher."""

    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"unknown step type: {step_type}")


# ─── Collaborator failures ──────────────────────────────────────

class PersistenceError(Exception):
    """A read or write through the persistence gateway failed."""


class BroadcastError(Exception):
    """Pushing a progress event to observers failed."""
