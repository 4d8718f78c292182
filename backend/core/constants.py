"""Constants and enums for the workflow engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Terminal states are sinks: an execution never leaves them."""
        return self in TERMINAL_STATUSES

    @classmethod
    def sources_for(cls, target: "ExecutionStatus") -> tuple["ExecutionStatus", ...]:
        """States an execution may be in when moving to ``target``."""
        return tuple(
            source for source, targets in ALLOWED_TRANSITIONS.items() if target in targets
        )


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset(
        {ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
    ExecutionStatus.RUNNING: frozenset(
        {ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
    ),
}


class LogLevel(str, Enum):
    """Severity of an execution log entry."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class TriggerType(str, Enum):
    """Event category that starts a workflow."""

    HTTP = "http"
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    MANUAL = "manual"


class StepType(str, Enum):
    """Recognized workflow step kinds."""

    HTTP_REQUEST = "http_request"
    EMAIL = "email"
    DATABASE = "database"
    TRANSFORM = "transform"
    DELAY = "delay"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"
    WEBHOOK = "webhook"
    VARIABLE = "variable"


# Output-map key under which the trigger payload is exposed to steps
TRIGGER_OUTPUT_KEY = "trigger"
