"""
Base task interface for step executors backed by the task registry.

Every registry-backed step kind (HTTP request, webhook, email, database,
transform, variable) inherits from BaseTask and implements execute().
Control-flow kinds (condition, delay, loop, parallel) are built into the
step dispatcher because they need to call back into it.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import structlog

from workflow.step_configs import StepConfig

logger = structlog.get_logger(__name__)


class TaskResult:
    """Standardized result from task execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
        exception: Optional[Exception] = None,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.exception = exception
        self.timestamp = datetime.now(timezone.utc)


class BaseTask(ABC):
    """
    Abstract base class for registry-backed step executors.

    Subclasses must implement:
    - execute(config, outputs) -> TaskResult
    - task_type (class property)
    - display_name (class property)

    execute() may either return a failed TaskResult or raise; run() turns
    raised exceptions into a failed result carrying the original exception.
    """

    task_type: str = "base"
    display_name: str = "Base Task"
    description: str = "Abstract base task"

    @abstractmethod
    async def execute(
        self,
        config: StepConfig,
        outputs: Mapping[str, Any],
    ) -> TaskResult:
        """
        Execute the task with given configuration.

        Args:
            config: Validated configuration model of the step
            outputs: Accumulated outputs of previously completed steps

        Returns:
            TaskResult with output or error
        """
        pass

    async def run(
        self,
        config: StepConfig,
        outputs: Optional[Mapping[str, Any]] = None,
    ) -> TaskResult:
        """
        Run the task with timing and error handling.

        This is the entry point called by the step dispatcher.
        """
        start = time.monotonic()
        try:
            logger.debug("Task starting", task_type=self.task_type)
            result = await self.execute(config, outputs or {})
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.debug(
                "Task completed",
                task_type=self.task_type,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Task failed",
                task_type=self.task_type,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return TaskResult(
                success=False,
                error=str(e),
                duration_ms=duration_ms,
                exception=e,
            )
