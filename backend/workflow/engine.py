"""Workflow Execution Engine — ordered step runner.

Takes a persisted workflow (an ordered list of steps) and runs it for one
execution record:

- Drives the execution through PENDING → RUNNING → SUCCESS/FAILED/CANCELLED
- Threads each step's result into the outputs later steps resolve
  ``{{stepId.field}}`` placeholders against
- Stops at the first failing top-level step
- Appends an execution log entry for every milestone
- Pushes real-time progress through the injected ProgressBroadcaster
- Honours cooperative cancellation between steps

The engine never talks to storage or sockets directly: it is handed a
PersistenceGateway and a ProgressBroadcaster.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog
from structlog.contextvars import bound_contextvars

from core.constants import TRIGGER_OUTPUT_KEY, ExecutionStatus, LogLevel
from workflow.broadcaster import (
    ExecutionLogEvent,
    ExecutionUpdate,
    NullBroadcaster,
    ProgressBroadcaster,
)
from workflow.definitions import StepDefinition, WorkflowDefinition
from workflow.executor import StepExecutor

logger = structlog.get_logger(__name__)


# ─── Execution Context ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """Per-run state of one execution.

    ``outputs`` holds exactly the results of the steps completed so far,
    keyed by step id. Created at the start of a run and discarded at its end.
    """

    execution_id: str
    workflow_id: str
    trigger_data: dict[str, Any] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.PENDING
    error: Optional[str] = None
    current_step_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return bool(self.metadata.get("cancelled"))

    def scope(self) -> dict[str, Any]:
        """Values visible to placeholders: step outputs plus the trigger payload."""
        return {TRIGGER_OUTPUT_KEY: self.trigger_data, **self.outputs}


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    One instance serves any number of concurrent executions; all per-run
    state lives in the ExecutionContext created by ``run``.
    """

    def __init__(
        self,
        gateway,
        broadcaster: Optional[ProgressBroadcaster] = None,
        step_executor: Optional[StepExecutor] = None,
    ):
        self._gateway = gateway
        self._broadcaster = broadcaster or NullBroadcaster()
        self._step_executor = step_executor or StepExecutor()
        self._running_executions: dict[str, ExecutionContext] = {}

    async def run(
        self,
        workflow: WorkflowDefinition,
        execution_id: str,
        trigger_data: Optional[dict] = None,
    ) -> ExecutionContext:
        """Execute a workflow for an execution that is currently PENDING.

        Args:
            workflow: Workflow definition with its ordered steps
            execution_id: ID of the execution record to drive
            trigger_data: Payload the run was triggered with

        Returns:
            Final ExecutionContext with all step outputs
        """
        context = ExecutionContext(
            execution_id=execution_id,
            workflow_id=workflow.id,
            trigger_data=dict(trigger_data or {}),
        )
        self._running_executions[execution_id] = context

        with bound_contextvars(execution_id=execution_id, workflow_id=workflow.id):
            try:
                await self._execute_steps(workflow, context)
            except Exception as e:
                logger.error("Workflow execution failed", error=str(e), exc_info=True)
                await self._fail_execution(context, e)
            finally:
                self._running_executions.pop(execution_id, None)

        return context

    async def _execute_steps(self, workflow: WorkflowDefinition, context: ExecutionContext) -> None:
        if not await self._gateway.update_execution_status(context.execution_id, ExecutionStatus.RUNNING):
            logger.info("Execution is no longer pending, not starting")
            await self._sync_status(context)
            return

        context.status = ExecutionStatus.RUNNING
        logger.info("Workflow execution started", steps=len(workflow.steps))
        await self._log(context, LogLevel.INFO, "Workflow execution started")
        await self._update(context, "Workflow execution started")

        for step in workflow.steps:
            if context.cancelled:
                logger.info("Execution cancelled, skipping remaining steps", next_step_id=step.id)
                context.status = ExecutionStatus.CANCELLED
                return

            if not await self._execute_step(step, context):
                return

        if not await self._gateway.update_execution_status(context.execution_id, ExecutionStatus.SUCCESS):
            logger.info("Execution reached a terminal state before completing")
            await self._sync_status(context)
            return

        context.status = ExecutionStatus.SUCCESS
        logger.info("Workflow execution completed", steps=len(workflow.steps))
        await self._log(context, LogLevel.INFO, "Workflow execution completed successfully")
        await self._completed(context)

    async def _execute_step(self, step: StepDefinition, context: ExecutionContext) -> bool:
        """Run one top-level step. Returns False when the run must stop."""
        context.current_step_id = step.id
        await self._log(context, LogLevel.INFO, f"Executing step: {step.name}", step.id)
        await self._update(context, f"Executing step: {step.name}", step.id)

        try:
            result = await self._step_executor.execute_step(step, context.scope())
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.info("Step failed", step_id=step.id, step_type=step.type, error=error)
            await self._fail_step(step, context, error)
            return False

        context.outputs[step.id] = result
        await self._log(context, LogLevel.INFO, f"Step completed successfully: {step.name}", step.id)
        await self._update(context, f"Step completed: {step.name}", step.id)
        return True

    async def _fail_step(self, step: StepDefinition, context: ExecutionContext, error: str) -> None:
        message = f"Step failed: {step.name} - {error}"
        await self._log(context, LogLevel.ERROR, message, step.id)
        await self._update(context, message, step.id, status=ExecutionStatus.FAILED)

        if not await self._gateway.update_execution_status(
            context.execution_id, ExecutionStatus.FAILED, error=error
        ):
            await self._sync_status(context)
            return
        context.status = ExecutionStatus.FAILED
        context.error = error
        await self._completed(context)

    async def _fail_execution(self, context: ExecutionContext, exc: Exception) -> None:
        """Best-effort FAILED transition after an unexpected error."""
        error = str(exc) or type(exc).__name__
        try:
            await self._gateway.append_execution_log(
                context.execution_id, LogLevel.ERROR, f"Workflow execution failed: {error}"
            )
        except Exception as log_error:
            logger.warning("Could not record failure log", error=str(log_error))

        try:
            applied = await self._gateway.update_execution_status(
                context.execution_id, ExecutionStatus.FAILED, error=error
            )
        except Exception as status_error:
            logger.error("Could not mark execution as failed", error=str(status_error))
            applied = True

        if not applied:
            return
        context.status = ExecutionStatus.FAILED
        context.error = error
        await self._completed(context)

    async def _sync_status(self, context: ExecutionContext) -> None:
        record = await self._gateway.get_execution(context.execution_id)
        if record is not None:
            context.status = record.status
            context.error = record.error

    # ─── Logging & broadcasting ───────────────────────────────

    async def _log(
        self,
        context: ExecutionContext,
        level: LogLevel,
        message: str,
        step_id: Optional[str] = None,
    ) -> None:
        await self._gateway.append_execution_log(context.execution_id, level, message, step_id)
        await self._emit(
            "execution_log",
            ExecutionLogEvent(
                execution_id=context.execution_id,
                level=level.value,
                message=message,
                step_id=step_id,
            ),
        )

    async def _update(
        self,
        context: ExecutionContext,
        message: str,
        step_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> None:
        await self._emit(
            "execution_update",
            ExecutionUpdate(
                execution_id=context.execution_id,
                workflow_id=context.workflow_id,
                status=(status or context.status).value,
                message=message,
                step_id=step_id,
            ),
        )

    async def _completed(self, context: ExecutionContext) -> None:
        await self._emit(
            "execution_completed", context.workflow_id, context.execution_id, context.status.value
        )

    async def _emit(self, event: str, *args) -> None:
        """Deliver a broadcast; failures are logged and dropped."""
        try:
            await getattr(self._broadcaster, event)(*args)
        except Exception as e:
            logger.warning("Broadcast failed", event=event, error=str(e))

    # ─── Cancellation ─────────────────────────────────────────

    async def cancel_execution(self, execution_id: str) -> bool:
        """Flag a running execution so it stops before its next step.

        Args:
            execution_id: ID of the execution to cancel

        Returns:
            True if the run was flagged, False if it is not running here
        """
        context = self._running_executions.get(execution_id)
        if context:
            context.metadata["cancelled"] = True
            logger.info("Execution marked for cancellation", execution_id=execution_id)
            return True
        return False

    def get_running_executions(self) -> dict[str, dict]:
        """Get status of all running executions."""
        return {
            eid: {
                "workflow_id": ctx.workflow_id,
                "current_step": ctx.current_step_id,
                "steps_completed": len(ctx.outputs),
                "cancelled": ctx.cancelled,
            }
            for eid, ctx in self._running_executions.items()
        }


# ─── Singleton ─────────────────────────────────────────────────

_engine: Optional[WorkflowEngine] = None


def get_workflow_engine() -> WorkflowEngine:
    """Get or create the singleton WorkflowEngine wired to the database and WebSockets."""
    global _engine
    if _engine is None:
        from services.persistence import SqlPersistenceGateway
        from workflow.broadcaster import WebSocketBroadcaster

        _engine = WorkflowEngine(SqlPersistenceGateway(), WebSocketBroadcaster())
    return _engine
