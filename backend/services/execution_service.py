"""Execution service — run and cancel triggers.

Starting an execution creates the PENDING record and hands the run loop
to a background asyncio task, so the caller gets the execution id back
immediately. Cancelling moves the record to CANCELLED and flags the
running loop so it stops before its next step.
"""

import asyncio
from typing import Any, Optional

import structlog

from core.constants import ExecutionStatus, LogLevel
from core.exceptions import InactiveWorkflowError, InvalidStateError, NotFoundError
from services.persistence import ExecutionRecord, PersistenceGateway, utcnow
from workflow.broadcaster import NullBroadcaster, ProgressBroadcaster
from workflow.engine import WorkflowEngine

logger = structlog.get_logger(__name__)


class ExecutionService:
    """Service for starting, inspecting and cancelling executions."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        engine: Optional[WorkflowEngine] = None,
        broadcaster: Optional[ProgressBroadcaster] = None,
    ):
        self._gateway = gateway
        self._broadcaster = broadcaster or NullBroadcaster()
        self._engine = engine or WorkflowEngine(gateway, self._broadcaster)
        self._tasks: set[asyncio.Task] = set()

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    async def start_execution(
        self, workflow_id: str, trigger_data: Optional[dict] = None
    ) -> dict[str, Any]:
        """Create an execution and start running it in the background.

        Args:
            workflow_id: Workflow to execute
            trigger_data: Payload exposed to the steps under ``trigger``

        Returns:
            ``{"execution_id", "status", "message"}``

        Raises:
            NotFoundError: the workflow does not exist
            InactiveWorkflowError: the workflow is disabled
        """
        workflow = await self._gateway.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow not found")
        if not workflow.is_active:
            raise InactiveWorkflowError()

        trigger_data = trigger_data or {}
        execution = await self._gateway.create_execution(workflow_id, trigger_data)

        try:
            await self._broadcaster.execution_started(workflow_id, execution.id)
        except Exception as e:
            logger.warning("Broadcast failed", event="execution_started", error=str(e))

        task = asyncio.create_task(self._engine.run(workflow, execution.id, trigger_data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Execution dispatched", workflow_id=workflow_id, execution_id=execution.id)
        return {
            "execution_id": execution.id,
            "status": ExecutionStatus.PENDING.value,
            "message": "Workflow execution started",
        }

    async def get_execution(self, execution_id: str) -> ExecutionRecord:
        """Get an execution with its ordered logs."""
        execution = await self._gateway.get_execution(execution_id, include_logs=True)
        if execution is None:
            raise NotFoundError("Execution not found")
        return execution

    async def list_executions(
        self,
        offset: int = 0,
        limit: int = 20,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> tuple[list[ExecutionRecord], int]:
        """Execution history, newest first, optionally filtered by workflow and status."""
        return await self._gateway.list_executions(offset, limit, workflow_id, status)

    async def cancel_execution(self, execution_id: str) -> ExecutionRecord:
        """Cancel a PENDING or RUNNING execution.

        Raises:
            NotFoundError: the execution does not exist
            InvalidStateError: the execution already reached a terminal state
        """
        execution = await self._gateway.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution not found")
        if execution.status.is_terminal:
            raise InvalidStateError()

        if not await self._gateway.update_execution_status(
            execution_id, ExecutionStatus.CANCELLED, completed_at=utcnow()
        ):
            # The run finished between the read and the update
            raise InvalidStateError()

        await self._gateway.append_execution_log(
            execution_id, LogLevel.INFO, "Workflow execution cancelled"
        )
        await self._engine.cancel_execution(execution_id)

        try:
            await self._broadcaster.execution_completed(
                execution.workflow_id, execution_id, ExecutionStatus.CANCELLED.value
            )
        except Exception as e:
            logger.warning("Broadcast failed", event="execution_completed", error=str(e))

        logger.info("Execution cancelled", execution_id=execution_id)
        return await self.get_execution(execution_id)

    async def wait_for_pending_runs(self) -> None:
        """Wait until every run started by this service has finished."""
        pending = [task for task in self._tasks if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self._tasks if not task.done()]


# ─── Singleton ─────────────────────────────────────────────────

_service: Optional[ExecutionService] = None


def get_execution_service() -> ExecutionService:
    """Get or create the ExecutionService wired to the shared engine."""
    global _service
    if _service is None:
        from workflow.engine import get_workflow_engine
        from services.persistence import SqlPersistenceGateway
        from workflow.broadcaster import WebSocketBroadcaster

        _service = ExecutionService(
            SqlPersistenceGateway(), get_workflow_engine(), WebSocketBroadcaster()
        )
    return _service
