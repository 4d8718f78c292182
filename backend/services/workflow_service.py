"""Workflow service — CRUD for workflows and their ordered steps."""

import json
from typing import Any, Optional, Sequence
from uuid import uuid4

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import ExecutionStatus, TriggerType
from core.exceptions import ConflictError, InvalidStateError
from db.models.execution import Execution
from db.models.execution_log import ExecutionLog
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from services.base import BaseService

logger = structlog.get_logger(__name__)


class WorkflowService(BaseService[Workflow]):
    """Service for workflow management."""

    def __init__(self, db: AsyncSession):
        super().__init__(Workflow, db)

    async def create_workflow(
        self,
        name: str,
        steps: Sequence[dict[str, Any]] = (),
        is_active: bool = True,
        trigger: Optional[dict] = None,
        config: Optional[dict] = None,
        description: str = "",
    ) -> Workflow:
        """Create a workflow together with its steps.

        Args:
            name: Workflow name
            steps: Step mappings ``{"type", "name", "config", "order"?, "id"?}``;
                ``config`` may be a mapping or already-serialized JSON text.
                Steps without ``order`` are numbered by list position.
            is_active: Whether the workflow may be executed
            trigger: Trigger descriptor, ``{"type": "manual"}`` by default
            config: Free-form workflow configuration
            description: Human-readable description

        Returns:
            The created workflow (steps are flushed, not loaded)

        Raises:
            ConflictError: a step id is taken or two steps share an order
        """
        workflow = await self.create({
            "name": name,
            "description": description,
            "is_active": is_active,
            "trigger": trigger or {"type": TriggerType.MANUAL.value},
            "config": config or {},
        })

        for position, step in enumerate(steps):
            raw_config = step.get("config", {})
            self.db.add(
                WorkflowStep(
                    id=step.get("id") or str(uuid4()),
                    workflow_id=workflow.id,
                    step_order=step.get("order", position),
                    step_type=step["type"],
                    name=step.get("name") or step["type"],
                    config=raw_config if isinstance(raw_config, str) else json.dumps(raw_config),
                )
            )
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.info("Workflow steps rejected", error=str(e.orig))
            raise ConflictError("Step id or order already in use") from e

        logger.info("Workflow created", workflow_id=workflow.id, steps=len(steps))
        return workflow

    async def get_with_steps(self, workflow_id: str) -> Optional[tuple[Workflow, list[WorkflowStep]]]:
        """Get a workflow and its steps in execution order."""
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            return None
        result = await self.db.execute(
            select(WorkflowStep)
            .where(WorkflowStep.workflow_id == workflow_id)
            .order_by(WorkflowStep.step_order.asc())
        )
        return workflow, list(result.scalars().all())

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow with its steps, executions and their logs.

        Returns:
            True if deleted, False if not found

        Raises:
            InvalidStateError: an execution of the workflow is still PENDING or RUNNING
        """
        workflow = await self.get_by_id(workflow_id)
        if workflow is None:
            return False

        active = await self.db.execute(
            select(func.count())
            .select_from(Execution)
            .where(
                Execution.workflow_id == workflow_id,
                Execution.status.in_([s.value for s in ExecutionStatus if not s.is_terminal]),
            )
        )
        if active.scalar():
            raise InvalidStateError("Workflow has executions in progress")

        execution_ids = select(Execution.id).where(Execution.workflow_id == workflow_id)
        await self.db.execute(delete(ExecutionLog).where(ExecutionLog.execution_id.in_(execution_ids)))
        await self.db.execute(delete(Execution).where(Execution.workflow_id == workflow_id))
        await self.db.execute(delete(WorkflowStep).where(WorkflowStep.workflow_id == workflow_id))
        await self.db.delete(workflow)
        await self.db.flush()

        logger.info("Workflow deleted", workflow_id=workflow_id)
        return True
