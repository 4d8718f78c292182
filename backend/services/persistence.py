"""Persistence gateway consumed by the workflow engine.

The engine reads workflow definitions and writes execution status and
log records only through this interface. SqlPersistenceGateway is the
SQLAlchemy implementation; every operation runs in its own short-lived
session so concurrent executions never share a session.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import ExecutionStatus, LogLevel
from core.exceptions import PersistenceError
from db.models.execution import Execution
from db.models.execution_log import ExecutionLog
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from workflow.definitions import StepDefinition, WorkflowDefinition

logger = structlog.get_logger(__name__)

LOG_SEQUENCE_ATTEMPTS = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; all stored values are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class ExecutionLogRecord:
    id: str
    execution_id: str
    sequence: int
    level: str
    message: str
    step_id: Optional[str]
    created_at: datetime


@dataclass
class ExecutionRecord:
    id: str
    workflow_id: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    trigger_data: dict[str, Any] = field(default_factory=dict)
    logs: list[ExecutionLogRecord] = field(default_factory=list)


class PersistenceGateway(ABC):
    """Read/write interface between the engine and the store.

    Implementations raise PersistenceError for any storage failure.
    """

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Workflow with its steps in execution order, or None."""

    @abstractmethod
    async def create_execution(
        self, workflow_id: str, trigger_data: Optional[dict] = None
    ) -> ExecutionRecord:
        """Create an execution in PENDING."""

    @abstractmethod
    async def get_execution(
        self, execution_id: str, include_logs: bool = False
    ) -> Optional[ExecutionRecord]:
        """Execution by id, optionally with its ordered logs."""

    @abstractmethod
    async def list_executions(
        self,
        offset: int = 0,
        limit: int = 20,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> tuple[list[ExecutionRecord], int]:
        """Executions newest first, without logs, and the total matching count."""

    @abstractmethod
    async def update_execution_status(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """Apply a status transition.

        Returns False, changing nothing, when the execution's current
        status does not allow moving to ``status`` (for example because it
        already reached a terminal state).
        """

    @abstractmethod
    async def append_execution_log(
        self,
        execution_id: str,
        level: LogLevel,
        message: str,
        step_id: Optional[str] = None,
    ) -> ExecutionLogRecord:
        """Append a log entry to the execution's log stream."""


class SqlPersistenceGateway(PersistenceGateway):
    """PersistenceGateway backed by the SQLAlchemy models."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from db.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("Persistence operation failed", error=str(e))
            raise PersistenceError(str(e)) from e

    # ─── Conversions ───────────────────────────────────────

    @staticmethod
    def _to_definition(workflow: Workflow, steps: list[WorkflowStep]) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            is_active=workflow.is_active,
            trigger=workflow.trigger or {},
            config=workflow.config or {},
            steps=tuple(
                StepDefinition(
                    id=step.id,
                    name=step.name,
                    type=step.step_type,
                    config=step.config,
                    order=step.step_order,
                )
                for step in steps
            ),
        )

    @staticmethod
    def _to_log_record(log: ExecutionLog) -> ExecutionLogRecord:
        return ExecutionLogRecord(
            id=log.id,
            execution_id=log.execution_id,
            sequence=log.sequence,
            level=log.level,
            message=log.message,
            step_id=log.step_id,
            created_at=_aware(log.created_at),
        )

    @staticmethod
    def _to_record(execution: Execution, logs: Optional[list[ExecutionLog]] = None) -> ExecutionRecord:
        return ExecutionRecord(
            id=execution.id,
            workflow_id=execution.workflow_id,
            status=ExecutionStatus(execution.status),
            started_at=_aware(execution.started_at),
            completed_at=_aware(execution.completed_at),
            error=execution.error,
            trigger_data=execution.trigger_data or {},
            logs=[SqlPersistenceGateway._to_log_record(log) for log in logs or []],
        )

    # ─── Reads ─────────────────────────────────────────────

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        async with self._session() as session:
            workflow = await session.get(Workflow, workflow_id)
            if workflow is None:
                return None
            result = await session.execute(
                select(WorkflowStep)
                .where(WorkflowStep.workflow_id == workflow_id)
                .order_by(WorkflowStep.step_order.asc())
            )
            return self._to_definition(workflow, list(result.scalars().all()))

    async def get_execution(
        self, execution_id: str, include_logs: bool = False
    ) -> Optional[ExecutionRecord]:
        async with self._session() as session:
            execution = await session.get(Execution, execution_id)
            if execution is None:
                return None
            logs = None
            if include_logs:
                result = await session.execute(
                    select(ExecutionLog)
                    .where(ExecutionLog.execution_id == execution_id)
                    .order_by(ExecutionLog.sequence.asc())
                )
                logs = list(result.scalars().all())
            return self._to_record(execution, logs)

    async def list_executions(
        self,
        offset: int = 0,
        limit: int = 20,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> tuple[list[ExecutionRecord], int]:
        query = select(Execution)
        count_query = select(func.count()).select_from(Execution)
        if workflow_id:
            query = query.where(Execution.workflow_id == workflow_id)
            count_query = count_query.where(Execution.workflow_id == workflow_id)
        if status:
            query = query.where(Execution.status == ExecutionStatus(status).value)
            count_query = count_query.where(Execution.status == ExecutionStatus(status).value)

        query = query.order_by(Execution.started_at.desc()).offset(offset).limit(limit)
        async with self._session() as session:
            result = await session.execute(query)
            total = await session.execute(count_query)
            return [self._to_record(e) for e in result.scalars().all()], total.scalar() or 0

    # ─── Writes ────────────────────────────────────────────

    async def create_execution(
        self, workflow_id: str, trigger_data: Optional[dict] = None
    ) -> ExecutionRecord:
        async with self._session() as session:
            execution = Execution(
                workflow_id=workflow_id,
                status=ExecutionStatus.PENDING.value,
                started_at=utcnow(),
                trigger_data=trigger_data or {},
            )
            session.add(execution)
            await session.commit()
            return self._to_record(execution)

    async def update_execution_status(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        status = ExecutionStatus(status)
        values: dict[str, Any] = {"status": status.value}
        if error is not None:
            values["error"] = error
        if completed_at is None and status.is_terminal:
            completed_at = utcnow()
        if completed_at is not None:
            values["completed_at"] = completed_at

        sources = [s.value for s in ExecutionStatus.sources_for(status)]
        async with self._session() as session:
            result = await session.execute(
                update(Execution)
                .where(Execution.id == execution_id, Execution.status.in_(sources))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        applied = result.rowcount == 1
        if not applied:
            logger.info(
                "Status transition refused",
                execution_id=execution_id,
                target_status=status.value,
            )
        return applied

    async def append_execution_log(
        self,
        execution_id: str,
        level: LogLevel,
        message: str,
        step_id: Optional[str] = None,
    ) -> ExecutionLogRecord:
        # Concurrent writers (the run loop and a cancel) may claim the same
        # sequence number; the unique constraint rejects the loser, which retries.
        async with self._session() as session:
            for attempt in range(1, LOG_SEQUENCE_ATTEMPTS + 1):
                last = await session.execute(
                    select(func.coalesce(func.max(ExecutionLog.sequence), 0)).where(
                        ExecutionLog.execution_id == execution_id
                    )
                )
                log = ExecutionLog(
                    execution_id=execution_id,
                    sequence=(last.scalar() or 0) + 1,
                    level=LogLevel(level).value,
                    message=message,
                    step_id=step_id,
                    created_at=utcnow(),
                )
                session.add(log)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    if attempt == LOG_SEQUENCE_ATTEMPTS:
                        raise
                    logger.debug(
                        "Log sequence taken, retrying",
                        execution_id=execution_id,
                        attempt=attempt,
                    )
                    continue
                return self._to_log_record(log)
