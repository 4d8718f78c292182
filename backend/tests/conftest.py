"""Shared pytest fixtures for the Flow Relay test suite.

Provides:
- In-memory persistence gateway and recording broadcaster for engine tests
- Temporary async SQLite database (no server needed for tests)
- SqlPersistenceGateway bound to that database
- FastAPI test client (httpx.AsyncClient)
- Workflow builders
"""

import copy
import json
import os
from collections import defaultdict
from typing import Any, AsyncGenerator, Callable, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./flowrelay-test.db")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("SMTP_HOST", "")

from core.constants import ALLOWED_TRANSITIONS, ExecutionStatus, LogLevel  # noqa: E402
from core.exceptions import BroadcastError, PersistenceError  # noqa: E402
from db.base import Base  # noqa: E402
from services.persistence import (  # noqa: E402
    ExecutionLogRecord,
    ExecutionRecord,
    PersistenceGateway,
    SqlPersistenceGateway,
    utcnow,
)
from workflow.broadcaster import ProgressBroadcaster  # noqa: E402
from workflow.definitions import StepDefinition, WorkflowDefinition  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class InMemoryGateway(PersistenceGateway):
    """PersistenceGateway keeping everything in dicts.

    ``fail_log_when`` makes append_execution_log raise PersistenceError for
    messages it returns True for.
    """

    def __init__(self):
        self.workflows: dict[str, WorkflowDefinition] = {}
        self.executions: dict[str, ExecutionRecord] = {}
        self.logs: dict[str, list[ExecutionLogRecord]] = defaultdict(list)
        self.status_history: dict[str, list[ExecutionStatus]] = defaultdict(list)
        self.fail_log_when: Optional[Callable[[str], bool]] = None

    def add_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self.workflows[workflow.id] = workflow
        return workflow

    async def get_workflow(self, workflow_id):
        return self.workflows.get(workflow_id)

    async def create_execution(self, workflow_id, trigger_data=None):
        record = ExecutionRecord(
            id=str(uuid4()),
            workflow_id=workflow_id,
            status=ExecutionStatus.PENDING,
            started_at=utcnow(),
            trigger_data=dict(trigger_data or {}),
        )
        self.executions[record.id] = record
        self.status_history[record.id].append(ExecutionStatus.PENDING)
        return copy.copy(record)

    async def get_execution(self, execution_id, include_logs=False):
        record = self.executions.get(execution_id)
        if record is None:
            return None
        result = copy.copy(record)
        result.logs = list(self.logs[execution_id]) if include_logs else []
        return result

    async def list_executions(self, offset=0, limit=20, workflow_id=None, status=None):
        matching = [
            record for record in self.executions.values()
            if (not workflow_id or record.workflow_id == workflow_id)
            and (not status or record.status == status)
        ]
        matching.sort(key=lambda record: record.started_at, reverse=True)
        return [copy.copy(record) for record in matching[offset:offset + limit]], len(matching)

    async def update_execution_status(self, execution_id, status, error=None, completed_at=None):
        record = self.executions.get(execution_id)
        if record is None or status not in ALLOWED_TRANSITIONS.get(record.status, ()):
            return False
        record.status = status
        if error is not None:
            record.error = error
        if completed_at is None and status.is_terminal:
            completed_at = utcnow()
        if completed_at is not None:
            record.completed_at = completed_at
        self.status_history[execution_id].append(status)
        return True

    async def append_execution_log(self, execution_id, level, message, step_id=None):
        if self.fail_log_when is not None and self.fail_log_when(message):
            raise PersistenceError(f"could not write log: {message}")
        entries = self.logs[execution_id]
        entry = ExecutionLogRecord(
            id=str(uuid4()),
            execution_id=execution_id,
            sequence=len(entries) + 1,
            level=LogLevel(level).value,
            message=message,
            step_id=step_id,
            created_at=utcnow(),
        )
        entries.append(entry)
        return entry

    def messages(self, execution_id: str) -> list[str]:
        return [entry.message for entry in self.logs[execution_id]]


class RecordingBroadcaster(ProgressBroadcaster):
    """Broadcaster remembering every event; optionally failing on each call."""

    def __init__(self, fail: bool = False):
        self.events: list[tuple[str, Any]] = []
        self.fail = fail

    async def _record(self, name: str, payload: Any) -> None:
        self.events.append((name, payload))
        if self.fail:
            raise BroadcastError("socket closed")

    async def execution_started(self, workflow_id, execution_id):
        await self._record("started", {"workflow_id": workflow_id, "execution_id": execution_id})

    async def execution_update(self, update):
        await self._record("update", update)

    async def execution_log(self, log):
        await self._record("log", log)

    async def execution_completed(self, workflow_id, execution_id, status):
        await self._record(
            "completed",
            {"workflow_id": workflow_id, "execution_id": execution_id, "status": status},
        )

    def of(self, name: str) -> list[Any]:
        return [payload for event, payload in self.events if event == name]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_step(step_type: str, config: Any = None, name: Optional[str] = None,
              step_id: Optional[str] = None, order: int = 0) -> StepDefinition:
    """Build a persisted-style step; mappings are stored as JSON text."""
    return StepDefinition(
        id=step_id or f"step{order}",
        name=name or f"{step_type} {order}",
        type=step_type,
        config=json.dumps(config if config is not None else {}) if not isinstance(config, str) else config,
        order=order,
    )


def make_workflow(steps: list[StepDefinition], workflow_id: str = "wf-1",
                  is_active: bool = True) -> WorkflowDefinition:
    return WorkflowDefinition(id=workflow_id, name="Test Workflow", is_active=is_active, steps=tuple(steps))


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Async engine on a fresh SQLite file with all tables created."""
    from db.database import create_db_engine, init_db

    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from db.database import create_session_factory

    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A session that commits on exit so gateway sessions can read its data."""
    async with session_factory() as session:
        yield session
        await session.commit()


@pytest.fixture
def sql_gateway(session_factory) -> SqlPersistenceGateway:
    return SqlPersistenceGateway(session_factory)


@pytest.fixture
def seed_workflow(session_factory):
    """Create a workflow with steps in the database and return its id."""
    from services.workflow_service import WorkflowService

    async def _seed(steps, is_active: bool = True, name: str = "Seeded Workflow") -> str:
        async with session_factory() as session:
            wf = await WorkflowService(session).create_workflow(name=name, steps=steps, is_active=is_active)
            await session.commit()
            return wf.id

    return _seed


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def execution_service(sql_gateway):
    from services.execution_service import ExecutionService

    broadcaster = RecordingBroadcaster()
    service = ExecutionService(sql_gateway, broadcaster=broadcaster)
    yield service
    await service.wait_for_pending_runs()


@pytest_asyncio.fixture
async def app(session_factory, execution_service):
    """FastAPI app wired to the test database and execution service."""
    from app.dependencies import get_db, get_executions
    from app.main import create_app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app()
    test_app.dependency_overrides[get_db] = _get_db
    test_app.dependency_overrides[get_executions] = lambda: execution_service
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
