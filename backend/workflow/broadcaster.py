"""Progress broadcasting for workflow executions.

The engine pushes events into a ProgressBroadcaster it is given at
construction time; it never manages the transport. Delivery is
fire-and-forget: the engine logs and drops any error a broadcaster raises.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ExecutionUpdate:
    """Status/progress event of an execution."""

    execution_id: str
    workflow_id: str
    status: str
    message: str
    step_id: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ExecutionLogEvent:
    """A log entry of an execution, as pushed to observers."""

    execution_id: str
    level: str
    message: str
    step_id: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProgressBroadcaster(ABC):
    """Sink for real-time execution events."""

    @abstractmethod
    async def execution_started(self, workflow_id: str, execution_id: str) -> None:
        ...

    @abstractmethod
    async def execution_update(self, update: ExecutionUpdate) -> None:
        ...

    @abstractmethod
    async def execution_log(self, log: ExecutionLogEvent) -> None:
        ...

    @abstractmethod
    async def execution_completed(self, workflow_id: str, execution_id: str, status: str) -> None:
        ...


class NullBroadcaster(ProgressBroadcaster):
    """Broadcaster used when no real-time transport is configured."""

    async def execution_started(self, workflow_id: str, execution_id: str) -> None:
        pass

    async def execution_update(self, update: ExecutionUpdate) -> None:
        pass

    async def execution_log(self, log: ExecutionLogEvent) -> None:
        pass

    async def execution_completed(self, workflow_id: str, execution_id: str, status: str) -> None:
        pass


def workflow_room(workflow_id: str) -> str:
    return f"workflow:{workflow_id}"


def execution_room(execution_id: str) -> str:
    return f"execution:{execution_id}"


class WebSocketBroadcaster(ProgressBroadcaster):
    """Pushes events to WebSocket clients subscribed to workflow/execution rooms.

    Messages are JSON objects ``{"type": "execution:<event>", "data": {...}}``.
    Workflow rooms receive started/update/completed events, execution
    rooms receive update/log/completed events.
    """

    def __init__(self, manager=None):
        if manager is None:
            from api.websockets.connection_manager import manager as default_manager

            manager = default_manager
        self._manager = manager

    async def execution_started(self, workflow_id: str, execution_id: str) -> None:
        await self._manager.send_to_room(
            workflow_room(workflow_id),
            {
                "type": "execution:started",
                "data": {"workflow_id": workflow_id, "execution_id": execution_id, "timestamp": _now_iso()},
            },
        )

    async def execution_update(self, update: ExecutionUpdate) -> None:
        message = {"type": "execution:update", "data": update.to_dict()}
        await self._manager.send_to_room(workflow_room(update.workflow_id), message)
        await self._manager.send_to_room(execution_room(update.execution_id), message)

    async def execution_log(self, log: ExecutionLogEvent) -> None:
        await self._manager.send_to_room(
            execution_room(log.execution_id),
            {"type": "execution:log", "data": log.to_dict()},
        )

    async def execution_completed(self, workflow_id: str, execution_id: str, status: str) -> None:
        message = {
            "type": "execution:completed",
            "data": {
                "workflow_id": workflow_id,
                "execution_id": execution_id,
                "status": status,
                "timestamp": _now_iso(),
            },
        }
        await self._manager.send_to_room(workflow_room(workflow_id), message)
        await self._manager.send_to_room(execution_room(execution_id), message)
