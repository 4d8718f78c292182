"""Execution and workflow run schemas."""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExecuteWorkflowRequest(BaseModel):
    """Request to trigger a workflow execution."""

    trigger_data: dict[str, Any] = Field(
        default_factory=dict, description="Payload exposed to the steps as {{trigger.<field>}}"
    )


class ExecutionStartedResponse(BaseModel):
    """Acknowledgement returned when an execution has been queued."""

    execution_id: str = Field(description="Execution ID")
    status: str = Field(description="Initial execution status (PENDING)")
    message: str


class ExecutionLogResponse(BaseModel):
    """Execution log entry response."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Log entry ID")
    sequence: int = Field(description="Position within the execution's log stream")
    level: str = Field(description="Log level (DEBUG, INFO, WARN, ERROR)")
    message: str = Field(description="Log message")
    step_id: Optional[str] = Field(default=None, description="Step the entry refers to")
    created_at: datetime = Field(description="Log timestamp")


class ExecutionResponse(BaseModel):
    """Execution information response."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Execution ID")
    workflow_id: str = Field(description="Workflow ID")
    status: str = Field(description="Execution status (PENDING, RUNNING, SUCCESS, FAILED, CANCELLED)")
    started_at: datetime = Field(description="Execution request timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Terminal transition timestamp")
    error: Optional[str] = Field(default=None, description="Error message if execution failed")
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    logs: List[ExecutionLogResponse] = Field(default_factory=list)


class ExecutionListResponse(BaseModel):
    """Paginated execution history; logs are not included."""

    executions: List[ExecutionResponse]
    total: int
    page: int
    per_page: int
