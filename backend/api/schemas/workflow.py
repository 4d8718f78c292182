"""Workflow schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class WorkflowStepCreate(BaseModel):
    """Request to create a workflow step."""

    id: Optional[str] = Field(default=None, description="Step id used in {{id.field}} placeholders; generated if omitted")
    type: str = Field(min_length=1, description="Step kind (e.g. 'http_request', 'loop', 'variable')")
    name: str = Field(min_length=1, description="Human-readable step name")
    config: Union[Dict[str, Any], str] = Field(default_factory=dict, description="Step configuration")
    order: Optional[int] = Field(default=None, ge=0, description="Execution order; list position if omitted")


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    name: str = Field(min_length=1, description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    is_active: bool = Field(default=True, description="Whether the workflow can be executed")
    trigger: Optional[Dict[str, Any]] = Field(default=None, description="Trigger descriptor")
    config: Dict[str, Any] = Field(default_factory=dict, description="Free-form configuration")
    steps: List[WorkflowStepCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_step_ids_and_orders(self) -> "WorkflowCreate":
        """Steps without an order take their list position."""
        orders = [step.order if step.order is not None else i for i, step in enumerate(self.steps)]
        duplicates = sorted({order for order in orders if orders.count(order) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step order: {duplicates}")
        ids = [step.id for step in self.steps if step.id]
        duplicates = sorted({step_id for step_id in ids if ids.count(step_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate step id: {duplicates}")
        return self


class WorkflowUpdate(BaseModel):
    """Partial workflow update; omitted fields keep their value. Steps are not replaced."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    trigger: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None


class WorkflowStepResponse(BaseModel):
    """Workflow step response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str = Field(validation_alias="step_type")
    order: int = Field(validation_alias="step_order")
    config: str = Field(description="Serialized JSON configuration")


class WorkflowResponse(BaseModel):
    """Workflow information response."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Workflow ID")
    name: str = Field(description="Workflow name")
    description: str = Field(description="Workflow description")
    is_active: bool = Field(description="Whether the workflow can be executed")
    trigger: Optional[Dict[str, Any]] = Field(default=None, description="Trigger descriptor")
    config: Optional[Dict[str, Any]] = Field(default=None)
    steps: List[WorkflowStepResponse] = Field(default_factory=list)
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime = Field(description="Last update timestamp")


class WorkflowListResponse(BaseModel):
    """Paginated workflow list; steps are not included."""

    workflows: List[WorkflowResponse]
    total: int
    page: int
    per_page: int
