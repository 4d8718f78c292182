"""Workflow execution history, inspection and cancellation endpoints."""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.schemas.common import PaginationParams
from api.schemas.execution import ExecutionListResponse, ExecutionResponse
from app.dependencies import get_executions
from core.constants import ExecutionStatus
from services.execution_service import ExecutionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["executions"])


def _execution_to_response(record) -> ExecutionResponse:
    """Convert an ExecutionRecord to the response schema."""
    data = asdict(record)
    data["status"] = record.status.value
    return ExecutionResponse.model_validate(data)


@router.get("/", response_model=ExecutionListResponse)
async def list_executions(
    pagination: PaginationParams = Depends(),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow ID"),
    exec_status: Optional[ExecutionStatus] = Query(None, alias="status", description="Filter by execution status"),
    executions: ExecutionService = Depends(get_executions),
) -> ExecutionListResponse:
    """
    List workflow executions, newest first (paginated, filterable).
    """
    records, total = await executions.list_executions(
        offset=pagination.offset,
        limit=pagination.per_page,
        workflow_id=workflow_id,
        status=exec_status,
    )

    return ExecutionListResponse(
        executions=[_execution_to_response(record) for record in records],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    executions: ExecutionService = Depends(get_executions),
) -> ExecutionResponse:
    """
    Get an execution with its log entries in order.
    """
    return _execution_to_response(await executions.get_execution(execution_id))


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse)
async def cancel_execution(
    execution_id: str,
    executions: ExecutionService = Depends(get_executions),
) -> ExecutionResponse:
    """
    Cancel a PENDING or RUNNING execution.

    Returns 409 when the execution already finished.
    """
    record = await executions.cancel_execution(execution_id)
    logger.info(f"Execution cancelled via API: {execution_id}")
    return _execution_to_response(record)
