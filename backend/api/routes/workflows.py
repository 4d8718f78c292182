"""Workflow endpoints — list, create, get, update, delete, execute."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.common import ErrorResponse, PaginationParams
from api.schemas.execution import ExecuteWorkflowRequest, ExecutionStartedResponse
from api.schemas.workflow import (
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
    WorkflowStepResponse,
    WorkflowUpdate,
)
from app.dependencies import get_db, get_executions
from services.execution_service import ExecutionService
from services.workflow_service import WorkflowService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


def _workflow_to_response(wf, steps=()) -> WorkflowResponse:
    """Convert a Workflow ORM object and its steps to the response schema."""
    return WorkflowResponse(
        id=wf.id,
        name=wf.name,
        description=wf.description or "",
        is_active=wf.is_active,
        trigger=wf.trigger,
        config=wf.config,
        steps=[WorkflowStepResponse.model_validate(step) for step in steps],
        created_at=wf.created_at,
        updated_at=wf.updated_at,
    )


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
) -> WorkflowListResponse:
    """
    List workflows, newest first (paginated).
    """
    workflows, total = await WorkflowService(db).list(
        offset=pagination.offset,
        limit=pagination.per_page,
    )

    return WorkflowListResponse(
        workflows=[_workflow_to_response(wf) for wf in workflows],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post(
    "/",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def create_workflow(
    request: WorkflowCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Create a workflow with its ordered steps.
    """
    svc = WorkflowService(db)
    wf = await svc.create_workflow(
        name=request.name,
        description=request.description,
        is_active=request.is_active,
        trigger=request.trigger,
        config=request.config,
        steps=[step.model_dump(exclude_none=True) for step in request.steps],
    )
    _, steps = await svc.get_with_steps(wf.id)
    await db.commit()

    logger.info(f"Workflow created: {wf.id}")
    return _workflow_to_response(wf, steps)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Get a workflow with its steps in execution order.
    """
    found = await WorkflowService(db).get_with_steps(workflow_id)
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    return _workflow_to_response(*found)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResponse:
    """
    Update workflow fields. Steps are left unchanged.
    """
    update_data = request.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )

    svc = WorkflowService(db)
    wf = await svc.update(workflow_id, update_data)
    if not wf:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    _, steps = await svc.get_with_steps(wf.id)
    await db.commit()

    logger.info(f"Workflow updated: {workflow_id}")
    return _workflow_to_response(wf, steps)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={409: {"model": ErrorResponse}},
)
async def delete_workflow(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    Delete a workflow together with its steps and execution history.

    Refused with 409 while one of its executions is PENDING or RUNNING.
    """
    deleted = await WorkflowService(db).delete_workflow(workflow_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Workflow not found",
        )
    await db.commit()
    logger.info(f"Workflow deleted: {workflow_id}")


@router.post(
    "/{workflow_id}/execute",
    response_model=ExecutionStartedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 400: {"model": ErrorResponse}},
)
async def trigger_workflow_execution(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    executions: ExecutionService = Depends(get_executions),
) -> ExecutionStartedResponse:
    """
    Trigger execution of a workflow.

    The run proceeds in the background; follow it through
    GET /executions/{id} or the WebSocket rooms.
    """
    trigger_data = request.trigger_data if request else {}
    started = await executions.start_execution(workflow_id, trigger_data)
    return ExecutionStartedResponse(**started)
