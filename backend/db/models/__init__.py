"""Database models for the workflow engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.execution import Execution
from db.models.execution_log import ExecutionLog

__all__ = [
    "Workflow",
    "WorkflowStep",
    "Execution",
    "ExecutionLog",
]
