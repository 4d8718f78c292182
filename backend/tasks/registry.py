"""
Task Type Registry — Central registry for registry-backed step kinds.

Maintains a mapping of step type strings to their task implementations.
"""

from typing import Dict, Optional, Type

from tasks.base_task import BaseTask
from tasks.implementations.data_task import DATA_TASK_TYPES
from tasks.implementations.database_task import DATABASE_TASK_TYPES
from tasks.implementations.email_task import MESSAGING_TASK_TYPES
from tasks.implementations.http_task import HTTP_TASK_TYPES


class TaskRegistry:
    """Central registry for all task type implementations."""

    def __init__(self):
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        """Register all built-in task types."""
        for group in (HTTP_TASK_TYPES, MESSAGING_TASK_TYPES, DATABASE_TASK_TYPES, DATA_TASK_TYPES):
            for task_type, task_class in group.items():
                self.register(task_type, task_class)

    def register(self, task_type: str, task_class: Type[BaseTask]):
        """Register a new task type, replacing any previous one."""
        self._tasks[task_type] = task_class

    def get(self, task_type: str) -> Optional[Type[BaseTask]]:
        """Get a task class by type string."""
        return self._tasks.get(task_type)



# Singleton
_registry: Optional[TaskRegistry] = None


def get_task_registry() -> TaskRegistry:
    """Get or create the singleton task registry."""
    global _registry
    if _registry is None:
        _registry = TaskRegistry()
    return _registry
