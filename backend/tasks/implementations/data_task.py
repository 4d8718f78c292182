"""Data manipulation tasks: transform mappings and variables."""

from typing import Any, Mapping

import structlog

from core.exceptions import ConfigurationError, EvaluationError
from tasks.base_task import BaseTask, TaskResult
from workflow.expressions import ExpressionEvaluator
from workflow.placeholders import resolve_placeholders
from workflow.step_configs import TransformConfig, VariableConfig

logger = structlog.get_logger(__name__)


class TransformTask(BaseTask):
    """Build a new mapping from previous step outputs.

    Config:
        mapping: {key: value}; string values are placeholder-resolved,
            anything else is copied verbatim
    """

    task_type = "transform"
    display_name = "Transform"
    description = "Map previous step outputs into a new shape"

    async def execute(self, config: TransformConfig, outputs: Mapping[str, Any]) -> TaskResult:
        result = {
            key: resolve_placeholders(value, outputs) if isinstance(value, str) else value
            for key, value in config.mapping.items()
        }
        return TaskResult(success=True, output=result)


class VariableTask(BaseTask):
    """Set, calculate or transform a named value.

    Config:
        operation: set | calculate | transform
        name: Variable name
        value: Value for set/transform (placeholders allowed)
        expression: Arithmetic/comparison expression for calculate
        toUpperCase / toLowerCase / trim: transform flags
    """

    task_type = "variable"
    display_name = "Variable"
    description = "Set, calculate or transform a variable"

    async def execute(self, config: VariableConfig, outputs: Mapping[str, Any]) -> TaskResult:
        handler = {
            "set": self._set,
            "calculate": self._calculate,
            "transform": self._transform,
        }.get(config.operation)
        if handler is None:
            raise ConfigurationError(f"unknown variable operation: {config.operation}")
        return TaskResult(success=True, output=handler(config, outputs))

    @staticmethod
    def _set(config: VariableConfig, outputs: Mapping[str, Any]) -> dict:
        return {
            "name": config.name,
            "value": resolve_placeholders(config.value, outputs),
            "message": f"Variable '{config.name}' set",
        }

    @staticmethod
    def _calculate(config: VariableConfig, outputs: Mapping[str, Any]) -> dict:
        if not config.expression:
            raise ConfigurationError("calculate operation requires an expression")
        expression = resolve_placeholders(config.expression, outputs)
        try:
            value = ExpressionEvaluator.evaluate(expression)
        except EvaluationError as e:
            raise EvaluationError(f"Failed to calculate expression: {e}") from e
        return {
            "name": config.name,
            "value": value,
            "message": f"Calculated '{config.name}': {value}",
        }

    @staticmethod
    def _transform(config: VariableConfig, outputs: Mapping[str, Any]) -> dict:
        original = resolve_placeholders(config.value, outputs)
        value = "" if original is None else str(original)
        if config.to_upper_case:
            value = value.upper()
        if config.to_lower_case:
            value = value.lower()
        if config.trim:
            value = value.strip()
        return {
            "name": config.name,
            "value": value,
            "original_value": original,
            "message": f"Variable '{config.name}' transformed",
        }


DATA_TASK_TYPES = {
    "transform": TransformTask,
    "variable": VariableTask,
}
