"""Step dispatcher.

Routes a step to the executor of its kind. Registry-backed kinds (HTTP,
webhook, email, database, transform, variable) are delegated to the task
registry; control-flow kinds (condition, delay, loop, parallel) are
handled here because loop and parallel call back into execute_step for
their sub-steps.

The dispatcher holds no per-run state, so one instance serves any number
of concurrent executions and nested calls.
"""

import asyncio
import copy
from typing import Any, Mapping

import structlog

from app.config import get_settings
from core.constants import StepType
from core.exceptions import ConfigurationError, StepError, UnknownStepTypeError
from workflow.conditions import evaluate_condition
from workflow.definitions import StepDefinition
from workflow.placeholders import resolve_placeholders
from workflow.step_configs import (
    ConditionConfig,
    DelayConfig,
    LoopConfig,
    ParallelConfig,
    StepConfig,
    parse_step_config,
)

logger = structlog.get_logger(__name__)


class StepExecutor:
    """Executes individual workflow steps.

    Uses the TaskRegistry to find the handler for registry-backed kinds.
    """

    def __init__(self, task_registry=None):
        if task_registry is None:
            from tasks.registry import get_task_registry

            task_registry = get_task_registry()
        self._task_registry = task_registry
        self._builtin = {
            StepType.CONDITION.value: self._execute_condition,
            StepType.DELAY.value: self._execute_delay,
            StepType.LOOP.value: self._execute_loop,
            StepType.PARALLEL.value: self._execute_parallel,
        }

    async def execute_step(self, step: StepDefinition, outputs: Mapping[str, Any]) -> Any:
        """Execute a single step against the accumulated outputs.

        Args:
            step: Step definition; its config is parsed fresh on every call
            outputs: Results of previously completed steps, keyed by step id

        Returns:
            The step's result

        Raises:
            StepError: the step failed (configuration, upstream, evaluation,
                unknown kind or a task-reported failure)
        """
        step_type = step.type
        builtin = self._builtin.get(step_type)
        task_class = None if builtin else self._task_registry.get(step_type)
        if builtin is None and task_class is None:
            raise UnknownStepTypeError(step_type)

        config = parse_step_config(step_type, step.config)
        logger.debug("Dispatching step", step_id=step.id, step_type=step_type)

        if builtin is not None:
            return await builtin(step, config, outputs)
        return await self._run_task(task_class(), config, outputs)

    async def _run_task(self, task, config: StepConfig, outputs: Mapping[str, Any]) -> Any:
        """Run a registry task and raise on a reported failure."""
        result = await task.run(config, outputs)
        if not result.success:
            if isinstance(result.exception, StepError):
                raise result.exception
            raise StepError(result.error or f"Task '{task.task_type}' failed")
        return result.output

    async def _execute_condition(
        self, step: StepDefinition, config: ConditionConfig, outputs: Mapping[str, Any]
    ) -> dict:
        """Evaluate the condition and report which branch it selects.

        Branch sub-steps are not executed: the step only reports.
        """
        result = evaluate_condition(config.condition, outputs)
        if result and config.if_true is not None:
            return {"result": True, "branch": "true", "message": "Condition is true, true branch selected"}
        if not result and config.if_false is not None:
            return {"result": False, "branch": "false", "message": "Condition is false, false branch selected"}
        return {"result": result, "branch": None, "message": "Condition evaluated, no branch to execute"}

    async def _execute_delay(
        self, step: StepDefinition, config: DelayConfig, outputs: Mapping[str, Any]
    ) -> dict:
        """Suspend this run only; other executions keep going."""
        duration = config.duration if config.duration is not None else get_settings().DEFAULT_DELAY_MS
        await asyncio.sleep(duration / 1000)
        return {"message": f"Delayed for {duration}ms", "duration": duration}

    @staticmethod
    def _iteration_count(config: LoopConfig, outputs: Mapping[str, Any]) -> int:
        raw = config.iterations
        if isinstance(raw, str):
            resolved = resolve_placeholders(raw, outputs).strip()
            try:
                raw = int(float(resolved))
            except (ValueError, OverflowError):
                raise ConfigurationError(f"Loop iterations must be a number, got '{resolved}'") from None
        if raw < 0:
            raise ConfigurationError(f"Loop iterations must not be negative, got {raw}")
        return raw

    async def _execute_loop(
        self, step: StepDefinition, config: LoopConfig, outputs: Mapping[str, Any]
    ) -> dict:
        """Run the configured sub-steps ``iterations`` times.

        Each sub-step sees the outer outputs merged with the results of
        earlier sub-steps of the same iteration. A failing sub-step is
        recorded as ``{"error": message}`` and the loop carries on.
        """
        iterations = self._iteration_count(config, outputs)
        sub_steps = [StepDefinition.from_dict(s, order=i) for i, s in enumerate(config.steps)]

        results = []
        for i in range(iterations):
            iteration_results: dict[str, Any] = {}
            for sub_step in sub_steps:
                scope = {**outputs, **iteration_results}
                try:
                    iteration_results[sub_step.id] = await self.execute_step(sub_step, scope)
                except Exception as e:
                    logger.info(
                        "Loop sub-step failed",
                        step_id=step.id,
                        sub_step_id=sub_step.id,
                        iteration=i + 1,
                        error=str(e),
                    )
                    iteration_results[sub_step.id] = {"error": str(e)}
            results.append({"iteration": i + 1, "results": iteration_results})

        return {
            "iterations": iterations,
            "results": results,
            "message": f"Loop completed with {iterations} iterations",
        }

    async def _run_branch(self, sub_step: StepDefinition, snapshot: dict) -> dict:
        try:
            result = await self.execute_step(sub_step, snapshot)
        except Exception as e:
            return {"step_id": sub_step.id, "status": "failed", "error": str(e)}
        return {"step_id": sub_step.id, "status": "success", "result": result}

    async def _execute_parallel(
        self, step: StepDefinition, config: ParallelConfig, outputs: Mapping[str, Any]
    ) -> dict:
        """Run all sub-steps concurrently and collect every outcome.

        Each branch works on its own copy of the outer outputs. Branch
        failures are reported in the result, never raised.
        """
        if not config.steps:
            return {"results": [], "message": "No parallel steps to execute"}

        sub_steps = [StepDefinition.from_dict(s, order=i) for i, s in enumerate(config.steps)]
        results = await asyncio.gather(
            *(self._run_branch(sub_step, copy.deepcopy(dict(outputs))) for sub_step in sub_steps)
        )
        return {
            "results": list(results),
            "message": f"Parallel execution completed for {len(sub_steps)} steps",
        }
