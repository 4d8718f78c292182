"""Tests for the workflow execution engine."""

import httpx
import pytest

from core.constants import ExecutionStatus
from tasks.implementations.database_task import DatabaseTask, DataStore
from tasks.implementations.http_task import HttpRequestTask
from workflow.engine import ExecutionContext, WorkflowEngine

from conftest import RecordingBroadcaster, make_step, make_workflow


def _set_step(order: int, value: str = "x") -> object:
    return make_step("variable", {"operation": "set", "name": f"v{order}", "value": value}, order=order)


async def _start(gateway, workflow, trigger_data=None):
    gateway.add_workflow(workflow)
    record = await gateway.create_execution(workflow.id, trigger_data)
    return record.id


class CollectingStore(DataStore):
    def __init__(self):
        self.calls = []

    async def execute(self, operation, table_name, data=None, where=None):
        self.calls.append((operation, table_name, data))
        return {"affected_rows": 1}


@pytest.mark.unit
class TestExecutionContext:
    def test_scope_exposes_trigger_and_outputs(self):
        ctx = ExecutionContext(execution_id="ex-1", workflow_id="wf-1", trigger_data={"a": 1})
        ctx.outputs["s1"] = {"b": 2}

        assert ctx.scope() == {"trigger": {"a": 1}, "s1": {"b": 2}}

    def test_cancelled_flag(self):
        ctx = ExecutionContext(execution_id="ex-1", workflow_id="wf-1")
        assert not ctx.cancelled
        ctx.metadata["cancelled"] = True
        assert ctx.cancelled


@pytest.mark.unit
class TestSuccessfulRun:
    async def test_all_steps_succeed(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(i) for i in range(3)])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.SUCCESS
        assert list(context.outputs) == ["step0", "step1", "step2"]
        assert gateway.status_history[execution_id] == [
            ExecutionStatus.PENDING,
            ExecutionStatus.RUNNING,
            ExecutionStatus.SUCCESS,
        ]
        assert len(gateway.logs[execution_id]) == 2 * 3 + 2

        record = await gateway.get_execution(execution_id)
        assert record.completed_at is not None
        assert record.completed_at >= record.started_at
        assert broadcaster.of("completed") == [
            {"workflow_id": "wf-1", "execution_id": execution_id, "status": "SUCCESS"}
        ]

    async def test_log_sequence(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(0)])
        execution_id = await _start(gateway, workflow)

        await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert gateway.messages(execution_id) == [
            "Workflow execution started",
            "Executing step: variable 0",
            "Step completed successfully: variable 0",
            "Workflow execution completed successfully",
        ]
        assert [entry.sequence for entry in gateway.logs[execution_id]] == [1, 2, 3, 4]
        assert gateway.logs[execution_id][1].step_id == "step0"

    async def test_empty_workflow_succeeds(self, gateway, broadcaster):
        workflow = make_workflow([])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.SUCCESS
        assert len(gateway.logs[execution_id]) == 2

    async def test_steps_run_in_order_field_sequence(self, gateway, broadcaster):
        steps = [
            make_step("transform", {"mapping": {"v": "{{first.value}}"}}, step_id="second", order=2),
            make_step("variable", {"operation": "set", "name": "n", "value": "hello"}, step_id="first", order=1),
        ]
        workflow = make_workflow(steps)
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.outputs["second"] == {"v": "hello"}

    async def test_trigger_payload_resolves(self, gateway, broadcaster):
        step = make_step("variable", {"operation": "set", "name": "to", "value": "{{trigger.email}}"})
        workflow = make_workflow([step])
        execution_id = await _start(gateway, workflow, {"email": "ada@example.com"})

        context = await WorkflowEngine(gateway, broadcaster).run(
            workflow, execution_id, {"email": "ada@example.com"}
        )

        assert context.outputs["step0"]["value"] == "ada@example.com"
        assert "trigger" not in context.outputs

    async def test_broadcast_events(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(0)])
        execution_id = await _start(gateway, workflow)

        await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        updates = broadcaster.of("update")
        assert [u.message for u in updates] == [
            "Workflow execution started",
            "Executing step: variable 0",
            "Step completed: variable 0",
        ]
        assert all(u.status == "RUNNING" for u in updates)
        assert len(broadcaster.of("log")) == 4

    async def test_http_transform_database_pipeline(self, gateway, broadcaster, monkeypatch):
        monkeypatch.setattr(
            HttpRequestTask,
            "transport",
            httpx.MockTransport(lambda r: httpx.Response(200, json={"id": 42, "name": "Ada"})),
        )
        store = CollectingStore()
        monkeypatch.setattr(DatabaseTask, "store", store)

        workflow = make_workflow([
            make_step("http_request", {"url": "https://api.test/users/1"}, step_id="fetch", order=0),
            make_step(
                "transform",
                {"mapping": {"user_id": "{{fetch.id}}", "user_name": "{{fetch.name}}"}},
                step_id="shape",
                order=1,
            ),
            make_step(
                "database",
                {"operation": "insert", "table": "contacts",
                 "data": {"external_id": "{{shape.user_id}}", "name": "{{shape.user_name}}"}},
                step_id="save",
                order=2,
            ),
        ])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.SUCCESS
        assert context.outputs["shape"] == {"user_id": "42", "user_name": "Ada"}
        assert store.calls == [("insert", "contacts", {"external_id": "42", "name": "Ada"})]


@pytest.mark.unit
class TestFailedRun:
    async def test_stops_at_first_failing_step(self, gateway, broadcaster):
        workflow = make_workflow([
            _set_step(0),
            make_step("teleport", order=1),
            _set_step(2),
        ])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.FAILED
        assert context.error == "unknown step type: teleport"
        assert list(context.outputs) == ["step0"]

        record = await gateway.get_execution(execution_id)
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "unknown step type: teleport"
        assert record.completed_at is not None

        assert gateway.messages(execution_id) == [
            "Workflow execution started",
            "Executing step: variable 0",
            "Step completed successfully: variable 0",
            "Executing step: teleport 1",
            "Step failed: teleport 1 - unknown step type: teleport",
        ]
        assert gateway.logs[execution_id][-1].level == "ERROR"
        assert broadcaster.of("completed")[-1]["status"] == "FAILED"
        assert broadcaster.of("update")[-1].status == "FAILED"

    async def test_invalid_config_fails_step(self, gateway, broadcaster):
        workflow = make_workflow([make_step("transform", "{broken")])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.FAILED
        assert context.error.startswith("Invalid step configuration JSON")

    async def test_broadcast_failures_do_not_affect_run(self, gateway):
        broadcaster = RecordingBroadcaster(fail=True)
        workflow = make_workflow([_set_step(0), _set_step(1)])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.SUCCESS
        assert len(gateway.logs[execution_id]) == 6
        assert broadcaster.of("completed")

    async def test_persistence_failure_marks_execution_failed(self, gateway, broadcaster):
        gateway.fail_log_when = lambda message: message.startswith("Step completed successfully")
        workflow = make_workflow([_set_step(0), _set_step(1)])
        execution_id = await _start(gateway, workflow)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.FAILED
        assert context.error == "could not write log: Step completed successfully: variable 0"
        assert gateway.messages(execution_id)[-1] == (
            "Workflow execution failed: could not write log: Step completed successfully: variable 0"
        )
        assert "Executing step: variable 1" not in gateway.messages(execution_id)
        assert broadcaster.of("completed")[-1]["status"] == "FAILED"

    async def test_exactly_one_terminal_transition(self, gateway, broadcaster):
        workflow = make_workflow([make_step("teleport")])
        execution_id = await _start(gateway, workflow)

        await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        terminal = [s for s in gateway.status_history[execution_id] if s.is_terminal]
        assert terminal == [ExecutionStatus.FAILED]
        assert len(broadcaster.of("completed")) == 1


@pytest.mark.unit
class TestCancellation:
    async def test_cancel_flag_stops_before_next_step(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(0), _set_step(1)])
        execution_id = await _start(gateway, workflow)
        engine = WorkflowEngine(gateway, broadcaster)
        run_step = engine._step_executor.execute_step

        async def run_then_cancel(step, outputs):
            result = await run_step(step, outputs)
            await gateway.update_execution_status(execution_id, ExecutionStatus.CANCELLED)
            assert await engine.cancel_execution(execution_id)
            return result

        engine._step_executor.execute_step = run_then_cancel

        context = await engine.run(workflow, execution_id)

        assert context.status == ExecutionStatus.CANCELLED
        assert list(context.outputs) == ["step0"]
        assert "Executing step: variable 1" not in gateway.messages(execution_id)
        assert gateway.status_history[execution_id][-1] == ExecutionStatus.CANCELLED
        assert ExecutionStatus.SUCCESS not in gateway.status_history[execution_id]
        assert engine.get_running_executions() == {}

    async def test_cancelled_before_start_is_not_run(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(0)])
        execution_id = await _start(gateway, workflow)
        await gateway.update_execution_status(execution_id, ExecutionStatus.CANCELLED)

        context = await WorkflowEngine(gateway, broadcaster).run(workflow, execution_id)

        assert context.status == ExecutionStatus.CANCELLED
        assert context.outputs == {}
        assert gateway.logs[execution_id] == []
        assert broadcaster.of("completed") == []

    async def test_cancel_unknown_execution(self, gateway):
        assert await WorkflowEngine(gateway).cancel_execution("missing") is False

    async def test_running_executions_tracked_during_run(self, gateway, broadcaster):
        workflow = make_workflow([_set_step(0)])
        execution_id = await _start(gateway, workflow)
        engine = WorkflowEngine(gateway, broadcaster)
        seen = {}
        run_step = engine._step_executor.execute_step

        async def snapshot(step, outputs):
            seen.update(engine.get_running_executions())
            return await run_step(step, outputs)

        engine._step_executor.execute_step = snapshot

        await engine.run(workflow, execution_id)

        assert seen[execution_id]["workflow_id"] == "wf-1"
        assert seen[execution_id]["current_step"] == "step0"
        assert engine.get_running_executions() == {}
