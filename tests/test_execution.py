"""Workflow execution tests."""

import asyncio

import pytest
from pydantic import BaseModel

from stepweave import (
    ExecutionStatus,
    SerializationError,
    StepExecutionError,
    StepStatus,
    StepTimeoutError,
    ValidationError,
    WorkflowExecutor,
    create_chain,
    then,
)
from stepweave.config import EngineConfig, StepweaveConfig


def double_n(data, ctx):
    return {"n": data["n"] * 2}


def add_hundred(data, ctx):
    return {"n": data["n"] + 100}


def build_scenario():
    return (
        create_chain("scenario")
        .then("step1", double_n)
        .when("step2", lambda data, ctx: data["n"] > 5, then("add", add_hundred))
        .build()
    )


@pytest.mark.asyncio
async def test_scenario_condition_met(executor):
    result = await executor.run(build_scenario(), {"n": 3})

    assert result.status == ExecutionStatus.COMPLETED
    assert result.result == {"n": 106}


@pytest.mark.asyncio
async def test_scenario_condition_not_met(executor, repository):
    result = await executor.run(build_scenario(), {"n": 1})

    assert result.result == {"n": 2}
    snapshot = await repository.load(result.execution_id)
    statuses = {r.step_id: r.status for r in snapshot.history}
    assert statuses == {"step1": StepStatus.SUCCESS, "step2": StepStatus.SKIPPED}


@pytest.mark.asyncio
async def test_then_steps_compose_left_to_right(executor):
    fns = [
        lambda x, ctx: x + 1,
        lambda x, ctx: x * 10,
        lambda x, ctx: x - 3,
    ]
    chain = create_chain("compose")
    for i, fn in enumerate(fns):
        chain = chain.then(f"s{i}", fn)

    result = await executor.run(chain.build(), 4)

    expected = 4
    for fn in fns:
        expected = fn(expected, None)
    assert result.result == expected == 47


@pytest.mark.asyncio
async def test_async_step_functions_are_awaited(executor):
    async def fetch(data, ctx):
        await asyncio.sleep(0)
        return data + ["fetched"]

    workflow = create_chain("async").then("fetch", fetch).build()
    result = await executor.run(workflow, [])
    assert result.result == ["fetched"]


@pytest.mark.asyncio
async def test_step_failure_raises_with_terminal_result(executor, repository):
    def explode(data, ctx):
        raise RuntimeError("boom")

    workflow = (
        create_chain("failing")
        .then("ok", lambda d, ctx: d + 1)
        .then("explode", explode)
        .then("never", lambda d, ctx: d * 100)
        .build()
    )

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, 1)

    error = exc_info.value
    assert error.step_id == "explode"
    assert isinstance(error.__cause__, RuntimeError)
    assert error.result.status == ExecutionStatus.FAILED
    assert error.result.result is None
    assert error.result.error.kind == "StepExecutionError"

    snapshot = await repository.load(error.execution_id)
    assert snapshot.status == ExecutionStatus.FAILED
    assert [r.step_id for r in snapshot.history] == ["ok", "explode"]
    assert snapshot.history[-1].status == StepStatus.ERROR
    assert snapshot.current_data == 2


@pytest.mark.asyncio
async def test_tap_failure_behaves_like_then(executor):
    def audit(data, ctx):
        raise ValueError("audit log unavailable")

    workflow = create_chain("tap-fail").tap("audit", audit).build()
    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, {"x": 1})
    assert exc_info.value.step_id == "audit"


@pytest.mark.asyncio
async def test_step_timeout(executor):
    async def slow(data, ctx):
        await asyncio.sleep(1)
        return data

    workflow = create_chain("slow").then("slow", slow, timeout=0.05).build()

    with pytest.raises(StepTimeoutError) as exc_info:
        await executor.run(workflow, None)
    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.kind == "Timeout"
    assert exc_info.value.result.error.step_id == "slow"


@pytest.mark.asyncio
async def test_default_step_timeout_from_config(repository, registry):
    async def slow(data, ctx):
        await asyncio.sleep(1)

    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        config=StepweaveConfig(engine=EngineConfig(default_step_timeout=0.05)),
    )
    workflow = create_chain("slow").then("slow", slow).build()
    with pytest.raises(StepTimeoutError):
        await executor.run(workflow, None)


class Order(BaseModel):
    order_id: str
    quantity: int


@pytest.mark.asyncio
async def test_input_validated_before_execution(executor, repository):
    calls = []
    workflow = (
        create_chain("orders", input_schema=Order)
        .then("record", lambda d, ctx: calls.append(d) or d)
        .build()
    )

    with pytest.raises(ValidationError):
        await executor.run(workflow, {"order_id": "o-1"})
    assert calls == []
    assert await repository.list_snapshots() == []


@pytest.mark.asyncio
async def test_result_schema_failure_marks_execution_failed(executor):
    workflow = (
        create_chain("orders", result_schema=Order)
        .then("broken", lambda d, ctx: {"order_id": "o-1"})
        .build()
    )

    with pytest.raises(ValidationError) as exc_info:
        await executor.run(workflow, None)
    assert exc_info.value.result.status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_step_context_exposes_execution(executor):
    seen = {}

    def inspect_ctx(data, ctx):
        seen["execution_id"] = ctx.execution_id
        seen["workflow_id"] = ctx.workflow_id
        seen["step_id"] = ctx.step_id
        seen["input"] = ctx.input
        seen["first"] = ctx.get_step_data("first").output
        return data

    workflow = (
        create_chain("ctx")
        .then("first", lambda d, ctx: d * 2)
        .then("inspect", inspect_ctx)
        .build()
    )
    result = await executor.run(workflow, 5, execution_id="exec-1")

    assert seen == {
        "execution_id": "exec-1",
        "workflow_id": "ctx",
        "step_id": "inspect",
        "input": 5,
        "first": 10,
    }
    assert result.execution_id == "exec-1"


@pytest.mark.asyncio
async def test_step_input_snapshot_is_isolated_from_mutation(executor, repository):
    def mutate(data, ctx):
        data["items"].append("mutated")
        return data

    workflow = create_chain("mutate").then("mutate", mutate).build()
    result = await executor.run(workflow, {"items": []})

    snapshot = await repository.load(result.execution_id)
    assert snapshot.history[0].input == {"items": []}
    assert snapshot.history[0].output == {"items": ["mutated"]}


class RecordingObserver:
    def __init__(self):
        self.events = []

    def on_step_start(self, event):
        self.events.append(("start", event.step_id))

    async def on_step_end(self, event):
        self.events.append(("end", event.step_id, event.result.status))


class BrokenObserver:
    def on_step_start(self, event):
        raise RuntimeError("telemetry down")

    def on_step_end(self, event):
        raise RuntimeError("telemetry down")


@pytest.mark.asyncio
async def test_observers_are_notified_and_failures_ignored(repository, registry):
    observer = RecordingObserver()
    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        observers=[BrokenObserver(), observer],
        config=StepweaveConfig(),
    )

    result = await executor.run(build_scenario(), {"n": 1})

    assert result.result == {"n": 2}
    assert observer.events == [
        ("start", "step1"),
        ("end", "step1", StepStatus.SUCCESS),
        ("start", "step2"),
        ("end", "step2", StepStatus.SKIPPED),
    ]


@pytest.mark.asyncio
async def test_workflow_definition_run_delegates(executor):
    result = await build_scenario().run({"n": 3}, executor=executor)
    assert result.result == {"n": 106}


class LifecycleObserver:
    def __init__(self):
        self.events = []

    async def on_workflow_start(self, event):
        self.events.append(("start", event.status, event.resumed))

    def on_workflow_end(self, event):
        self.events.append(("end", event.status, event.error))


@pytest.mark.asyncio
async def test_workflow_hooks_wrap_a_completed_run(repository, registry):
    observer = LifecycleObserver()
    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        observers=[observer],
        config=StepweaveConfig(),
    )

    await executor.run(build_scenario(), {"n": 3})

    assert observer.events == [
        ("start", ExecutionStatus.RUNNING, False),
        ("end", ExecutionStatus.COMPLETED, None),
    ]


@pytest.mark.asyncio
async def test_workflow_end_hook_sees_failure(repository, registry):
    observer = LifecycleObserver()
    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        observers=[BrokenObserver(), observer],
        config=StepweaveConfig(),
    )

    def explode(data, ctx):
        raise RuntimeError("boom")

    with pytest.raises(StepExecutionError):
        await executor.run(create_chain("fail").then("explode", explode).build(), None)

    assert [e[:2] for e in observer.events] == [
        ("start", ExecutionStatus.RUNNING),
        ("end", ExecutionStatus.FAILED),
    ]
    assert observer.events[-1][2].step_id == "explode"


class Handle:
    """Stands in for a live resource such as a socket."""


@pytest.mark.asyncio
async def test_unstorable_result_fails_the_execution(executor):
    workflow = create_chain("handles").then("open", lambda d, ctx: {"h": Handle()}).build()

    with pytest.raises(SerializationError) as exc_info:
        await executor.run(workflow, None)

    error = exc_info.value
    assert error.kind == "SerializationError"
    assert error.execution_id
    assert error.result.status == ExecutionStatus.FAILED
    assert error.result.error.kind == "SerializationError"


@pytest.mark.asyncio
async def test_step_failure_is_reported_even_when_state_cannot_be_stored(executor):
    def explode(data, ctx):
        raise RuntimeError("real cause")

    workflow = (
        create_chain("handles")
        .then("open", lambda d, ctx: {"h": Handle()})
        .then("explode", explode)
        .build()
    )

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, None)

    error = exc_info.value
    assert error.step_id == "explode"
    assert isinstance(error.__cause__, RuntimeError)
    assert str(error.__cause__) == "real cause"
    assert error.result.status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_unstorable_suspend_data_fails_the_execution(executor):
    workflow = (
        create_chain("handles")
        .then("pause", lambda d, ctx: ctx.suspend("hold", data=Handle()))
        .build()
    )

    with pytest.raises(SerializationError) as exc_info:
        await executor.run(workflow, None)

    result = exc_info.value.result
    assert result.status == ExecutionStatus.FAILED
    assert result.suspension is None
