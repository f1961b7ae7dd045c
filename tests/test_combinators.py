"""Behaviour of the when/all/race/tap combinators."""

import asyncio

import pytest

from stepweave import (
    ExecutionStatus,
    StepExecutionError,
    StepStatus,
    create_chain,
    then,
    when,
)
from stepweave.config import StepweaveConfig
from stepweave.execute import WorkflowExecutor


def sleeper(delay, value):
    async def fn(data, ctx):
        await asyncio.sleep(delay)
        return value

    return fn


def failer(delay, message="failed"):
    async def fn(data, ctx):
        await asyncio.sleep(delay)
        raise RuntimeError(message)

    return fn


@pytest.mark.asyncio
async def test_when_false_never_invokes_nested_step(executor, repository):
    calls = []

    def nested(data, ctx):
        calls.append(data)
        return "changed"

    workflow = (
        create_chain("when")
        .when("guard", lambda data, ctx: False, nested)
        .build()
    )
    original = {"keep": [1, 2, 3]}
    result = await executor.run(workflow, original)

    assert calls == []
    assert result.result == original
    snapshot = await repository.load(result.execution_id)
    assert [r.step_id for r in snapshot.history] == ["guard"]
    assert snapshot.history[0].status == StepStatus.SKIPPED


@pytest.mark.asyncio
async def test_when_true_records_nested_and_outer_results(executor, repository):
    workflow = (
        create_chain("when")
        .when("guard", lambda data, ctx: data > 0, then("inc", lambda d, ctx: d + 1))
        .build()
    )
    result = await executor.run(workflow, 1)

    assert result.result == 2
    snapshot = await repository.load(result.execution_id)
    assert [(r.step_id, r.status) for r in snapshot.history] == [
        ("inc", StepStatus.SUCCESS),
        ("guard", StepStatus.SUCCESS),
    ]


@pytest.mark.asyncio
async def test_all_returns_outputs_in_declared_order(executor):
    workflow = (
        create_chain("fanout")
        .all(
            "group",
            [
                then("slow", sleeper(0.05, "slow")),
                then("fast", sleeper(0.0, "fast")),
                then("medium", sleeper(0.02, "medium")),
            ],
        )
        .build()
    )
    result = await executor.run(workflow, None)
    assert result.result == ["slow", "fast", "medium"]


@pytest.mark.asyncio
async def test_all_siblings_receive_independent_copies(executor):
    def append(tag):
        def fn(data, ctx):
            data["tags"].append(tag)
            return data["tags"]

        return fn

    workflow = (
        create_chain("fanout")
        .all("group", [then("a", append("a")), then("b", append("b"))])
        .build()
    )
    result = await executor.run(workflow, {"tags": []})
    assert result.result == [["a"], ["b"]]


@pytest.mark.asyncio
async def test_all_failure_keeps_sibling_results(executor, repository):
    workflow = (
        create_chain("fanout")
        .then("prepare", lambda d, ctx: {"ready": True})
        .all(
            "group",
            [then("ok", sleeper(0.01, "ok")), then("bad", failer(0.0))],
        )
        .build()
    )

    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, None)
    assert exc_info.value.step_id == "bad"

    snapshot = await repository.load(exc_info.value.execution_id)
    statuses = {r.step_id: r.status for r in snapshot.history}
    assert statuses["ok"] == StepStatus.SUCCESS
    assert statuses["bad"] == StepStatus.ERROR
    assert statuses["group"] == StepStatus.ERROR
    assert snapshot.current_data == {"ready": True}


@pytest.mark.asyncio
async def test_all_earliest_failure_propagates(executor):
    workflow = (
        create_chain("fanout")
        .all(
            "group",
            [then("late", failer(0.05, "late")), then("early", failer(0.0, "early"))],
        )
        .build()
    )
    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, None)
    assert exc_info.value.step_id == "early"


class EndRecorder:
    def __init__(self):
        self.ended = []

    def on_step_end(self, event):
        self.ended.append(event.step_id)


@pytest.mark.asyncio
async def test_race_first_settled_wins_and_loser_is_never_recorded(repository, registry):
    recorder = EndRecorder()
    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        observers=[recorder],
        config=StepweaveConfig(),
    )
    workflow = (
        create_chain("race")
        .race(
            "first",
            [then("slow", sleeper(0.1, "slow")), then("fast", sleeper(0.01, "fast"))],
        )
        .build()
    )

    result = await executor.run(workflow, None)
    assert result.result == "fast"

    await asyncio.sleep(0.2)
    snapshot = await repository.load(result.execution_id)
    assert [r.step_id for r in snapshot.history] == ["fast", "first"]
    assert "slow" not in recorder.ended


@pytest.mark.asyncio
async def test_race_failure_settling_first_is_the_outcome(executor):
    workflow = (
        create_chain("race")
        .race(
            "first",
            [then("slow", sleeper(0.1, "slow")), then("broken", failer(0.0))],
        )
        .build()
    )
    with pytest.raises(StepExecutionError) as exc_info:
        await executor.run(workflow, None)
    assert exc_info.value.step_id == "broken"


@pytest.mark.asyncio
async def test_tap_passes_data_through(executor, repository):
    seen = []
    workflow = (
        create_chain("tap")
        .tap("log", lambda d, ctx: seen.append(d) or "ignored")
        .then("inc", lambda d, ctx: d + 1)
        .build()
    )
    result = await executor.run(workflow, 41)

    assert seen == [41]
    assert result.result == 42
    snapshot = await repository.load(result.execution_id)
    assert snapshot.history[0].output == 41


def pause(data, ctx):
    return ctx.suspend("need input")


@pytest.mark.asyncio
async def test_all_with_suspended_sibling_suspends_the_group(executor, repository):
    workflow = (
        create_chain("fanout")
        .all("group", [then("a", sleeper(0.01, "a")), then("pause", pause)])
        .then("after", lambda d, ctx: {**d, "after": True})
        .build()
    )

    suspended = await executor.run(workflow, {"n": 1})

    assert suspended.status == ExecutionStatus.SUSPENDED
    assert suspended.suspension.step_id == "pause"
    assert suspended.suspension.next_step_index == 1
    snapshot = await repository.load(suspended.execution_id)
    statuses = {r.step_id: r.status for r in snapshot.history}
    assert statuses == {
        "a": StepStatus.SUCCESS,
        "pause": StepStatus.SUSPENDED,
        "group": StepStatus.SUSPENDED,
    }

    result = await executor.resume(workflow, suspended.execution_id, {"ok": True})
    assert result.status == ExecutionStatus.COMPLETED
    assert result.result == {"n": 1, "ok": True, "after": True}


@pytest.mark.asyncio
async def test_race_won_by_suspending_sibling(executor, repository):
    workflow = (
        create_chain("race-pause")
        .race("first", [then("slow", sleeper(0.1, "slow")), then("pause", pause)])
        .then("after", lambda d, ctx: {**d, "after": True})
        .build()
    )

    suspended = await executor.run(workflow, {"n": 1})

    assert suspended.status == ExecutionStatus.SUSPENDED
    assert suspended.suspension.step_id == "pause"

    await asyncio.sleep(0.2)
    snapshot = await repository.load(suspended.execution_id)
    assert [r.step_id for r in snapshot.history] == ["pause", "first"]
    assert snapshot.history[1].status == StepStatus.SUSPENDED

    result = await executor.resume(workflow, suspended.execution_id, {"ok": True})
    assert result.result == {"n": 1, "ok": True, "after": True}


class StartRecorder:
    def __init__(self):
        self.started = []

    def on_step_start(self, event):
        self.started.append(event.step_id)


@pytest.mark.asyncio
async def test_race_loser_starts_no_steps_after_the_race_settles(repository, registry):
    recorder = StartRecorder()
    executor = WorkflowExecutor(
        repository=repository,
        registry=registry,
        observers=[recorder],
        config=StepweaveConfig(),
    )

    async def slow_condition(data, ctx):
        await asyncio.sleep(0.05)
        return True

    workflow = (
        create_chain("race")
        .race(
            "first",
            [
                when("late", slow_condition, then("late-body", lambda d, ctx: "late")),
                then("fast", sleeper(0.0, "fast")),
            ],
        )
        .then("linger", sleeper(0.15, "done"))
        .build()
    )

    result = await executor.run(workflow, None)

    assert result.result == "done"
    assert "late" in recorder.started
    assert "late-body" not in recorder.started
    snapshot = await repository.load(result.execution_id)
    assert "late-body" not in [r.step_id for r in snapshot.history]
