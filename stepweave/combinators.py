"""Execution of individual steps.

``run_step`` is the single entry point the engine uses for every step,
top-level or nested. It applies the step's timeout, turns raised exceptions
into ``Fail`` outcomes and records a :class:`StepResult`. ``execute_step``
holds the per-kind behaviour.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from dataclasses import replace
from typing import Any, List, Optional, Protocol, Set, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .context import ExecutionContext, StepContext
from .contracts import (
    Continue,
    ErrorInfo,
    Fail,
    Outcome,
    StepKind,
    StepResult,
    StepStatus,
    Suspend,
    utcnow,
)
from .errors import StepExecutionError, StepTimeoutError, ValidationError, WorkflowError
from .steps import StepDefinition

logger = logging.getLogger(__name__)

# Race losers keep running until they finish on their own; hold a reference
# so the event loop does not garbage-collect them mid-flight.
_abandoned: Set[asyncio.Task] = set()


class HistorySink(Protocol):
    async def commit(self, result: StepResult, index: Optional[int] = None) -> None:
        ...


class BufferedSink:
    """Hold results of a race sibling until the race is decided."""

    def __init__(self, parent: HistorySink) -> None:
        self._parent = parent
        self._pending: List[Tuple[StepResult, Optional[int]]] = []
        self._discarded = False

    @property
    def discarded(self) -> bool:
        return self._discarded or getattr(self._parent, "discarded", False)

    async def commit(self, result: StepResult, index: Optional[int] = None) -> None:
        if self.discarded:
            logger.debug(f"Dropping result of abandoned step {result.step_id}")
            return
        self._pending.append((result, index))

    async def flush(self) -> None:
        pending, self._pending = self._pending, []
        for result, index in pending:
            await self._parent.commit(result, index)

    def discard(self) -> None:
        self._discarded = True
        self._pending.clear()


async def _call(fn: Any, *args: Any) -> Any:
    value = fn(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


def _status_for(outcome: Outcome) -> StepStatus:
    if isinstance(outcome, Fail):
        return StepStatus.ERROR
    if isinstance(outcome, Suspend):
        return StepStatus.SUSPENDED
    return StepStatus.SKIPPED if outcome.skipped else StepStatus.SUCCESS


async def run_step(
    step: StepDefinition,
    data: Any,
    context: ExecutionContext,
    sink: Optional[HistorySink] = None,
    *,
    index: Optional[int] = None,
    default_timeout: Optional[float] = None,
) -> Tuple[Outcome, StepResult]:
    """Execute ``step`` against ``data`` and record its result in ``sink``."""
    sink = sink if sink is not None else context
    started_at = utcnow()
    received = copy.deepcopy(data)
    if context.events is not None and not getattr(sink, "discarded", False):
        await context.events.step_started(step, received, index)

    timeout = step.timeout if step.timeout is not None else default_timeout
    try:
        if timeout is not None:
            outcome = await asyncio.wait_for(
                execute_step(step, data, context, sink, default_timeout), timeout
            )
        else:
            outcome = await execute_step(step, data, context, sink, default_timeout)
    except WorkflowError as e:
        if e.step_id is None:
            e.step_id = step.id
        e.execution_id = context.execution_id
        outcome = Fail(e)
    except asyncio.TimeoutError:
        limit = f" after {timeout}s" if timeout is not None else ""
        outcome = Fail(
            StepTimeoutError(
                f"Step '{step.id}' timed out{limit}",
                step_id=step.id,
                execution_id=context.execution_id,
            )
        )
    except Exception as e:
        error = StepExecutionError(
            f"Step '{step.id}' failed: {e}",
            step_id=step.id,
            execution_id=context.execution_id,
        )
        error.__cause__ = e
        outcome = Fail(error)

    if isinstance(outcome, Fail):
        logger.debug(f"Step {step.id} failed: {outcome.error}")
    elif isinstance(outcome, Suspend) and outcome.step_id is None:
        outcome = replace(outcome, step_id=step.id)

    result = StepResult(
        step_id=step.id,
        kind=step.kind,
        status=_status_for(outcome),
        input=received,
        output=copy.deepcopy(outcome.data) if isinstance(outcome, Continue) else None,
        error=ErrorInfo.from_exception(outcome.error) if isinstance(outcome, Fail) else None,
        started_at=started_at,
        ended_at=utcnow(),
    )
    await sink.commit(result, index)
    return outcome, result


async def execute_step(
    step: StepDefinition,
    data: Any,
    context: ExecutionContext,
    sink: HistorySink,
    default_timeout: Optional[float] = None,
) -> Outcome:
    """Dispatch on ``step.kind``; every kind is handled here."""
    ctx = StepContext(context, step)
    kind = step.kind

    if kind is StepKind.THEN:
        value = await _call(step.fn, data, ctx)
        if isinstance(value, Suspend):
            return value
        return Continue(value)

    if kind is StepKind.TAP:
        value = await _call(step.fn, data, ctx)
        if isinstance(value, Suspend):
            return value
        return Continue(data)

    if kind is StepKind.AGENT:
        return Continue(await _invoke_agent(step, data, ctx))

    if kind is StepKind.WHEN:
        if not await _call(step.condition, data, ctx):
            logger.debug(f"Condition for step {step.id} not met, skipping")
            return Continue(data, skipped=True)
        outcome, _ = await run_step(
            step.step, data, context, sink, default_timeout=default_timeout
        )
        return outcome

    if kind is StepKind.ALL:
        return await _run_all(step, data, context, sink, default_timeout)

    if kind is StepKind.RACE:
        return await _run_race(step, data, context, sink, default_timeout)

    raise ValueError(f"Unsupported step kind: {kind}")


async def _invoke_agent(step: StepDefinition, data: Any, ctx: StepContext) -> Any:
    task = step.task
    prompt = await _call(task, data, ctx) if callable(task) else task
    try:
        raw = await step.invoker.invoke(prompt, step.output_type)
        return TypeAdapter(step.output_type).validate_python(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Agent output for step '{step.id}' does not match {step.output_type}: {e}",
            errors=e.errors(),
            step_id=step.id,
        ) from e


async def _run_all(
    step: StepDefinition,
    data: Any,
    context: ExecutionContext,
    sink: HistorySink,
    default_timeout: Optional[float],
) -> Outcome:
    settled = await asyncio.gather(
        *(
            run_step(child, copy.deepcopy(data), context, sink, default_timeout=default_timeout)
            for child in step.steps
        )
    )

    failures = [(res, out) for out, res in settled if isinstance(out, Fail)]
    if failures:
        first, outcome = min(failures, key=lambda pair: pair[0].ended_at)
        logger.debug(f"Step {step.id} failed because nested step {first.step_id} failed")
        return outcome

    for outcome, _ in settled:
        if isinstance(outcome, Suspend):
            return outcome

    return Continue([outcome.data for outcome, _ in settled])


def _log_abandoned(task: asyncio.Task) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    _, result = task.result()
    logger.debug(f"Abandoned race step {result.step_id} settled with status {result.status.value}")


async def _run_race(
    step: StepDefinition,
    data: Any,
    context: ExecutionContext,
    sink: HistorySink,
    default_timeout: Optional[float],
) -> Outcome:
    buffers = [BufferedSink(sink) for _ in step.steps]
    tasks = [
        asyncio.ensure_future(
            run_step(child, copy.deepcopy(data), context, buffer, default_timeout=default_timeout)
        )
        for child, buffer in zip(step.steps, buffers)
    ]
    done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

    winner = next(i for i, task in enumerate(tasks) if task in done)
    outcome, _ = tasks[winner].result()
    await buffers[winner].flush()

    for i, task in enumerate(tasks):
        if i == winner:
            continue
        buffers[i].discard()
        if not task.done():
            _abandoned.add(task)
            task.add_done_callback(_log_abandoned)

    logger.debug(f"Race {step.id} settled by nested step {step.steps[winner].id}")
    return outcome
