"""Step definitions and the factories that create each step kind."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence, Tuple, Union

from .contracts import StepKind
from .errors import DuplicateStepIdError

StepFunc = Callable[..., Any]
Task = Union[str, Sequence[Any], StepFunc]


@dataclass(frozen=True)
class StepDefinition:
    """One unit of work in a workflow, tagged by ``kind``.

    Only the fields relevant to ``kind`` are populated: ``fn`` for then/tap,
    ``condition`` and ``step`` for when, ``steps`` for all/race and
    ``task``/``invoker``/``output_type`` for agent steps.
    """

    id: str
    kind: StepKind
    name: Optional[str] = None
    fn: Optional[StepFunc] = None
    condition: Optional[StepFunc] = None
    step: Optional["StepDefinition"] = None
    steps: Tuple["StepDefinition", ...] = ()
    task: Optional[Task] = None
    invoker: Any = None
    output_type: Any = None
    resume_schema: Any = None
    timeout: Optional[float] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def children(self) -> Tuple["StepDefinition", ...]:
        if self.step is not None:
            return (self.step,)
        return self.steps

    def walk(self) -> Iterator["StepDefinition"]:
        """Yield this step and every nested step, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()


def ensure_unique_ids(steps: Iterable[StepDefinition], taken: Iterable[str] = ()) -> set[str]:
    """Return every id in ``steps`` or raise on the first collision."""
    seen = set(taken)
    for top in steps:
        for step in top.walk():
            if step.id in seen:
                raise DuplicateStepIdError(
                    f"Step id '{step.id}' is already used in this workflow",
                    step_id=step.id,
                )
            seen.add(step.id)
    return seen


def _require_id(step_id: str) -> str:
    if not step_id or not isinstance(step_id, str):
        raise ValueError("Step id must be a non-empty string")
    return step_id


def then(
    id: str,
    fn: StepFunc,
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    resume_schema: Any = None,
) -> StepDefinition:
    """Transform step: ``fn(data, ctx)`` returns the new data."""
    return StepDefinition(
        id=_require_id(id),
        kind=StepKind.THEN,
        name=name,
        fn=fn,
        timeout=timeout,
        resume_schema=resume_schema,
    )


def tap(
    id: str,
    fn: StepFunc,
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    resume_schema: Any = None,
) -> StepDefinition:
    """Observation step: ``fn(data, ctx)`` runs for its side effects only."""
    return StepDefinition(
        id=_require_id(id),
        kind=StepKind.TAP,
        name=name,
        fn=fn,
        timeout=timeout,
        resume_schema=resume_schema,
    )


def agent(
    id: str,
    task: Task,
    invoker: Any,
    output_type: Any = str,
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    resume_schema: Any = None,
) -> StepDefinition:
    """LLM step: render ``task``, invoke the agent, validate against ``output_type``.

    ``invoker`` is anything with an async ``invoke(prompt, output_type)``
    method; a pydantic-ai ``Agent`` is wrapped automatically.
    """
    from .agents import as_invoker

    return StepDefinition(
        id=_require_id(id),
        kind=StepKind.AGENT,
        name=name,
        task=task,
        invoker=as_invoker(invoker),
        output_type=output_type,
        timeout=timeout,
        resume_schema=resume_schema,
    )


def when(
    id: str,
    condition: StepFunc,
    step: Union[StepDefinition, StepFunc],
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
    resume_schema: Any = None,
) -> StepDefinition:
    """Conditional step: run ``step`` only when ``condition(data, ctx)`` holds."""
    if not isinstance(step, StepDefinition):
        step = then(f"{id}.step", step)
    ensure_unique_ids([step], taken=(id,))
    return StepDefinition(
        id=_require_id(id),
        kind=StepKind.WHEN,
        name=name,
        condition=condition,
        step=step,
        timeout=timeout,
        resume_schema=resume_schema,
    )


def _group(kind: StepKind, id: str, steps: Sequence[StepDefinition], **kwargs) -> StepDefinition:
    steps = tuple(steps)
    if not steps:
        raise ValueError(f"{kind.value} step '{id}' needs at least one nested step")
    ensure_unique_ids(steps, taken=(id,))
    return StepDefinition(id=_require_id(id), kind=kind, steps=steps, **kwargs)


def all_of(
    id: str,
    steps: Sequence[StepDefinition],
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
) -> StepDefinition:
    """Fan-out step: run ``steps`` concurrently and collect every output."""
    return _group(StepKind.ALL, id, steps, name=name, timeout=timeout)


def race(
    id: str,
    steps: Sequence[StepDefinition],
    *,
    name: Optional[str] = None,
    timeout: Optional[float] = None,
) -> StepDefinition:
    """Fan-out step settled by whichever nested step finishes first."""
    return _group(StepKind.RACE, id, steps, name=name, timeout=timeout)
