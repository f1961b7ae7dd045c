"""Workflow definitions and the fluent chain builder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence, Tuple, Union

from . import steps as _steps
from .errors import StepNotFoundError
from .steps import StepDefinition, StepFunc, Task, ensure_unique_ids

if TYPE_CHECKING:
    from .contracts import ExecutionResult
    from .execute import WorkflowExecutor
    from .stream import WorkflowStream
    from .suspension import SuspendSignal


@dataclass(frozen=True)
class WorkflowDefinition:
    """An immutable, ordered list of top-level steps plus its schemas.

    Schemas are anything pydantic's ``TypeAdapter`` accepts: a model class,
    a ``TypedDict``, a builtin type. ``None`` disables validation.
    """

    id: str
    steps: Tuple[StepDefinition, ...] = ()
    name: Optional[str] = None
    purpose: Optional[str] = None
    input_schema: Any = None
    result_schema: Any = None
    resume_schema: Any = None

    def step(self, step_id: str) -> StepDefinition:
        return self.steps[self.index_of(step_id)]

    def index_of(self, step_id: str) -> int:
        """Position of a top-level step."""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise StepNotFoundError(
            f"Workflow '{self.id}' has no top-level step '{step_id}'", step_id=step_id
        )

    def find_step(self, step_id: str) -> Optional[StepDefinition]:
        """Search the whole step tree, nested steps included."""
        for top in self.steps:
            for step in top.walk():
                if step.id == step_id:
                    return step
        return None

    def create_suspend_signal(self) -> "SuspendSignal":
        from .suspension import SuspendSignal

        return SuspendSignal()

    def _executor(self, executor: Optional["WorkflowExecutor"]) -> "WorkflowExecutor":
        if executor is not None:
            return executor
        from .execute import WorkflowExecutor

        return WorkflowExecutor()

    async def run(
        self,
        input: Any,
        *,
        executor: Optional["WorkflowExecutor"] = None,
        **kwargs: Any,
    ) -> "ExecutionResult":
        return await self._executor(executor).run(self, input, **kwargs)

    def stream(
        self,
        input: Any,
        *,
        executor: Optional["WorkflowExecutor"] = None,
        **kwargs: Any,
    ) -> "WorkflowStream":
        return self._executor(executor).stream(self, input, **kwargs)

    async def resume(
        self,
        execution_id: str,
        resume_data: Any = None,
        *,
        step_id: Optional[str] = None,
        executor: Optional["WorkflowExecutor"] = None,
        **kwargs: Any,
    ) -> "ExecutionResult":
        return await self._executor(executor).resume(
            self, execution_id, resume_data, step_id=step_id, **kwargs
        )


class ChainBuilder:
    """Accumulates steps into a :class:`WorkflowDefinition`.

    Every method returns a new builder, so a partially built chain can be
    branched safely. Step ids must be unique across the whole tree; a
    collision raises :class:`~stepweave.errors.DuplicateStepIdError` at the
    call that introduced it.
    """

    def __init__(
        self,
        id: str,
        *,
        name: Optional[str] = None,
        purpose: Optional[str] = None,
        input_schema: Any = None,
        result_schema: Any = None,
        resume_schema: Any = None,
        steps: Iterable[StepDefinition] = (),
    ) -> None:
        if not id:
            raise ValueError("Workflow id must be a non-empty string")
        self.id = id
        self.name = name
        self.purpose = purpose
        self.input_schema = input_schema
        self.result_schema = result_schema
        self.resume_schema = resume_schema
        self._steps: Tuple[StepDefinition, ...] = tuple(steps)
        self._ids = frozenset(ensure_unique_ids(self._steps))

    @property
    def steps(self) -> Tuple[StepDefinition, ...]:
        return self._steps

    def add(self, step: StepDefinition) -> "ChainBuilder":
        ids = ensure_unique_ids([step], taken=self._ids)
        builder = ChainBuilder.__new__(ChainBuilder)
        builder.__dict__.update(self.__dict__)
        builder._steps = self._steps + (step,)
        builder._ids = frozenset(ids)
        return builder

    def then(self, id: str, fn: StepFunc, **kwargs: Any) -> "ChainBuilder":
        return self.add(_steps.then(id, fn, **kwargs))

    def tap(self, id: str, fn: StepFunc, **kwargs: Any) -> "ChainBuilder":
        return self.add(_steps.tap(id, fn, **kwargs))

    def agent(
        self, id: str, task: Task, invoker: Any, output_type: Any = str, **kwargs: Any
    ) -> "ChainBuilder":
        return self.add(_steps.agent(id, task, invoker, output_type, **kwargs))

    def when(
        self,
        id: str,
        condition: StepFunc,
        step: Union[StepDefinition, StepFunc],
        **kwargs: Any,
    ) -> "ChainBuilder":
        return self.add(_steps.when(id, condition, step, **kwargs))

    def all(self, id: str, steps: Sequence[StepDefinition], **kwargs: Any) -> "ChainBuilder":
        return self.add(_steps.all_of(id, steps, **kwargs))

    def race(self, id: str, steps: Sequence[StepDefinition], **kwargs: Any) -> "ChainBuilder":
        return self.add(_steps.race(id, steps, **kwargs))

    def build(self, result_schema: Any = None) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=self.id,
            steps=self._steps,
            name=self.name,
            purpose=self.purpose,
            input_schema=self.input_schema,
            result_schema=result_schema if result_schema is not None else self.result_schema,
            resume_schema=self.resume_schema,
        )


def create_chain(id: str, **kwargs: Any) -> ChainBuilder:
    """Start a new chain for workflow ``id``."""
    return ChainBuilder(id, **kwargs)


def create_workflow(id: str, *steps: StepDefinition, **kwargs: Any) -> WorkflowDefinition:
    """Build a :class:`WorkflowDefinition` from ready-made steps in one call."""
    return ChainBuilder(id, steps=steps, **kwargs).build()

