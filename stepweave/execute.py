"""Execution engine for stepweave workflows."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, NoReturn, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .chain import WorkflowDefinition
from .combinators import run_step
from .config import StepweaveConfig, load_config
from .context import ExecutionContext
from .contracts import (
    ErrorInfo,
    ExecutionResult,
    Fail,
    Suspend,
    SuspensionMetadata,
)
from .errors import SerializationError, ValidationError, WorkflowError
from .observers import EventDispatcher, WorkflowObserver
from .persistence import SnapshotRepository, get_repository
from .registry import REGISTRY, WorkflowRegistry
from .stream import WorkflowStream, WorkflowStreamController
from .suspension import SuspendSignal, SuspensionController

logger = logging.getLogger(__name__)


def _validate(schema: Any, value: Any, what: str, workflow_id: str) -> Any:
    if schema is None:
        return value
    try:
        return TypeAdapter(schema).validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Workflow '{workflow_id}' {what} does not match its schema: {e}",
            errors=e.errors(),
        ) from e


def _json_schema(schema: Any) -> Optional[dict]:
    if schema is None:
        return None
    return TypeAdapter(schema).json_schema()


class WorkflowExecutor:
    """Drives workflow definitions through their steps.

    One executor can run any number of workflows concurrently; all per-run
    state lives in the :class:`ExecutionContext`.
    """

    def __init__(
        self,
        repository: SnapshotRepository | None = None,
        observers: Iterable[WorkflowObserver] | None = None,
        registry: WorkflowRegistry | None = None,
        config: StepweaveConfig | None = None,
    ) -> None:
        self._config = config or load_config()
        self._repository = repository or get_repository()
        self._observers = list(observers or [])
        self._registry = registry if registry is not None else REGISTRY
        self._suspensions = SuspensionController(self._repository)

    @property
    def repository(self) -> SnapshotRepository:
        return self._repository

    @property
    def suspensions(self) -> SuspensionController:
        return self._suspensions

    def _create_context(
        self,
        workflow: WorkflowDefinition,
        input: Any,
        execution_id: Optional[str],
        user_context: Optional[Dict[str, Any]],
    ) -> ExecutionContext:
        data = _validate(workflow.input_schema, input, "input", workflow.id)
        return ExecutionContext.create(
            workflow, data, execution_id=execution_id, user_context=user_context
        )

    async def run(
        self,
        workflow: WorkflowDefinition,
        input: Any,
        *,
        execution_id: Optional[str] = None,
        suspend_signal: Optional[SuspendSignal] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        """Run ``workflow`` to completion or suspension.

        Raises the failing step's :class:`WorkflowError` on failure, with the
        terminal :class:`ExecutionResult` attached as ``error.result``.
        """
        context = self._create_context(workflow, input, execution_id, user_context)
        logger.info(f"Starting workflow {workflow.id} execution_id={context.execution_id}")
        return await self._drive(context, suspend_signal)

    def stream(
        self,
        workflow: WorkflowDefinition,
        input: Any,
        *,
        execution_id: Optional[str] = None,
        suspend_signal: Optional[SuspendSignal] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> WorkflowStream:
        """Like :meth:`run`, but events are published as they happen."""
        context = self._create_context(workflow, input, execution_id, user_context)
        controller = WorkflowStreamController()
        logger.info(
            f"Starting streamed workflow {workflow.id} execution_id={context.execution_id}"
        )
        return WorkflowStream(
            context.execution_id,
            controller,
            lambda: self._drive(context, suspend_signal, controller),
        )

    async def resume(
        self,
        workflow: WorkflowDefinition,
        execution_id: str,
        resume_data: Any = None,
        *,
        step_id: Optional[str] = None,
        suspend_signal: Optional[SuspendSignal] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        context = await self._suspensions.resume(
            workflow,
            execution_id,
            resume_data,
            step_id=step_id,
            user_context=user_context,
        )
        return await self._drive(context, suspend_signal, resumed=True)

    async def _drive(
        self,
        context: ExecutionContext,
        signal: Optional[SuspendSignal],
        stream: Optional[WorkflowStreamController] = None,
        *,
        resumed: bool = False,
    ) -> ExecutionResult:
        workflow = context.workflow
        signal = signal or workflow.create_suspend_signal()
        events = EventDispatcher(
            context.execution_id, workflow.id, self._observers, stream
        )
        context.events = events
        self._registry.track(context.execution_id, signal)
        events.emit(
            "workflow-start",
            workflow.id,
            status="running",
            input=context.current_data,
            step_index=context.cursor,
            metadata={"workflowId": workflow.id, "resumed": resumed},
        )
        await events.workflow_started(context.current_data, resumed=resumed)
        default_timeout = self._config.engine.default_step_timeout

        try:
            while context.cursor < len(workflow.steps):
                index = context.cursor
                step = workflow.steps[index]
                if signal.is_suspended:
                    return await self._suspend(
                        context,
                        SuspensionMetadata(
                            step_id=step.id,
                            reason=signal.reason,
                            next_step_index=index,
                            origin="signal",
                            resume_schema=_json_schema(
                                step.resume_schema or workflow.resume_schema
                            ),
                        ),
                    )

                outcome, _ = await run_step(
                    step,
                    context.current_data,
                    context,
                    index=index,
                    default_timeout=default_timeout,
                )
                if isinstance(outcome, Fail):
                    await self._fail(context, outcome.error)
                if isinstance(outcome, Suspend):
                    return await self._suspend(
                        context,
                        SuspensionMetadata(
                            step_id=outcome.step_id or step.id,
                            reason=outcome.reason,
                            next_step_index=index + 1,
                            origin="step",
                            suspend_data=outcome.data,
                            resume_schema=_json_schema(
                                outcome.resume_schema or workflow.resume_schema
                            ),
                        ),
                    )
                context.current_data = outcome.data
                context.cursor = index + 1

            try:
                context.current_data = _validate(
                    workflow.result_schema, context.current_data, "result", workflow.id
                )
            except ValidationError as e:
                await self._fail(context, e)
            return await self._complete(context)
        finally:
            self._registry.untrack(context.execution_id)
            context.events = None

    async def _complete(self, context: ExecutionContext) -> ExecutionResult:
        context.mark_completed()
        if self._config.engine.persist_terminal_states:
            try:
                await self._suspensions.capture(context)
            except SerializationError as e:
                await self._fail(context, e)
        result = context.to_result()
        assert context.events is not None
        context.events.emit(
            "workflow-complete",
            context.workflow.id,
            status="success",
            output=result.result,
            metadata={"workflowId": context.workflow.id},
        )
        logger.info(
            f"Workflow {context.workflow.id} completed execution_id={context.execution_id}"
        )
        await context.events.workflow_finished(result)
        return result

    async def _suspend(
        self, context: ExecutionContext, suspension: SuspensionMetadata
    ) -> ExecutionResult:
        context.mark_suspended(suspension)
        try:
            await self._suspensions.suspend(context)
        except SerializationError as e:
            context.suspension = None
            await self._fail(context, e)
        assert context.events is not None
        context.events.emit(
            "workflow-suspended",
            context.workflow.id,
            status="suspended",
            output=context.current_data,
            step_index=suspension.next_step_index,
            metadata={
                "workflowId": context.workflow.id,
                "stepId": suspension.step_id,
                "reason": suspension.reason,
            },
        )
        result = context.to_result()
        await context.events.workflow_finished(result)
        return result

    async def _fail(self, context: ExecutionContext, error: WorkflowError) -> NoReturn:
        error.execution_id = context.execution_id
        context.mark_failed(ErrorInfo.from_exception(error))
        if self._config.engine.persist_terminal_states:
            try:
                await self._suspensions.capture(context)
            except SerializationError as e:
                logger.error(
                    f"Could not persist failed execution_id={context.execution_id}: {e}"
                )
        error.result = context.to_result()
        assert context.events is not None
        context.events.emit(
            "workflow-error",
            context.workflow.id,
            status="error",
            error=context.error,
            metadata={"workflowId": context.workflow.id, "stepId": error.step_id},
        )
        logger.error(
            f"Workflow {context.workflow.id} failed execution_id={context.execution_id}: {error}"
        )
        await context.events.workflow_finished(error.result)
        raise error
