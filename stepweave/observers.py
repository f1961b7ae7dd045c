"""Passive observation of step transitions."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol

from pydantic import BaseModel, Field

from .contracts import (
    ErrorInfo,
    ExecutionResult,
    ExecutionStatus,
    StepKind,
    StepResult,
    StepStatus,
    SuspensionMetadata,
    WorkflowStreamEvent,
    utcnow,
)

if TYPE_CHECKING:
    from .steps import StepDefinition
    from .stream import WorkflowStreamController

logger = logging.getLogger(__name__)


class StepEvent(BaseModel):
    """Payload delivered to observers on step start and step end."""

    execution_id: str
    workflow_id: str
    step_id: str
    kind: StepKind
    step_index: Optional[int] = None
    input: Any = None
    result: Optional[StepResult] = None
    timestamp: datetime = Field(default_factory=utcnow)


class WorkflowEvent(BaseModel):
    """Payload delivered to observers when an execution starts or settles."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    input: Any = None
    result: Any = None
    error: Optional[ErrorInfo] = None
    suspension: Optional[SuspensionMetadata] = None
    resumed: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


class WorkflowObserver(Protocol):
    """Telemetry hook. Implementations may be sync or async."""

    def on_workflow_start(self, event: WorkflowEvent) -> Any:
        """Called before the first step of a run or resume."""

    def on_step_start(self, event: StepEvent) -> Any:
        """Called before a step's executor runs."""

    def on_step_end(self, event: StepEvent) -> Any:
        """Called once the step's result has been recorded."""

    def on_workflow_end(self, event: WorkflowEvent) -> Any:
        """Called once the execution completed, failed or suspended."""


_STREAM_STATUS = {
    StepStatus.SUCCESS: "success",
    StepStatus.SKIPPED: "success",
    StepStatus.ERROR: "error",
    StepStatus.SUSPENDED: "suspended",
}


class EventDispatcher:
    """Fan step events out to observers and, when streaming, to the stream.

    Observer failures are logged and dropped; they never change the outcome of
    a step or of the execution.
    """

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        observers: Iterable[WorkflowObserver] = (),
        stream: Optional["WorkflowStreamController"] = None,
    ) -> None:
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self._observers = list(observers)
        self._stream = stream

    async def _notify(self, method: str, event: BaseModel) -> None:
        for observer in self._observers:
            handler = getattr(observer, method, None)
            if handler is None:
                continue
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(
                    f"Observer {type(observer).__name__}.{method} failed for "
                    f"execution_id={self.execution_id}: {e}"
                )

    async def workflow_started(self, data: Any, *, resumed: bool = False) -> None:
        event = WorkflowEvent(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            status=ExecutionStatus.RUNNING,
            input=data,
            resumed=resumed,
        )
        await self._notify("on_workflow_start", event)

    async def workflow_finished(self, result: ExecutionResult) -> None:
        event = WorkflowEvent(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            status=result.status,
            result=result.result,
            error=result.error,
            suspension=result.suspension,
        )
        await self._notify("on_workflow_end", event)

    async def step_started(
        self, step: "StepDefinition", data: Any, index: Optional[int] = None
    ) -> None:
        event = StepEvent(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            step_id=step.id,
            kind=step.kind,
            step_index=index,
            input=data,
        )
        await self._notify("on_step_start", event)
        self.emit(
            "step-start",
            step.id,
            status="running",
            input=data,
            step_index=index,
            metadata={
                "stepId": step.id,
                "stepType": step.kind.value,
                "stepName": step.display_name,
            },
        )

    async def step_finished(self, result: StepResult, index: Optional[int] = None) -> None:
        event = StepEvent(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            step_id=result.step_id,
            kind=result.kind,
            step_index=index,
            input=result.input,
            result=result,
        )
        await self._notify("on_step_end", event)
        metadata = {"stepId": result.step_id, "stepType": result.kind.value}
        if result.status == StepStatus.SKIPPED:
            metadata["skipped"] = True
        self.emit(
            "step-error" if result.status == StepStatus.ERROR else "step-complete",
            result.step_id,
            status=_STREAM_STATUS[result.status],
            input=result.input,
            output=result.output,
            step_index=index,
            metadata=metadata,
            error=result.error,
        )

    def emit(self, type: str, source: str, **fields: Any) -> None:
        """Push a stream event; a no-op for non-streaming executions."""
        if self._stream is None:
            return
        self._stream.emit(
            WorkflowStreamEvent(
                type=type, execution_id=self.execution_id, from_=source, **fields
            )
        )
