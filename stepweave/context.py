"""Execution state threaded through a single workflow run."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .constants import DEFAULT_SUSPEND_REASON
from .contracts import (
    ErrorInfo,
    ExecutionResult,
    ExecutionStatus,
    StepResult,
    Suspend,
    SuspensionMetadata,
    utcnow,
)

if TYPE_CHECKING:
    from .chain import WorkflowDefinition
    from .observers import EventDispatcher
    from .persistence.models import ExecutionSnapshot
    from .steps import StepDefinition

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Mutable state of one execution, advanced only by the engine.

    ``history`` is append-only. Resuming with an explicit step id may run a
    step a second time; both results stay in history and ``get_step_data``
    returns the latest one.
    """

    execution_id: str
    workflow: "WorkflowDefinition"
    input: Any
    current_data: Any
    user_context: Dict[str, Any] = field(default_factory=dict)
    history: List[StepResult] = field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    suspension: Optional[SuspensionMetadata] = None
    error: Optional[ErrorInfo] = None
    started_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    resume_data: Any = None
    resume_step_id: Optional[str] = None
    cursor: int = 0
    events: Optional["EventDispatcher"] = field(default=None, repr=False)
    _index: Dict[str, StepResult] = field(default_factory=dict, repr=False)

    @classmethod
    def create(
        cls,
        workflow: "WorkflowDefinition",
        input: Any,
        execution_id: Optional[str] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> "ExecutionContext":
        return cls(
            execution_id=execution_id or str(uuid.uuid4()),
            workflow=workflow,
            input=input,
            current_data=copy.deepcopy(input),
            user_context=dict(user_context or {}),
        )

    @classmethod
    def from_snapshot(
        cls, snapshot: "ExecutionSnapshot", workflow: "WorkflowDefinition"
    ) -> "ExecutionContext":
        """Build a fresh context populated from a persisted snapshot."""
        context = cls(
            execution_id=snapshot.execution_id,
            workflow=workflow,
            input=snapshot.input,
            current_data=snapshot.current_data,
            user_context=dict(snapshot.user_context),
            status=snapshot.status,
            suspension=snapshot.suspension,
            error=snapshot.error,
            started_at=snapshot.started_at,
            updated_at=snapshot.updated_at,
            ended_at=snapshot.ended_at,
        )
        for result in snapshot.history:
            context.history.append(result)
            context._index[result.step_id] = result
        return context

    # ------------------------------------------------------------------
    # History
    async def commit(self, result: StepResult, index: Optional[int] = None) -> None:
        """Append ``result`` to history and notify observers."""
        self.history.append(result)
        self._index[result.step_id] = result
        self.updated_at = utcnow()
        if self.events is not None:
            await self.events.step_finished(result, index)

    def get_step_data(self, step_id: str) -> Optional[StepResult]:
        return self._index.get(step_id)

    # ------------------------------------------------------------------
    # Status transitions
    def mark_suspended(self, suspension: SuspensionMetadata) -> None:
        self.status = ExecutionStatus.SUSPENDED
        self.suspension = suspension
        self.updated_at = suspension.captured_at

    def mark_failed(self, error: ErrorInfo) -> None:
        self.status = ExecutionStatus.FAILED
        self.error = error
        self.ended_at = self.updated_at = utcnow()

    def mark_completed(self) -> None:
        self.status = ExecutionStatus.COMPLETED
        self.ended_at = self.updated_at = utcnow()

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(
            execution_id=self.execution_id,
            workflow_id=self.workflow.id,
            start_at=self.started_at,
            end_at=self.ended_at or self.updated_at,
            status=self.status,
            result=self.current_data if self.status == ExecutionStatus.COMPLETED else None,
            suspension=self.suspension,
            error=self.error,
        )


class StepContext:
    """Read-only view of the execution handed to step functions."""

    def __init__(self, execution: ExecutionContext, step: "StepDefinition") -> None:
        self._execution = execution
        self._step = step

    @property
    def execution_id(self) -> str:
        return self._execution.execution_id

    @property
    def workflow_id(self) -> str:
        return self._execution.workflow.id

    @property
    def step_id(self) -> str:
        return self._step.id

    @property
    def input(self) -> Any:
        """The original workflow input."""
        return self._execution.input

    @property
    def user_context(self) -> Dict[str, Any]:
        """Caller-supplied values for this execution, persisted with it.

        Steps may add entries; they are saved with the next snapshot.
        """
        return self._execution.user_context

    @property
    def resume_data(self) -> Any:
        """Data supplied on resume, visible only to the step the loop re-entered at."""
        if self._execution.resume_step_id == self._step.id:
            return self._execution.resume_data
        return None

    def get_step_data(self, step_id: str) -> Optional[StepResult]:
        return self._execution.get_step_data(step_id)

    def suspend(self, reason: Optional[str] = None, data: Any = None) -> Suspend:
        """Build a suspend outcome; return it from the step function to pause."""
        logger.debug(
            f"Step {self._step.id} requested suspension for execution_id={self.execution_id}"
        )
        return Suspend(
            reason=reason or DEFAULT_SUSPEND_REASON,
            resume_schema=self._step.resume_schema,
            data=data,
            step_id=self._step.id,
        )


def get_step_data(context: Any, step_id: str) -> Optional[StepResult]:
    """Look up the recorded result of ``step_id`` in ``context``'s execution.

    Works with both an :class:`ExecutionContext` and the :class:`StepContext`
    passed to step functions. Returns ``None`` for steps that have not run yet.
    """
    return context.get_step_data(step_id)
