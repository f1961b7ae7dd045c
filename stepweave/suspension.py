"""Capture and restoration of execution state across a durable boundary."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_SIGNAL_REASON
from .context import ExecutionContext
from .contracts import ExecutionStatus, utcnow
from .errors import (
    InvalidResumeStateError,
    ResumeSchemaMismatchError,
    SuspensionNotFoundError,
    WorkflowError,
)
from .persistence import ExecutionSnapshot, SnapshotRepository

if TYPE_CHECKING:
    from .chain import WorkflowDefinition
    from .steps import StepDefinition

logger = logging.getLogger(__name__)


class SuspendSignal:
    """Request that a running execution pause at its next step boundary."""

    def __init__(self) -> None:
        self._requested = False
        self._reason: Optional[str] = None

    def suspend(self, reason: Optional[str] = None) -> None:
        self._reason = reason or DEFAULT_SIGNAL_REASON
        self._requested = True

    @property
    def is_suspended(self) -> bool:
        return self._requested

    @property
    def reason(self) -> Optional[str]:
        return self._reason


def merge_resume_data(current: Any, resume_data: Any) -> Any:
    """Fold resume data into the current data.

    Mappings are updated key by key, anything else is replaced; ``None``
    leaves the current data untouched.
    """
    if resume_data is None:
        return current
    if isinstance(resume_data, BaseModel):
        resume_data = resume_data.model_dump()
    if isinstance(current, BaseModel):
        current = current.model_dump()
    if isinstance(current, Mapping) and isinstance(resume_data, Mapping):
        return {**current, **resume_data}
    return resume_data


class SuspensionController:
    """Persist execution contexts and rebuild them for resumption."""

    def __init__(self, repository: SnapshotRepository) -> None:
        self._repository = repository
        self._claims: Dict[str, asyncio.Lock] = {}

    @property
    def repository(self) -> SnapshotRepository:
        return self._repository

    async def capture(self, context: ExecutionContext) -> ExecutionSnapshot:
        """Serialize ``context`` and store it in one repository write."""
        snapshot = ExecutionSnapshot.from_context(context)
        await self._repository.save(context.execution_id, snapshot)
        logger.debug(
            f"Captured snapshot for execution_id={context.execution_id} status={snapshot.status.value}"
        )
        return snapshot

    async def suspend(self, context: ExecutionContext) -> ExecutionSnapshot:
        if context.status != ExecutionStatus.SUSPENDED or context.suspension is None:
            raise InvalidResumeStateError(
                f"Execution {context.execution_id} is not suspended",
                execution_id=context.execution_id,
            )
        snapshot = await self.capture(context)
        logger.info(
            f"Suspended execution_id={context.execution_id} at step "
            f"{context.suspension.step_id}: {context.suspension.reason}"
        )
        return snapshot

    async def load(self, execution_id: str) -> ExecutionSnapshot:
        snapshot = await self._repository.load(execution_id)
        if snapshot is None:
            raise SuspensionNotFoundError(
                f"No snapshot found for execution {execution_id}",
                execution_id=execution_id,
            )
        return snapshot

    async def resume(
        self,
        workflow: "WorkflowDefinition",
        execution_id: str,
        resume_data: Any = None,
        *,
        step_id: Optional[str] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> ExecutionContext:
        """Rebuild a suspended execution as a new running context.

        The returned context's ``cursor`` points at the step after the
        suspended one, or at ``step_id`` when given. ``user_context`` entries are
        merged over the persisted ones. The stored snapshot is
        claimed (marked running) before returning, so a second resume of the
        same execution fails with :class:`InvalidResumeStateError`.
        """
        lock = self._claims.setdefault(execution_id, asyncio.Lock())
        try:
            async with lock:
                snapshot = await self.load(execution_id)
                context = self._restore(workflow, snapshot, resume_data, step_id)
                if user_context:
                    context.user_context.update(user_context)
                await self.capture(context)
        finally:
            if not lock.locked():
                self._claims.pop(execution_id, None)
        logger.info(
            f"Resuming execution_id={execution_id} of workflow {workflow.id} at index {context.cursor}"
        )
        return context

    def _restore(
        self,
        workflow: "WorkflowDefinition",
        snapshot: ExecutionSnapshot,
        resume_data: Any,
        step_id: Optional[str],
    ) -> ExecutionContext:
        execution_id = snapshot.execution_id
        if snapshot.workflow_id != workflow.id:
            raise WorkflowError(
                f"Execution {execution_id} belongs to workflow {snapshot.workflow_id}, not {workflow.id}",
                execution_id=execution_id,
            )
        if snapshot.status != ExecutionStatus.SUSPENDED or snapshot.suspension is None:
            raise InvalidResumeStateError(
                f"Cannot resume execution {execution_id} in {snapshot.status.value} state",
                execution_id=execution_id,
            )

        suspension = snapshot.suspension
        target: Optional["StepDefinition"] = None
        if step_id is not None:
            cursor = workflow.index_of(step_id)
            target = workflow.steps[cursor]
        else:
            cursor = suspension.next_step_index
            if suspension.origin == "step" and suspension.step_id:
                target = workflow.find_step(suspension.step_id)
            elif suspension.origin == "signal" and cursor < len(workflow.steps):
                # The boundary step never ran; it is the one that receives the data.
                target = workflow.steps[cursor]

        schema = workflow.resume_schema
        if target is not None and target.resume_schema is not None:
            schema = target.resume_schema
        if resume_data is not None and schema is not None:
            try:
                resume_data = TypeAdapter(schema).validate_python(resume_data)
            except PydanticValidationError as e:
                raise ResumeSchemaMismatchError(
                    f"Resume data for execution {execution_id} does not match the expected schema: {e}",
                    errors=e.errors(),
                    step_id=target.id if target is not None else None,
                    execution_id=execution_id,
                ) from e

        context = ExecutionContext.from_snapshot(snapshot, workflow)
        context.current_data = merge_resume_data(context.current_data, resume_data)
        context.resume_data = resume_data
        context.cursor = cursor
        if cursor < len(workflow.steps):
            context.resume_step_id = workflow.steps[cursor].id
        context.status = ExecutionStatus.RUNNING
        context.suspension = None
        context.ended_at = None
        context.updated_at = utcnow()
        return context
