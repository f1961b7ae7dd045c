"""Error taxonomy for workflow building, execution and resumption."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .contracts import ExecutionResult


class WorkflowError(Exception):
    """Base class for all stepweave errors."""

    kind = "WorkflowError"

    def __init__(
        self,
        message: str,
        *,
        step_id: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step_id = step_id
        self.execution_id = execution_id
        self.result: Optional["ExecutionResult"] = None


class DuplicateStepIdError(WorkflowError):
    """Raised by the chain builder when a step id is already taken."""

    kind = "DuplicateStepIdError"


class ValidationError(WorkflowError):
    """Agent output, workflow input/result or resume data has the wrong shape."""

    kind = "ValidationError"

    def __init__(self, message: str, *, errors: Optional[list[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class ResumeSchemaMismatchError(ValidationError):
    kind = "ResumeSchemaMismatchError"


class StepExecutionError(WorkflowError):
    """Wraps an exception raised by a step's executor function."""

    kind = "StepExecutionError"


class StepTimeoutError(WorkflowError, TimeoutError):
    kind = "Timeout"


class SerializationError(WorkflowError):
    """Execution state could not be converted to JSON for persistence."""

    kind = "SerializationError"


class SuspensionNotFoundError(WorkflowError, LookupError):
    """No snapshot exists for the requested execution id."""

    kind = "SuspensionNotFoundError"


class InvalidResumeStateError(WorkflowError):
    """The execution exists but is not suspended."""

    kind = "InvalidResumeStateError"


class StepNotFoundError(WorkflowError, LookupError):
    kind = "StepNotFoundError"


class WorkflowNotFoundError(WorkflowError, LookupError):
    kind = "WorkflowNotFoundError"


__all__ = [
    "WorkflowError",
    "DuplicateStepIdError",
    "ValidationError",
    "ResumeSchemaMismatchError",
    "StepExecutionError",
    "StepTimeoutError",
    "SerializationError",
    "SuspensionNotFoundError",
    "InvalidResumeStateError",
    "StepNotFoundError",
    "WorkflowNotFoundError",
]
