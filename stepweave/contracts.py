"""Core contracts for stepweave workflows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .errors import WorkflowError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepKind(str, Enum):
    """Closed set of step variants understood by the engine."""

    THEN = "then"
    AGENT = "agent"
    WHEN = "when"
    ALL = "all"
    RACE = "race"
    TAP = "tap"


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"
    SUSPENDED = "suspended"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorInfo(BaseModel):
    """Serializable description of a step or workflow failure."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: str
    message: str
    step_id: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        return cls(
            kind=getattr(exc, "kind", type(exc).__name__),
            message=str(exc),
            step_id=getattr(exc, "step_id", None),
        )


class StepResult(BaseModel):
    """Immutable record of one step execution within an execution."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    kind: StepKind
    status: StepStatus
    input: Any = None
    output: Any = None
    error: Optional[ErrorInfo] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: datetime = Field(default_factory=utcnow)


class SuspensionMetadata(BaseModel):
    """Where and why an execution was paused.

    ``origin`` is ``"step"`` when a step returned a suspend outcome and
    ``"signal"`` when an external suspend request stopped the loop at a step
    boundary. ``next_step_index`` is the top-level index a plain resume
    continues from.
    """

    step_id: Optional[str] = None
    reason: str
    captured_at: datetime = Field(default_factory=utcnow)
    next_step_index: int = 0
    origin: str = "step"
    suspend_data: Any = None
    resume_schema: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Step outcomes


@dataclass(frozen=True)
class Continue:
    """Proceed with ``data`` as the new current data."""

    data: Any
    skipped: bool = False


@dataclass(frozen=True)
class Suspend:
    """Pause the execution after the current step."""

    reason: str
    resume_schema: Any = None
    data: Any = None
    step_id: Optional[str] = None


@dataclass(frozen=True)
class Fail:
    error: WorkflowError


Outcome = Union[Continue, Suspend, Fail]


class ExecutionResult(BaseModel):
    """What a run, resume or stream hands back to its caller."""

    execution_id: str
    workflow_id: str
    start_at: datetime
    end_at: Optional[datetime] = None
    status: ExecutionStatus
    result: Any = None
    suspension: Optional[SuspensionMetadata] = None
    error: Optional[ErrorInfo] = None


class WorkflowStreamEvent(BaseModel):
    """One step or workflow transition emitted by a streaming execution."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    execution_id: str
    from_: str = Field(alias="from")
    status: str
    input: Any = None
    output: Any = None
    timestamp: datetime = Field(default_factory=utcnow)
    step_index: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[ErrorInfo] = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with wire field names (``from``, ``executionId``...)."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return {to_camel(key): value for key, value in data.items()}
