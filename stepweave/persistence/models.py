"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field
from pydantic_core import PydanticSerializationError

from ..constants import SNAPSHOT_SPEC_VERSION
from ..contracts import (
    ErrorInfo,
    ExecutionStatus,
    StepResult,
    SuspensionMetadata,
    utcnow,
)
from ..errors import SerializationError

if TYPE_CHECKING:
    from ..context import ExecutionContext


class ExecutionSnapshot(BaseModel):
    """Serialized form of an execution context."""

    execution_id: str
    workflow_id: str
    workflow_name: Optional[str] = None
    status: ExecutionStatus
    input: Any = None
    current_data: Any = None
    user_context: dict[str, Any] = Field(default_factory=dict)
    history: list[StepResult] = Field(default_factory=list)
    suspension: Optional[SuspensionMetadata] = None
    error: Optional[ErrorInfo] = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    spec_version: str = SNAPSHOT_SPEC_VERSION

    @classmethod
    def from_context(cls, context: "ExecutionContext") -> "ExecutionSnapshot":
        # Round-trip through JSON so the snapshot shares no objects with the
        # live context.
        snapshot = cls(
            execution_id=context.execution_id,
            workflow_id=context.workflow.id,
            workflow_name=context.workflow.name,
            status=context.status,
            input=context.input,
            current_data=context.current_data,
            user_context=context.user_context,
            history=list(context.history),
            suspension=context.suspension,
            error=context.error,
            started_at=context.started_at,
            updated_at=context.updated_at,
            ended_at=context.ended_at,
        )
        try:
            payload = snapshot.to_json()
        except PydanticSerializationError as e:
            raise SerializationError(
                f"Execution {context.execution_id} holds data that cannot be stored as JSON: {e}",
                execution_id=context.execution_id,
            ) from e
        return cls.from_json(payload)

    def to_json(self) -> str:
        """Serialize snapshot to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionSnapshot":
        """Deserialize snapshot from JSON."""
        return cls.model_validate_json(data)
