"""stepweave: composable, suspendable workflows for AI agents."""

from .chain import ChainBuilder, WorkflowDefinition, create_chain, create_workflow
from .context import ExecutionContext, StepContext, get_step_data
from .contracts import (
    Continue,
    ExecutionResult,
    ExecutionStatus,
    Fail,
    StepKind,
    StepResult,
    StepStatus,
    Suspend,
    SuspensionMetadata,
    WorkflowStreamEvent,
)
from .errors import (
    DuplicateStepIdError,
    InvalidResumeStateError,
    ResumeSchemaMismatchError,
    SerializationError,
    StepExecutionError,
    StepNotFoundError,
    StepTimeoutError,
    SuspensionNotFoundError,
    ValidationError,
    WorkflowError,
    WorkflowNotFoundError,
)
from .execute import WorkflowExecutor
from .observers import StepEvent, WorkflowEvent, WorkflowObserver
from .persistence import get_repository
from .registry import REGISTRY, register_workflow
from .steps import StepDefinition, agent, all_of, race, tap, then, when
from .suspension import SuspendSignal, SuspensionController

__version__ = "0.1.0"
__all__ = [
    "ChainBuilder",
    "WorkflowDefinition",
    "create_chain",
    "create_workflow",
    "StepDefinition",
    "then",
    "agent",
    "when",
    "all_of",
    "race",
    "tap",
    "ExecutionContext",
    "StepContext",
    "get_step_data",
    "Continue",
    "Suspend",
    "Fail",
    "ExecutionResult",
    "ExecutionStatus",
    "StepKind",
    "StepResult",
    "StepStatus",
    "SuspensionMetadata",
    "WorkflowStreamEvent",
    "WorkflowExecutor",
    "SuspendSignal",
    "SuspensionController",
    "StepEvent",
    "WorkflowEvent",
    "WorkflowObserver",
    "get_repository",
    "REGISTRY",
    "register_workflow",
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
