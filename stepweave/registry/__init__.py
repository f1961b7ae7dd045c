"""Workflow registry and active execution tracking."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from ..errors import WorkflowNotFoundError

if TYPE_CHECKING:
    from ..chain import WorkflowDefinition
    from ..suspension import SuspendSignal

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Workflow definitions by id, plus the suspend signals of running executions.

    Handlers resolve a ``workflowId`` through :meth:`get`; the suspend handler
    reaches an in-flight execution through :meth:`signal_for`.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, "WorkflowDefinition"] = {}
        self._signals: Dict[str, "SuspendSignal"] = {}

    def register(self, workflow: "WorkflowDefinition") -> "WorkflowDefinition":
        if workflow.id in self._workflows and self._workflows[workflow.id] is not workflow:
            logger.warning(f"Replacing registered workflow {workflow.id}")
        self._workflows[workflow.id] = workflow
        return workflow

    def unregister(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)

    def get(self, workflow_id: str) -> "WorkflowDefinition":
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' is not registered") from None

    def list(self) -> List["WorkflowDefinition"]:
        return list(self._workflows.values())

    # Active executions
    def track(self, execution_id: str, signal: "SuspendSignal") -> None:
        self._signals[execution_id] = signal

    def untrack(self, execution_id: str) -> None:
        self._signals.pop(execution_id, None)

    def signal_for(self, execution_id: str) -> Optional["SuspendSignal"]:
        return self._signals.get(execution_id)

    def clear(self) -> None:
        self._workflows.clear()
        self._signals.clear()


REGISTRY = WorkflowRegistry()


def register_workflow(workflow: "WorkflowDefinition") -> "WorkflowDefinition":
    """Add ``workflow`` to the process-wide ``REGISTRY``."""
    return REGISTRY.register(workflow)


__all__ = ["WorkflowRegistry", "REGISTRY", "register_workflow"]
