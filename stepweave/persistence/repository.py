"""Repository abstraction for execution snapshot persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import ExecutionSnapshot


class SnapshotRepository(Protocol):
    """Protocol for snapshot persistence backends.

    ``save`` must be atomic: a concurrent ``load`` of the same execution sees
    either the previous snapshot or the new one, never a mix.
    """

    async def save(self, execution_id: str, snapshot: ExecutionSnapshot) -> None:
        """Persist ``snapshot``, replacing any previous one."""

    async def load(self, execution_id: str) -> ExecutionSnapshot | None:
        """Return the snapshot for ``execution_id`` if any."""

    async def delete(self, execution_id: str) -> None:
        """Remove the snapshot for ``execution_id``."""

    async def list_snapshots(
        self, workflow_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[ExecutionSnapshot]:
        """Return stored snapshots, optionally filtered."""
