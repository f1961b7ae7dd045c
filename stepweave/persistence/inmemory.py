"""In-memory implementation of the snapshot repository."""

from __future__ import annotations

from typing import Dict, Optional

from .models import ExecutionSnapshot
from .repository import SnapshotRepository


class InMemorySnapshotRepository(SnapshotRepository):
    """Store snapshots in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Snapshots are kept as JSON text and
    swapped in with a single assignment, so a reader never observes a
    partially written snapshot or shares objects with the store.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, str] = {}

    # ------------------------------------------------------------------
    async def save(self, execution_id: str, snapshot: ExecutionSnapshot) -> None:
        self._snapshots[execution_id] = snapshot.to_json()

    async def load(self, execution_id: str) -> ExecutionSnapshot | None:
        payload = self._snapshots.get(execution_id)
        if payload is None:
            return None
        return ExecutionSnapshot.from_json(payload)

    async def delete(self, execution_id: str) -> None:
        self._snapshots.pop(execution_id, None)

    async def list_snapshots(
        self, workflow_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[ExecutionSnapshot]:
        snapshots = [ExecutionSnapshot.from_json(p) for p in self._snapshots.values()]
        return [
            s
            for s in snapshots
            if (workflow_id is None or s.workflow_id == workflow_id)
            and (status is None or s.status == status)
        ]
