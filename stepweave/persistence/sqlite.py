"""SQLite implementation of the snapshot repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from .models import ExecutionSnapshot
from .repository import SnapshotRepository


class SQLiteSnapshotRepository(SnapshotRepository):
    """Persist execution snapshots using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_snapshots (
                    execution_id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    snapshot TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        # One statement per transaction; ``with conn`` commits or rolls back.
        with self._lock, self._conn:
            self._conn.execute(query, params)

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def save(self, execution_id: str, snapshot: ExecutionSnapshot) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO execution_snapshots (execution_id, workflow_id, status, snapshot, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                workflow_id = excluded.workflow_id,
                status = excluded.status,
                snapshot = excluded.snapshot,
                updated_at = excluded.updated_at
            """,
            execution_id,
            snapshot.workflow_id,
            snapshot.status.value,
            snapshot.to_json(),
            snapshot.updated_at.isoformat(),
        )

    async def load(self, execution_id: str) -> ExecutionSnapshot | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT snapshot FROM execution_snapshots WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        return ExecutionSnapshot.from_json(row["snapshot"])

    async def delete(self, execution_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM execution_snapshots WHERE execution_id = ?",
            execution_id,
        )

    async def list_snapshots(
        self, workflow_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[ExecutionSnapshot]:
        query = "SELECT snapshot FROM execution_snapshots"
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(str(getattr(status, "value", status)))
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [ExecutionSnapshot.from_json(r["snapshot"]) for r in rows]
