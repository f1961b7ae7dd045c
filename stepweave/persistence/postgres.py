"""PostgreSQL implementation of the snapshot repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from .models import ExecutionSnapshot
from .repository import SnapshotRepository


class PostgresSnapshotRepository(SnapshotRepository):
    """Persist execution snapshots using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_snapshots (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                snapshot JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save(self, execution_id: str, snapshot: ExecutionSnapshot) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO execution_snapshots (execution_id, workflow_id, status, snapshot, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (execution_id) DO UPDATE SET
                    workflow_id = EXCLUDED.workflow_id,
                    status = EXCLUDED.status,
                    snapshot = EXCLUDED.snapshot,
                    updated_at = EXCLUDED.updated_at
                """,
                execution_id,
                snapshot.workflow_id,
                snapshot.status.value,
                snapshot.to_json(),
                snapshot.updated_at,
            )
        finally:
            await conn.close()

    async def load(self, execution_id: str) -> ExecutionSnapshot | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT snapshot FROM execution_snapshots WHERE execution_id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return ExecutionSnapshot.from_json(row["snapshot"])

    async def delete(self, execution_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "DELETE FROM execution_snapshots WHERE execution_id = $1",
                execution_id,
            )
        finally:
            await conn.close()

    async def list_snapshots(
        self, workflow_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[ExecutionSnapshot]:
        query = "SELECT snapshot FROM execution_snapshots"
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if status is not None:
            params.append(str(getattr(status, "value", status)))
            clauses.append(f"status = ${len(params)}")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [ExecutionSnapshot.from_json(r["snapshot"]) for r in rows]
