"""Persistence layer for stepweave execution snapshots."""

from __future__ import annotations

from typing import Optional

from ..config import StepweaveConfig, load_config
from .inmemory import InMemorySnapshotRepository
from .models import ExecutionSnapshot
from .repository import SnapshotRepository
from .sqlite import SQLiteSnapshotRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresSnapshotRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresSnapshotRepository = None  # type: ignore

_repository_instance: SnapshotRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepweaveConfig] = None
) -> SnapshotRepository:
    """Factory function to obtain a snapshot repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``STEPWEAVE_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = database_url or config.database_url

    if not database_url:
        _repository_instance = InMemorySnapshotRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteSnapshotRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresSnapshotRepository is None:
            raise RuntimeError("Postgres support not available, install stepweave[postgres]")
        _repository_instance = PostgresSnapshotRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ExecutionSnapshot",
    "SnapshotRepository",
    "InMemorySnapshotRepository",
    "SQLiteSnapshotRepository",
    "PostgresSnapshotRepository",
    "get_repository",
]
