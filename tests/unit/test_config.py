"""Tests for configuration loading."""

from stepweave.config import load_config
from stepweave.persistence import (
    InMemorySnapshotRepository,
    SQLiteSnapshotRepository,
    get_repository,
)


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
engine:
  default_step_timeout: 2.5
  persist_terminal_states: false
database_url: sqlite://wf.db
"""
    )
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(config_path))
    monkeypatch.delenv("STEPWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.default_step_timeout == 2.5
    assert config.engine.persist_terminal_states is False
    assert config.database_url == "sqlite://wf.db"


def test_load_config_defaults_when_file_missing(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.engine.default_step_timeout is None
    assert config.engine.persist_terminal_states is True
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(config_path))
    monkeypatch.setenv("STEPWEAVE_DATABASE_URL", "sqlite://from-env.db")

    assert load_config().database_url == "sqlite://from-env.db"


def test_get_repository_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"database_url: sqlite://{tmp_path / 'snapshots.db'}\n")
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(config_path))
    monkeypatch.delenv("STEPWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    repo = get_repository(config=load_config())
    assert isinstance(repo, SQLiteSnapshotRepository)
    assert repo.db_path == str(tmp_path / "snapshots.db")
    repo.close()


def test_get_repository_defaults_to_memory(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPWEAVE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPWEAVE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert isinstance(get_repository(config=load_config()), InMemorySnapshotRepository)
