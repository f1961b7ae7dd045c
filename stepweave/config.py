from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_CONFIG_PATH


class EngineConfig(BaseModel):
    """Execution engine settings."""

    default_step_timeout: Optional[float] = None
    persist_terminal_states: bool = True


class StepweaveConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> StepweaveConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWEAVE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWEAVE_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepweaveConfig(**data)
    else:
        config = StepweaveConfig()

    env_db_url = os.getenv("STEPWEAVE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
