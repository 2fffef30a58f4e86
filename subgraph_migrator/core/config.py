# subgraph_migrator/core/config.py
"""
Environment-driven configuration.

Only the CLI layer reads the environment; components receive a
``MigrationConfig``.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from ..types.config import MigrationConfig


ENV_SOURCE_METADATA = "SOURCE_METADATA_DB"
ENV_SOURCE_DATA = "SOURCE_DATA_DB"
ENV_TARGET_METADATA = "TARGET_METADATA_DB"
ENV_TARGET_DATA = "TARGET_DATA_DB"
ENV_OVERRIDE_SHARD = "OVERRIDE_SHARD"
ENV_TEMP_DIR = "TEMP_DIR"
ENV_GRAPH_NODE_CONFIG = "GRAPH_NODE_CONFIG"


def load_environment(env_file: Optional[Path] = None) -> None:
    """Load a .env file without overriding variables already set."""
    load_dotenv(env_file or find_dotenv(usecwd=True), override=False)


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


def load_migration_config(environ: Optional[Mapping[str, str]] = None, **overrides) -> MigrationConfig:
    """Build a ``MigrationConfig`` from the environment.

    Keyword overrides that are not None (CLI options) win over the
    environment.
    """
    env = os.environ if environ is None else environ

    values = {
        "source_metadata_db": env.get(ENV_SOURCE_METADATA) or None,
        "source_data_db": env.get(ENV_SOURCE_DATA) or None,
        "target_metadata_db": env.get(ENV_TARGET_METADATA) or None,
        "target_data_db": env.get(ENV_TARGET_DATA) or None,
        "override_shard": env.get(ENV_OVERRIDE_SHARD) or None,
        "temp_dir": _optional_path(env.get(ENV_TEMP_DIR)),
        "graph_node_config": _optional_path(env.get(ENV_GRAPH_NODE_CONFIG)),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return MigrationConfig(**values)
