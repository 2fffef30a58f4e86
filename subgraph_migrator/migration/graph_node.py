# subgraph_migrator/migration/graph_node.py
"""
graph-node integration: reading the node's TOML config and driving graphman.

With a config file the source pair does not have to be given explicitly:
the ``primary`` store is the source metadata cluster and the store named
after the deployment's shard is the source data cluster.
"""

import os
import re
import subprocess
import tomllib
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

import msgspec
from msgspec import Struct, field
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import ConfigurationError, DeploymentNotFoundError, ExternalToolError
from ..core.logging import LoggingMixin, MigratorLogger, log_with_context, INFO
from ..database.connection import DatabaseManager, SOURCE_METADATA
from ..database.deployments import find_active_deployment
from ..types.config import DatabaseConfig, MigrationConfig


PRIMARY_STORE = "primary"
GRAPHMAN_PANIC_EXIT = 101

ENV_REFERENCE = re.compile(r"\$\{(\w+)\}")

logger = MigratorLogger.get_logger('migration.graph_node')


def expand_env(value: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Expand ``${VAR}`` references; an unset variable is a configuration error."""
    environ = os.environ if environ is None else environ

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in environ:
            raise ConfigurationError(f"Environment variable {name} referenced in graph-node config is not set")
        return environ[name]

    return ENV_REFERENCE.sub(substitute, value)


class GraphNodeConfig(Struct):
    path: Path
    stores: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path, environ: Optional[Mapping[str, str]] = None) -> "GraphNodeConfig":
        try:
            with open(path, "rb") as f:
                raw = tomllib.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"graph-node config not found: {path}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid graph-node config {path}: {e}") from e

        stores = {}
        for name, store in raw.get("store", {}).items():
            if isinstance(store, dict) and "connection" in store:
                stores[name] = expand_env(store["connection"], environ)

        if PRIMARY_STORE not in stores:
            raise ConfigurationError(f"graph-node config {path} has no [store.{PRIMARY_STORE}] connection")
        return cls(path=Path(path), stores=stores)

    @property
    def primary_connection(self) -> str:
        return self.stores[PRIMARY_STORE]

    def shard_connection(self, shard: str) -> str:
        if shard not in self.stores:
            raise ConfigurationError(
                f"Shard '{shard}' not found in graph-node config {self.path} "
                f"(stores: {', '.join(sorted(self.stores))})"
            )
        return self.stores[shard]


def lookup_shard(primary: DatabaseManager, deployment_hash: str) -> str:
    try:
        with primary.get_connection() as conn:
            deployment = find_active_deployment(conn, deployment_hash)
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Cannot look up shard for {deployment_hash}: {e}") from e

    if deployment is None:
        raise DeploymentNotFoundError(deployment_hash)
    return deployment.shard


def derive_source_connections(config: MigrationConfig, deployment_hash: str) -> MigrationConfig:
    """Fill in the source pair from the graph-node config where it is unset."""
    if config.graph_node_config is None:
        return config

    node_config = GraphNodeConfig.load(config.graph_node_config)
    source_metadata_db = config.source_metadata_db or node_config.primary_connection
    source_data_db = config.source_data_db

    if not source_data_db:
        primary = DatabaseManager(DatabaseConfig(url=source_metadata_db, pool_size=1, max_overflow=0,
                                                 read_only=True), SOURCE_METADATA)
        primary.initialize()
        try:
            shard = lookup_shard(primary, deployment_hash)
        finally:
            primary.shutdown()
        source_data_db = node_config.shard_connection(shard)
        log_with_context(logger, INFO, "Derived source data connection from graph-node config",
                         deployment=deployment_hash, shard=shard)

    return msgspec.structs.replace(config, source_metadata_db=source_metadata_db,
                                   source_data_db=source_data_db)


class Graphman(LoggingMixin):
    """Pauses and resumes indexing of a deployment through ``graphman``."""

    def __init__(self, config_path: Path, binary: str = "graphman",
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.config_path = config_path
        self.binary = binary
        self.runner = runner

    def pause(self, deployment_hash: str) -> None:
        self._run("pause", deployment_hash)

    def resume(self, deployment_hash: str) -> None:
        self._run("resume", deployment_hash)

    def _run(self, action: str, deployment_hash: str) -> None:
        command = [self.binary, "--config", str(self.config_path), action, deployment_hash]
        try:
            result = self.runner(command, capture_output=True, text=True)
        except OSError as e:
            raise ExternalToolError(self.binary, -1, str(e)) from e

        if result.returncode == 0:
            self.log_info(f"graphman {action} succeeded", deployment=deployment_hash)
        elif result.returncode == GRAPHMAN_PANIC_EXIT:
            # graphman can panic on shutdown after the command itself went through
            self.log_warning(f"graphman {action} exited with {GRAPHMAN_PANIC_EXIT}, treating as done",
                             deployment=deployment_hash)
        else:
            raise ExternalToolError(f"graphman {action}", result.returncode, result.stderr or "")
