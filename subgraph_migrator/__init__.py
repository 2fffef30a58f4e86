# subgraph_migrator/__init__.py

from typing import Callable, Optional

from .core.config import load_migration_config
from .core.errors import MigrationError
from .core.logging import MigratorLogger, log_with_context
from .database.connection import ClusterSet, DatabaseManager
from .migration.orchestrator import DeploymentMigrator
from .types import DatabaseConfig, MigrationConfig, MigrationResult


def create_migrator(config: Optional[MigrationConfig] = None,
                    confirm: Optional[Callable] = None,
                    **overrides) -> DeploymentMigrator:
    """Build a migrator from ``config`` or, when omitted, from the environment."""
    config = config or load_migration_config(**overrides)
    return DeploymentMigrator(config, confirm=confirm)
