# subgraph_migrator/database/connection.py

from typing import Dict, Generator, Iterator, Optional
from contextlib import contextmanager

from sqlalchemy import create_engine, Connection, Engine, text
from sqlalchemy.pool import QueuePool

from ..core.errors import ConnectivityError
from ..core.logging import MigratorLogger, log_with_context, INFO, DEBUG, ERROR
from ..types.config import DatabaseConfig, MigrationConfig


SOURCE_METADATA = "source_metadata"
SOURCE_DATA = "source_data"
TARGET_METADATA = "target_metadata"
TARGET_DATA = "target_data"

ROLES = (SOURCE_METADATA, SOURCE_DATA, TARGET_METADATA, TARGET_DATA)


class DatabaseManager:
    def __init__(self, config: DatabaseConfig, role: str = "database", engine: Optional[Engine] = None):
        if not config:
            raise ValueError("DatabaseConfig is required")

        self.config = config
        self.role = role
        self.logger = MigratorLogger.get_logger(f'database.{role}')
        self._engine = engine

        log_with_context(self.logger, DEBUG, "DatabaseManager initialized",
                         destination=role, db_url_host=self._extract_host_from_url(config.url))

    def _extract_host_from_url(self, url: str) -> str:
        try:
            if '@' in url and '/' in url:
                after_at = url.split('@')[1]
                host_part = after_at.split('/')[0]
                return host_part
            return "unknown"
        except Exception:
            return "unknown"

    def initialize(self) -> None:
        if self._engine is not None:
            self.logger.debug("Database already initialized")
            return

        try:
            log_with_context(self.logger, INFO, "Initializing database engine", destination=self.role)

            engine = create_engine(
                self.config.sqlalchemy_url,
                poolclass=QueuePool,
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=30,
                pool_pre_ping=True,
                echo=False,
            )
            if self.config.read_only:
                engine = engine.execution_options(postgresql_readonly=True)
            self._engine = engine

            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))

            log_with_context(self.logger, INFO, "Database initialized successfully",
                             destination=self.role, read_only=self.config.read_only)

        except Exception as e:
            log_with_context(self.logger, ERROR, "Failed to initialize database",
                             destination=self.role,
                             error=str(e),
                             exception_type=type(e).__name__)
            self._engine = None
            raise ConnectivityError(self.role, str(e)) from e

    def shutdown(self) -> None:
        if self._engine is None:
            return

        try:
            self._engine.dispose()
            self._engine = None
            log_with_context(self.logger, DEBUG, "Database shutdown completed", destination=self.role)

        except Exception as e:
            log_with_context(self.logger, ERROR, "Error during database shutdown",
                             destination=self.role,
                             error=str(e),
                             exception_type=type(e).__name__)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine

    @contextmanager
    def get_connection(self) -> Generator[Connection, None, None]:
        """Connection for reads; anything left uncommitted is rolled back on exit."""
        with self.engine.connect() as conn:
            yield conn

    @contextmanager
    def get_transaction(self) -> Generator[Connection, None, None]:
        with self.engine.connect() as conn:
            trans = conn.begin()
            try:
                yield conn
                trans.commit()
                log_with_context(self.logger, DEBUG, "Database transaction committed", destination=self.role)
            except Exception as e:
                trans.rollback()
                log_with_context(self.logger, ERROR, "Database transaction rolled back",
                                 destination=self.role,
                                 error=str(e),
                                 exception_type=type(e).__name__)
                raise


class ClusterSet:
    """
    The four endpoints of a migration: source and target metadata and data clusters.

    Source managers are read-only: every session they open is a read-only
    transaction, so no write can reach a source cluster.
    """

    def __init__(self, managers: Dict[str, DatabaseManager]):
        missing = [role for role in ROLES if role not in managers]
        if missing:
            raise ValueError(f"ClusterSet is missing managers for: {', '.join(missing)}")
        self._managers = managers
        self.logger = MigratorLogger.get_logger('database.clusters')

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "ClusterSet":
        urls = {
            SOURCE_METADATA: config.source_metadata_db,
            SOURCE_DATA: config.source_data_db,
            TARGET_METADATA: config.target_metadata_db,
            TARGET_DATA: config.target_data_db,
        }
        managers = {}
        for role, url in urls.items():
            db_config = DatabaseConfig(url=url, pool_size=2, max_overflow=2,
                                       read_only=role.startswith("source"))
            managers[role] = DatabaseManager(db_config, role)
        return cls(managers)

    @property
    def source_metadata(self) -> DatabaseManager:
        return self._managers[SOURCE_METADATA]

    @property
    def source_data(self) -> DatabaseManager:
        return self._managers[SOURCE_DATA]

    @property
    def target_metadata(self) -> DatabaseManager:
        return self._managers[TARGET_METADATA]

    @property
    def target_data(self) -> DatabaseManager:
        return self._managers[TARGET_DATA]

    def targets(self) -> Iterator[DatabaseManager]:
        """Target destinations in write order: data cluster first, then metadata."""
        yield self.target_data
        yield self.target_metadata

    def validate_connectivity(self) -> None:
        """Initialize every endpoint, failing on the first unreachable one."""
        for role in ROLES:
            self._managers[role].initialize()
        log_with_context(self.logger, INFO, "All database connections validated")

    def shutdown(self) -> None:
        for manager in self._managers.values():
            manager.shutdown()
