# subgraph_migrator/migration/orchestrator.py
"""
Single-deployment migration.

    VALIDATING -> CONFIRMED -> MIGRATING_METADATA -> MIGRATING_DATA -> VERIFYING
        -> SUCCEEDED | COMPLETED_WITH_WARNINGS

FAILED and CANCELLED are terminal from any earlier state. Nothing written to
a target is reverted; a failure after confirmation logs the statements
needed to clean the target up by hand.
"""

import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import (
    ConfigurationError,
    ConnectivityError,
    DeploymentNotFoundError,
    DuplicateDeploymentError,
    MigrationError,
)
from ..core.logging import LoggingMixin
from ..database.connection import ClusterSet
from ..database.deployments import count_deployments, find_active_deployment
from ..database.tables import DEPLOYMENT_SCHEMAS_TABLE, REPLICATION_ORDER, KeyKind
from ..types.config import MigrationConfig
from ..types.records import DeploymentSchema, MigrationPlan
from ..types.results import MigrationResult, MigrationState
from .allocator import IdentifierAllocator
from .graph_node import Graphman, derive_source_connections
from .metadata import MetadataReplicator
from .transport import SchemaTransporter
from .verifier import ConsistencyVerifier


ConfirmFn = Callable[[DeploymentSchema, str], bool]


def default_temp_dir() -> Path:
    return Path(f"/tmp/subgraph_migration_{os.getpid()}")


def cleanup_statements(plan: MigrationPlan) -> List[str]:
    """SQL that removes a partially migrated deployment from the targets."""
    statements = [f"DROP SCHEMA IF EXISTS {plan.target_namespace} CASCADE;  -- target data"]
    for spec in reversed(REPLICATION_ORDER):
        if spec.key_kind is KeyKind.DEPLOYMENT_ID:
            statements.append(f"DELETE FROM {spec.qualified_name} WHERE {spec.key_column} = {plan.target_id};")
        elif spec.key_kind is KeyKind.DEPLOYMENT_HASH:
            statements.append(
                f"DELETE FROM {spec.qualified_name} WHERE {spec.key_column} = '{plan.deployment_hash}';"
            )
    statements.append(f"DELETE FROM {DEPLOYMENT_SCHEMAS_TABLE} WHERE id = {plan.target_id};  -- target metadata")
    return statements


class DeploymentMigrator(LoggingMixin):

    def __init__(self,
                 config: MigrationConfig,
                 clusters: Optional[ClusterSet] = None,
                 confirm: Optional[ConfirmFn] = None,
                 allocator: Optional[IdentifierAllocator] = None,
                 graphman: Optional[Graphman] = None):
        self.config = config
        self.clusters = clusters
        self.confirm = confirm
        self.allocator = allocator or IdentifierAllocator()
        if graphman is None and config.pause_source and config.graph_node_config:
            graphman = Graphman(config.graph_node_config, config.graphman_bin)
        self.graphman = graphman
        self._owns_clusters = clusters is None

    def run(self, deployment_hash: str) -> MigrationResult:
        result = MigrationResult(deployment_hash=deployment_hash, state=MigrationState.VALIDATING)
        self.log_info("Starting deployment migration", deployment=deployment_hash,
                      outcome=result.state.value)
        try:
            with self._workdir(deployment_hash) as workdir:
                return self._run(result, workdir)
        finally:
            if self._owns_clusters and self.clusters is not None:
                self.clusters.shutdown()

    def _run(self, result: MigrationResult, workdir: Path) -> MigrationResult:
        deployment_hash = result.deployment_hash
        try:
            source = self.preflight(deployment_hash)
        except MigrationError as e:
            return self._fail(result, e)

        target_shard = self.config.override_shard or source.shard
        if self.config.override_shard:
            self.log_info(f"Using override shard {target_shard} (source was {source.shard})",
                          deployment=deployment_hash, shard=target_shard)

        if not self.config.assume_yes and self.confirm is not None and not self.confirm(source, target_shard):
            self._transition(result, MigrationState.CANCELLED)
            self.log_info("Migration cancelled by user", deployment=deployment_hash)
            return result

        self._transition(result, MigrationState.CONFIRMED)
        paused = False
        try:
            if self.graphman is not None:
                self.graphman.pause(deployment_hash)
                paused = True

            self._transition(result, MigrationState.MIGRATING_METADATA)
            identifier = self.allocator.allocate(self.clusters.target_metadata)
            plan = MigrationPlan(deployment_hash=deployment_hash, source=source,
                                 target=source.for_target(identifier, target_shard))
            result.plan = plan
            result.replication = MetadataReplicator(self.clusters).replicate(plan)

            self._transition(result, MigrationState.MIGRATING_DATA)
            result.transfer = SchemaTransporter(self.clusters, self.config).transfer(plan, workdir)

            self._transition(result, MigrationState.VERIFYING)
            result.verification = ConsistencyVerifier(self.clusters).verify(plan, result.transfer.table_names)
        except MigrationError as e:
            self._fail(result, e)
            if result.plan is not None:
                self._log_cleanup(result.plan)
            return result
        except Exception as e:
            # targets may already hold writes; surface them as a failed run
            self.logger.exception(f"Unexpected error during {result.state.value}")
            self._fail(result, MigrationError(f"Unexpected {type(e).__name__}: {e}"))
            if result.plan is not None:
                self._log_cleanup(result.plan)
            return result
        finally:
            if paused:
                self._resume(deployment_hash)

        if result.verification.passed:
            self._transition(result, MigrationState.SUCCEEDED)
            self.log_info("Migration completed successfully", deployment=deployment_hash,
                          target_id=plan.target_id, namespace=plan.target_namespace,
                          rows=result.transfer.total_rows)
        else:
            self._transition(result, MigrationState.COMPLETED_WITH_WARNINGS)
            self.log_error("Migration completed with consistency check failures; verify the migration manually",
                           deployment=deployment_hash, target_id=plan.target_id)
        return result

    def preflight(self, deployment_hash: str) -> DeploymentSchema:
        """Checks that run before anything is written to a target."""
        if self.clusters is None:
            config = derive_source_connections(self.config, deployment_hash)
            missing = config.missing_connections()
            if missing:
                raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
            self.config = config
            self.clusters = ClusterSet.from_config(config)

        self.clusters.validate_connectivity()

        try:
            with self.clusters.source_metadata.get_connection() as conn:
                source = find_active_deployment(conn, deployment_hash)
        except SQLAlchemyError as e:
            raise ConnectivityError(self.clusters.source_metadata.role, str(e)) from e
        if source is None:
            raise DeploymentNotFoundError(deployment_hash)

        try:
            with self.clusters.target_metadata.get_connection() as conn:
                existing = count_deployments(conn, deployment_hash)
        except SQLAlchemyError as e:
            raise ConnectivityError(self.clusters.target_metadata.role, str(e)) from e
        if existing:
            raise DuplicateDeploymentError(deployment_hash)

        self.log_info(f"Retrieved deployment info: schema={source.name}, shard={source.shard}, "
                      f"network={source.network}", deployment=deployment_hash)
        return source

    @contextmanager
    def _workdir(self, deployment_hash: str) -> Iterator[Path]:
        workdir = Path(self.config.temp_dir) if self.config.temp_dir else default_temp_dir()
        workdir.mkdir(parents=True, exist_ok=True)
        self.log_debug(f"Using temp directory {workdir}", deployment=deployment_hash)
        try:
            yield workdir
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            self.log_debug(f"Removed temp directory {workdir}", deployment=deployment_hash)

    def _transition(self, result: MigrationResult, state: MigrationState) -> None:
        self.log_debug(f"{result.state.value} -> {state.value}", deployment=result.deployment_hash)
        result.state = state

    def _fail(self, result: MigrationResult, error: MigrationError) -> MigrationResult:
        result.failed_in = result.state
        result.error = str(error)
        self._transition(result, MigrationState.FAILED)
        self.log_error(f"Migration failed during {result.failed_in.value}: {error}",
                       deployment=result.deployment_hash, error=type(error).__name__)
        return result

    def _resume(self, deployment_hash: str) -> None:
        try:
            self.graphman.resume(deployment_hash)
        except MigrationError as e:
            self.log_error(f"Failed to resume source deployment, run 'graphman resume {deployment_hash}' "
                           f"by hand: {e}", deployment=deployment_hash)

    def _log_cleanup(self, plan: MigrationPlan) -> None:
        self.log_warning("Target databases may hold a partial migration. Manual cleanup:",
                         deployment=plan.deployment_hash, target_id=plan.target_id,
                         namespace=plan.target_namespace)
        for statement in cleanup_statements(plan):
            self.log_warning(f"  {statement}", deployment=plan.deployment_hash)
