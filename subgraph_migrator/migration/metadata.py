# subgraph_migrator/migration/metadata.py
"""
Dependency-ordered metadata replication.

Copies the deployment's rows from the source data cluster into both target
clusters, rewriting the deployment id to the newly allocated one. Rows that
are already present in a target are logged and skipped; the single
``deployment_schemas`` row is the exception and must be new.
"""

from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.errors import DuplicateDeploymentError, ReplicationError, SplitBrainError
from ..core.logging import LoggingMixin
from ..database.catalog import reflect_table
from ..database.connection import ClusterSet
from ..database.rows import fetch_rowset, insert_rowset, is_unique_violation, row_exists
from ..database.tables import (
    DEPLOYMENT_SCHEMAS_TABLE,
    GRAPH_NODE_VERSIONS,
    KeyKind,
    MANIFEST,
    MANIFEST_VERSION_COLUMN,
    REPLICATION_ORDER,
    SUBGRAPH,
    SUBGRAPH_VERSION,
    SUBGRAPH_VERSION_SUBGRAPH_COLUMN,
    TableSpec,
)
from ..types.records import DeploymentSchema, MigrationPlan, RowSet
from ..types.results import (
    DestinationOutcome,
    InsertOutcome,
    ReplicationReport,
    TableCopyOutcome,
)


class MetadataReplicator(LoggingMixin):

    def __init__(self, clusters: ClusterSet):
        self.clusters = clusters

    def replicate(self, plan: MigrationPlan) -> ReplicationReport:
        context = self.log_deployment_context(plan.deployment_hash, target_id=plan.target_id)
        self.log_info("Migrating metadata", **context)

        report = ReplicationReport()
        self.insert_deployment_schema(plan.target)
        manifest = self._read(MANIFEST, plan.source_id)
        report.graph_node_version_id = self._replicate_graph_node_version(plan, manifest, report)

        for spec in REPLICATION_ORDER:
            if spec is SUBGRAPH and not report.subgraph_id:
                self.log_info("No subgraph id found, skipping subgraph migration", **context)
                continue

            if spec is MANIFEST:
                rowset = manifest
            else:
                rowset = self._read(spec, self._key_value(spec, plan, report))
            if spec.rewrite_column and not rowset.is_empty:
                rowset = rowset.rewrite(spec.rewrite_column, plan.target_id)

            report.tables.append(self._write_to_targets(spec, rowset))

            if spec is SUBGRAPH_VERSION and not rowset.is_empty:
                report.subgraph_id = rowset.first_value(SUBGRAPH_VERSION_SUBGRAPH_COLUMN)
                self.log_info(f"Found subgraph id {report.subgraph_id}", **context)

        self.log_info("Metadata migration completed", **context,
                      outcome=f"{len(report.tables)} tables, {len(report.warnings)} warnings")
        return report

    def insert_deployment_schema(self, target: DeploymentSchema) -> None:
        """Insert the row that defines the migration; it must not exist yet."""
        manager = self.clusters.target_metadata
        try:
            with manager.get_transaction() as conn:
                table = reflect_table(conn, None, DEPLOYMENT_SCHEMAS_TABLE)
                conn.execute(table.insert(), [target.as_row()])
        except IntegrityError as e:
            if is_unique_violation(e):
                raise DuplicateDeploymentError(target.subgraph, str(e.orig)) from e
            raise ReplicationError(DEPLOYMENT_SCHEMAS_TABLE, str(e.orig)) from e
        except SQLAlchemyError as e:
            raise ReplicationError(DEPLOYMENT_SCHEMAS_TABLE, str(e)) from e

        self.log_info("Inserted deployment_schemas row",
                      deployment=target.subgraph, target_id=target.id,
                      namespace=target.name, shard=target.shard)

    def _replicate_graph_node_version(self, plan: MigrationPlan, manifest: RowSet,
                                      report: ReplicationReport) -> Optional[int]:
        version_id = None
        if MANIFEST_VERSION_COLUMN in manifest.columns:
            version_id = manifest.first_value(MANIFEST_VERSION_COLUMN)

        if version_id is None:
            self.log_info("No graph node version to migrate", deployment=plan.deployment_hash)
            return None

        if self._version_present(version_id):
            self.log_info(f"Graph node version {version_id} already exists in target (skipped)",
                          deployment=plan.deployment_hash)
            report.tables.append(TableCopyOutcome(
                table=GRAPH_NODE_VERSIONS.qualified_name,
                destinations=[DestinationOutcome(destination=m.role, outcome=InsertOutcome.SKIPPED)
                              for m in self.clusters.targets()],
            ))
            return version_id

        rowset = self._read(GRAPH_NODE_VERSIONS, version_id)
        if rowset.is_empty:
            self.log_warning(f"Graph node version {version_id} not found in source",
                             deployment=plan.deployment_hash)
        report.tables.append(self._write_to_targets(GRAPH_NODE_VERSIONS, rowset))
        return version_id

    def _version_present(self, version_id: Any) -> bool:
        """A version row counts as present if either target already has it."""
        for manager in self.clusters.targets():
            try:
                with manager.get_connection() as conn:
                    if row_exists(conn, GRAPH_NODE_VERSIONS, version_id):
                        return True
            except SQLAlchemyError as e:
                self.log_warning("Could not check if graph node version exists in target",
                                 destination=manager.role, error=str(e))
        return False

    def _key_value(self, spec: TableSpec, plan: MigrationPlan, report: ReplicationReport) -> Any:
        if spec.key_kind is KeyKind.DEPLOYMENT_ID:
            return plan.source_id
        if spec.key_kind is KeyKind.DEPLOYMENT_HASH:
            return plan.deployment_hash
        if spec.key_kind is KeyKind.SUBGRAPH_ID:
            return report.subgraph_id
        return report.graph_node_version_id

    def _read(self, spec: TableSpec, key_value: Any) -> RowSet:
        try:
            with self.clusters.source_data.get_connection() as conn:
                return fetch_rowset(conn, spec, key_value)
        except (SQLAlchemyError, KeyError) as e:
            raise ReplicationError(spec.qualified_name, f"cannot read source rows: {e}") from e

    def _write_to_targets(self, spec: TableSpec, rowset: RowSet) -> TableCopyOutcome:
        if rowset.is_empty:
            self.log_info(f"No {spec.name} rows to migrate", table=spec.qualified_name)

        outcomes: List[DestinationOutcome] = [
            insert_rowset(manager, spec, rowset) for manager in self.clusters.targets()
        ]

        failed = [o for o in outcomes if o.outcome.is_failure]
        if failed:
            accepted = [o for o in outcomes if o.outcome.wrote_rows]
            if accepted:
                raise SplitBrainError(spec.qualified_name, accepted[0].destination,
                                      failed[0].destination, failed[0].error or "unknown error")
            raise ReplicationError(
                spec.qualified_name,
                "; ".join(f"{o.destination}: {o.error}" for o in failed),
            )

        for outcome in outcomes:
            if outcome.outcome is InsertOutcome.INSERTED:
                self.log_info(f"Migrated {spec.name}", table=spec.qualified_name,
                              destination=outcome.destination, rows=outcome.rows)

        return TableCopyOutcome(table=spec.qualified_name, destinations=outcomes)
