# subgraph_migrator/migration/verifier.py
"""
Post-migration consistency checks.

Each check runs on its own; an exception inside one check marks only that
check as failed.
"""

from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select

from ..core.logging import LoggingMixin
from ..database.catalog import base_tables, reflect_table, row_count, schema_exists, sequence_last_value
from ..database.connection import ClusterSet, DatabaseManager
from ..database.tables import DEPLOYMENT_ID_SEQUENCE, DEPLOYMENT_SCHEMAS_TABLE, MANIFEST
from ..types.records import MigrationPlan
from ..types.results import CheckResult, VerificationReport


CheckFn = Callable[[MigrationPlan, Optional[Sequence[str]]], Tuple[bool, str]]


class ConsistencyVerifier(LoggingMixin):

    def __init__(self, clusters: ClusterSet, sequence: str = DEPLOYMENT_ID_SEQUENCE):
        self.clusters = clusters
        self.sequence = sequence

    @property
    def checks(self) -> List[Tuple[str, CheckFn]]:
        return [
            ("deployment_schema_row", self.check_deployment_schema),
            ("namespace_exists", self.check_namespace),
            ("table_count", self.check_table_count),
            ("row_counts", self.check_row_counts),
            ("manifest_rows", self.check_manifest),
            ("id_sequence", self.check_sequence),
        ]

    def verify(self, plan: MigrationPlan, tables: Optional[Sequence[str]] = None) -> VerificationReport:
        """Run every check; ``tables`` defaults to the source namespace's base tables."""
        context = self.log_deployment_context(plan.deployment_hash, target_id=plan.target_id)
        self.log_info("Verifying migration", **context)

        report = VerificationReport()
        for name, check in self.checks:
            try:
                passed, detail = check(plan, tables)
            except Exception as e:
                passed, detail = False, f"check raised {type(e).__name__}: {e}"

            report.checks.append(CheckResult(name=name, passed=passed, detail=detail))
            if passed:
                self.log_info(f"Check passed: {detail}", check=name, **context)
            else:
                self.log_error(f"Check failed: {detail}", check=name, **context)

        if report.passed:
            self.log_info("Verification passed", **context)
        else:
            self.log_warning(f"Verification failed: {len(report.failures)} of {len(report.checks)} checks",
                             **context)
        return report

    def check_deployment_schema(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        with self.clusters.target_metadata.get_connection() as conn:
            schemas = reflect_table(conn, None, DEPLOYMENT_SCHEMAS_TABLE)
            count = conn.execute(
                select(func.count()).select_from(schemas).where(
                    schemas.c.subgraph == plan.deployment_hash,
                    schemas.c.name == plan.target_namespace,
                )
            ).scalar_one()
        return count == 1, f"{count} deployment_schemas row(s) for {plan.target_namespace}"

    def check_namespace(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        with self.clusters.target_data.get_connection() as conn:
            exists = schema_exists(conn, plan.target_namespace)
        state = "exists" if exists else "missing"
        return exists, f"schema {plan.target_namespace} {state} in target data database"

    def check_table_count(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        source = len(self._tables(self.clusters.source_data, plan.source_namespace))
        target = len(self._tables(self.clusters.target_data, plan.target_namespace))
        return source == target, f"source={source} tables, target={target} tables"

    def check_row_counts(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        if tables is None:
            tables = self._tables(self.clusters.source_data, plan.source_namespace)
        mismatches = []
        with self.clusters.source_data.get_connection() as source_conn, \
                self.clusters.target_data.get_connection() as target_conn:
            for table_name in tables:
                source = row_count(source_conn, plan.source_namespace, table_name)
                target = row_count(target_conn, plan.target_namespace, table_name)
                if source != target:
                    mismatches.append(f"{table_name} (source={source}, target={target})")

        if mismatches:
            return False, "row count mismatch: " + ", ".join(mismatches)
        return True, f"row counts match for {len(tables)} tables"

    def check_manifest(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        counts = {}
        for manager in self.clusters.targets():
            counts[manager.role] = self._manifest_rows(manager, plan.target_id)
        passed = all(count == 1 for count in counts.values())
        detail = ", ".join(f"{role}={count}" for role, count in counts.items())
        return passed, f"subgraph_manifest rows for id {plan.target_id}: {detail}"

    def check_sequence(self, plan: MigrationPlan, tables: Optional[Sequence[str]]) -> Tuple[bool, str]:
        with self.clusters.target_metadata.get_connection() as conn:
            last_value = sequence_last_value(conn, self.sequence)
        return last_value >= plan.target_id, f"{self.sequence} last_value={last_value}, new id={plan.target_id}"

    def _manifest_rows(self, manager: DatabaseManager, target_id: int) -> int:
        with manager.get_connection() as conn:
            manifest = reflect_table(conn, MANIFEST.schema, MANIFEST.name)
            return conn.execute(
                select(func.count()).select_from(manifest).where(manifest.c[MANIFEST.key_column] == target_id)
            ).scalar_one()

    def _tables(self, manager: DatabaseManager, namespace: str) -> List[str]:
        with manager.get_connection() as conn:
            return base_tables(conn, namespace)
