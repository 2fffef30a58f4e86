# subgraph_migrator/migration/transport.py
"""
Schema and bulk data transport.

The namespace DDL is cloned with pg_dump/psql, rewritten to the target
namespace, then every base table is streamed with binary COPY from the
source data cluster straight into the target data cluster.
"""

import re
import subprocess
import time
from pathlib import Path
from typing import Callable, List, Sequence

import psycopg
from psycopg import sql
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateSchema

from ..core.errors import ExternalToolError, RowCountMismatchError, SchemaCloneError
from ..core.logging import LoggingMixin, INFO
from ..core.performance import log_performance
from ..database.catalog import base_tables, row_count
from ..database.connection import ClusterSet, DatabaseManager
from ..types.config import MigrationConfig
from ..types.records import MigrationPlan
from ..types.results import TableTransfer, TransferReport


Runner = Callable[..., subprocess.CompletedProcess]


def rewrite_namespace(ddl: str, source: str, target: str) -> str:
    """Replace whole-word occurrences of ``source`` with ``target``.

    ``sgd1`` never matches inside ``sgd12``. The dump's own ``CREATE SCHEMA``
    is made idempotent since the namespace is created before the DDL runs.
    """
    rewritten = re.sub(rf"\b{re.escape(source)}\b", target, ddl)
    return re.sub(
        rf"CREATE SCHEMA (?!IF NOT EXISTS ){re.escape(target)}\b",
        f"CREATE SCHEMA IF NOT EXISTS {target}",
        rewritten,
    )


class SchemaTransporter(LoggingMixin):

    def __init__(self, clusters: ClusterSet, config: MigrationConfig, runner: Runner = subprocess.run):
        self.clusters = clusters
        self.config = config
        self.runner = runner

    def transfer(self, plan: MigrationPlan, workdir: Path) -> TransferReport:
        source_ns, target_ns = plan.source_namespace, plan.target_namespace
        report = TransferReport(source_namespace=source_ns, target_namespace=target_ns)

        tables = self.list_tables(source_ns)
        if not tables:
            self.log_warning(f"No tables found in source namespace {source_ns}",
                             deployment=plan.deployment_hash, namespace=source_ns)
            return report

        self.log_info(f"Found {len(tables)} tables to migrate",
                      deployment=plan.deployment_hash, namespace=source_ns)

        self.create_namespace(target_ns)
        self.clone_schema(source_ns, target_ns, workdir)

        for table_name in tables:
            report.tables.append(self.copy_table(source_ns, target_ns, table_name))

        self.log_info("Data migration completed", deployment=plan.deployment_hash,
                      namespace=target_ns, rows=report.total_rows)
        return report

    def list_tables(self, namespace: str) -> List[str]:
        try:
            with self.clusters.source_data.get_connection() as conn:
                return base_tables(conn, namespace)
        except SQLAlchemyError as e:
            raise SchemaCloneError(f"Cannot list tables of {namespace}: {e}") from e

    def create_namespace(self, namespace: str) -> None:
        try:
            with self.clusters.target_data.get_transaction() as conn:
                conn.execute(CreateSchema(namespace, if_not_exists=True))
        except SQLAlchemyError as e:
            raise SchemaCloneError(f"Cannot create schema {namespace}: {e}") from e
        self.log_info(f"Created schema {namespace}", namespace=namespace)

    def clone_schema(self, source_ns: str, target_ns: str, workdir: Path) -> Path:
        """Dump the source namespace DDL, rewrite it and apply it to the target."""
        dump_file = workdir / f"{source_ns}_schema.sql"
        target_file = workdir / f"{target_ns}_schema.sql"

        try:
            self._run([
                self.config.pg_dump_bin,
                "--dbname", self._libpq_url(self.clusters.source_data),
                "--schema", source_ns,
                "--schema-only",
                "--no-owner",
                "--no-privileges",
                "--file", str(dump_file),
            ])
            target_file.write_text(
                rewrite_namespace(dump_file.read_text(), source_ns, target_ns)
            )
            self._run([
                self.config.psql_bin,
                "--dbname", self._libpq_url(self.clusters.target_data),
                "--quiet",
                "-v", "ON_ERROR_STOP=1",
                "--file", str(target_file),
            ])
        except (ExternalToolError, OSError) as e:
            raise SchemaCloneError(f"Failed to clone schema {source_ns} to {target_ns}: {e}") from e

        self.log_info(f"Cloned schema {source_ns} to {target_ns}", namespace=target_ns)
        return target_file

    def copy_table(self, source_ns: str, target_ns: str, table_name: str) -> TableTransfer:
        started = time.monotonic()
        with log_performance(self.logger, f"copy of {table_name}", level=INFO,
                             table=f"{target_ns}.{table_name}") as extra:
            try:
                extra['rows'] = self._stream_copy(source_ns, target_ns, table_name)
            except (SQLAlchemyError, psycopg.Error) as e:
                raise SchemaCloneError(f"COPY of {source_ns}.{table_name} failed: {e}") from e

        try:
            source_rows = self._count_rows(self.clusters.source_data, source_ns, table_name)
            target_rows = self._count_rows(self.clusters.target_data, target_ns, table_name)
        except SQLAlchemyError as e:
            raise SchemaCloneError(f"Cannot count rows of {table_name} after COPY: {e}") from e
        if source_rows != target_rows:
            raise RowCountMismatchError(f"{target_ns}.{table_name}", source_rows, target_rows)

        return TableTransfer(table=table_name, source_rows=source_rows, target_rows=target_rows,
                             seconds=round(time.monotonic() - started, 3))

    def _stream_copy(self, source_ns: str, target_ns: str, table_name: str) -> int:
        copy_out = sql.SQL("COPY {} TO STDOUT (FORMAT binary)").format(
            sql.Identifier(source_ns, table_name))
        copy_in = sql.SQL("COPY {} FROM STDIN (FORMAT binary)").format(
            sql.Identifier(target_ns, table_name))

        with self.clusters.source_data.get_connection() as source_conn, \
                self.clusters.target_data.get_transaction() as target_conn:
            source_raw = source_conn.connection.driver_connection
            target_raw = target_conn.connection.driver_connection
            with source_raw.cursor() as source_cur, target_raw.cursor() as target_cur:
                with source_cur.copy(copy_out) as copy_from, target_cur.copy(copy_in) as copy_to:
                    for chunk in copy_from:
                        copy_to.write(chunk)
                return target_cur.rowcount

    def _count_rows(self, manager: DatabaseManager, namespace: str, table_name: str) -> int:
        with manager.get_connection() as conn:
            return row_count(conn, namespace, table_name)

    def _libpq_url(self, manager: DatabaseManager) -> str:
        return manager.config.libpq_url

    def _run(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        self.log_debug(f"Running {command[0]}")
        result = self.runner(list(command), capture_output=True, text=True)
        if result.returncode != 0:
            raise ExternalToolError(command[0], result.returncode, result.stderr or "")
        return result
