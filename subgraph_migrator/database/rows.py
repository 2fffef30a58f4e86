# subgraph_migrator/database/rows.py
"""
Typed row transfer between clusters.

Reads return a ``RowSet``; writes return a ``DestinationOutcome`` instead of
raising, so callers decide what an "already exists" or a failure means for
their step.
"""

from typing import Any, List

from sqlalchemy import Connection, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.logging import MigratorLogger, log_with_context, DEBUG, WARNING, ERROR
from ..types.records import RowSet
from ..types.results import DestinationOutcome, InsertOutcome
from .catalog import reflect_table
from .connection import DatabaseManager
from .tables import TableSpec


UNIQUE_VIOLATION = "23505"

logger = MigratorLogger.get_logger('database.rows')


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(orig)


def fetch_rowset(conn: Connection, spec: TableSpec, key_value: Any) -> RowSet:
    source_table = reflect_table(conn, spec.schema, spec.name)
    if spec.key_column not in source_table.c:
        raise KeyError(f"{spec.qualified_name} has no column '{spec.key_column}'")

    query = select(source_table).where(source_table.c[spec.key_column] == key_value)
    rows = [dict(row._mapping) for row in conn.execute(query)]

    log_with_context(logger, DEBUG, "Fetched source rows",
                     table=spec.qualified_name, rows=len(rows))
    return RowSet(table=spec.qualified_name, columns=list(source_table.columns.keys()), rows=rows)


def row_exists(conn: Connection, spec: TableSpec, key_value: Any) -> bool:
    target_table = reflect_table(conn, spec.schema, spec.name)
    query = select(target_table.c[spec.key_column]).where(target_table.c[spec.key_column] == key_value).limit(1)
    return conn.execute(query).first() is not None


def _insert(manager: DatabaseManager, spec: TableSpec, rows: List[dict]) -> None:
    with manager.get_transaction() as conn:
        target_table = reflect_table(conn, spec.schema, spec.name)
        conn.execute(target_table.insert(), rows)


def insert_rowset(manager: DatabaseManager, spec: TableSpec, rowset: RowSet) -> DestinationOutcome:
    """Insert every row of ``rowset`` into ``manager``'s copy of the table.

    A unique violation on a multi-row insert falls back to row-by-row
    inserts so rows that are not yet present still land.
    """
    if rowset.is_empty:
        return DestinationOutcome(destination=manager.role, outcome=InsertOutcome.EMPTY)

    try:
        _insert(manager, spec, rowset.rows)
        return DestinationOutcome(destination=manager.role, outcome=InsertOutcome.INSERTED,
                                  rows=len(rowset.rows))
    except IntegrityError as e:
        if not is_unique_violation(e):
            return _failed(manager, spec, e)
        if len(rowset.rows) == 1:
            return _already_exists(manager, spec, 0)
    except SQLAlchemyError as e:
        return _failed(manager, spec, e)

    inserted = 0
    for row in rowset.rows:
        try:
            _insert(manager, spec, [row])
            inserted += 1
        except IntegrityError as e:
            if not is_unique_violation(e):
                return _failed(manager, spec, e, inserted)
        except SQLAlchemyError as e:
            return _failed(manager, spec, e, inserted)

    if inserted:
        log_with_context(logger, WARNING, "Some rows already present, inserted the rest",
                         table=spec.qualified_name, destination=manager.role, rows=inserted)
        return DestinationOutcome(destination=manager.role, outcome=InsertOutcome.INSERTED, rows=inserted)
    return _already_exists(manager, spec, 0)


def _already_exists(manager: DatabaseManager, spec: TableSpec, rows: int) -> DestinationOutcome:
    log_with_context(logger, WARNING, "Rows already present in target (ignored)",
                     table=spec.qualified_name, destination=manager.role)
    return DestinationOutcome(destination=manager.role, outcome=InsertOutcome.ALREADY_EXISTS, rows=rows)


def _failed(manager: DatabaseManager, spec: TableSpec, error: Exception,
            rows: int = 0) -> DestinationOutcome:
    message = str(getattr(error, "orig", None) or error).strip()
    log_with_context(logger, ERROR, "Insert failed",
                     table=spec.qualified_name, destination=manager.role, error=message)
    return DestinationOutcome(destination=manager.role, outcome=InsertOutcome.FAILED,
                              rows=rows, error=message)
