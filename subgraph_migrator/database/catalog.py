# subgraph_migrator/database/catalog.py
"""
Catalog introspection helpers.

All lookups go through ``sqlalchemy.inspect`` so column positions are
never assumed; a fresh inspector is used per call because inspectors
cache what they have seen.
"""

from typing import List, Optional

from sqlalchemy import Connection, MetaData, Table, func, inspect, select, table, text


def reflect_table(conn: Connection, schema: Optional[str], name: str) -> Table:
    return Table(name, MetaData(), schema=schema, autoload_with=conn)


def base_tables(conn: Connection, schema: str) -> List[str]:
    """Base tables of a namespace, ordered by name."""
    return sorted(inspect(conn).get_table_names(schema=schema))


def schema_exists(conn: Connection, schema: str) -> bool:
    return schema in inspect(conn).get_schema_names()


def row_count(conn: Connection, schema: Optional[str], name: str) -> int:
    return conn.execute(select(func.count()).select_from(table(name, schema=schema))).scalar_one()


def sequence_last_value(conn: Connection, sequence: str) -> int:
    return conn.execute(text(f"SELECT last_value FROM {sequence}")).scalar_one()
