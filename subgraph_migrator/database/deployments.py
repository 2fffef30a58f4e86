# subgraph_migrator/database/deployments.py

from typing import Optional

from sqlalchemy import Connection, func, select

from ..types.records import DeploymentSchema
from .catalog import reflect_table
from .tables import DEPLOYMENT_SCHEMAS_TABLE


def find_active_deployment(conn: Connection, deployment_hash: str) -> Optional[DeploymentSchema]:
    schemas = reflect_table(conn, None, DEPLOYMENT_SCHEMAS_TABLE)
    row = conn.execute(
        select(schemas)
        .where(schemas.c.subgraph == deployment_hash, schemas.c.active.is_(True))
        .limit(1)
    ).first()
    if row is None:
        return None
    return DeploymentSchema.from_row(dict(row._mapping))


def count_deployments(conn: Connection, deployment_hash: str) -> int:
    """Rows for the hash regardless of ``active``."""
    schemas = reflect_table(conn, None, DEPLOYMENT_SCHEMAS_TABLE)
    return conn.execute(
        select(func.count()).select_from(schemas).where(schemas.c.subgraph == deployment_hash)
    ).scalar_one()
