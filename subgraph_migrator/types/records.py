# subgraph_migrator/types/records.py

from datetime import datetime
from typing import Any, Dict, List, Optional

import msgspec
from msgspec import Struct

from ..core.errors import ReplicationError


NAMESPACE_PREFIX = "sgd"


class DeploymentSchema(Struct):
    """Row of ``deployment_schemas`` in a metadata cluster."""
    id: int
    subgraph: str
    name: str
    shard: str
    version: str
    network: str
    active: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeploymentSchema":
        return cls(
            id=int(row["id"]),
            subgraph=row["subgraph"],
            name=row["name"],
            shard=row["shard"],
            version=str(row["version"]),
            network=row["network"],
            active=bool(row["active"]),
            created_at=row.get("created_at"),
        )

    def for_target(self, identifier: "AllocatedIdentifier", shard: str) -> "DeploymentSchema":
        return msgspec.structs.replace(self, id=identifier.id, name=identifier.namespace, shard=shard)

    def as_row(self) -> Dict[str, Any]:
        return msgspec.structs.asdict(self)


class AllocatedIdentifier(Struct, frozen=True):
    id: int
    namespace: str


class RowSet(Struct):
    """Rows read from one table, with the table's columns in catalog order."""
    table: str
    columns: List[str]
    rows: List[Dict[str, Any]]

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def rewrite(self, column: str, value: Any) -> "RowSet":
        if column not in self.columns:
            raise ReplicationError(self.table, f"column '{column}' not found in {self.columns}")
        rows = [{**row, column: value} for row in self.rows]
        return RowSet(table=self.table, columns=list(self.columns), rows=rows)

    def first_value(self, column: str) -> Optional[Any]:
        if column not in self.columns:
            raise ReplicationError(self.table, f"column '{column}' not found in {self.columns}")
        for row in self.rows:
            if row.get(column) is not None:
                return row[column]
        return None


class MigrationPlan(Struct):
    deployment_hash: str
    source: DeploymentSchema
    target: DeploymentSchema

    @property
    def source_id(self) -> int:
        return self.source.id

    @property
    def target_id(self) -> int:
        return self.target.id

    @property
    def source_namespace(self) -> str:
        return self.source.name

    @property
    def target_namespace(self) -> str:
        return self.target.name
