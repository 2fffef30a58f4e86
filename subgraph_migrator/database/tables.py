# subgraph_migrator/database/tables.py
"""
Deployment-scoped tables replicated between clusters.

Each TableSpec names the table, the column used to select the deployment's rows
in the source, what that column is matched against, and the column (if
any) that carries the deployment identifier and must be rewritten.
"""

import enum
from typing import Optional, Tuple

from msgspec import Struct


METADATA_SCHEMA = "subgraphs"

DEPLOYMENT_SCHEMAS_TABLE = "deployment_schemas"
DEPLOYMENT_ID_SEQUENCE = "deployment_schemas_id_seq"


class KeyKind(enum.Enum):
    DEPLOYMENT_ID = "deployment_id"
    DEPLOYMENT_HASH = "deployment_hash"
    SUBGRAPH_ID = "subgraph_id"
    VERSION_ID = "version_id"


class TableSpec(Struct, frozen=True):
    name: str
    key_column: str
    key_kind: KeyKind
    rewrite_column: Optional[str] = None
    schema: str = METADATA_SCHEMA

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


GRAPH_NODE_VERSIONS = TableSpec("graph_node_versions", "id", KeyKind.VERSION_ID)
HEAD = TableSpec("head", "id", KeyKind.DEPLOYMENT_ID, rewrite_column="id")
DEPLOYMENT = TableSpec("deployment", "subgraph", KeyKind.DEPLOYMENT_HASH, rewrite_column="id")
MANIFEST = TableSpec("subgraph_manifest", "id", KeyKind.DEPLOYMENT_ID, rewrite_column="id")
ERRORS = TableSpec("subgraph_error", "subgraph_id", KeyKind.DEPLOYMENT_HASH)
FEATURES = TableSpec("subgraph_features", "id", KeyKind.DEPLOYMENT_ID, rewrite_column="id")
DYNAMIC_DATA_SOURCES = TableSpec("dynamic_ethereum_contract_data_source", "deployment", KeyKind.DEPLOYMENT_HASH)
SUBGRAPH_VERSION = TableSpec("subgraph_version", "deployment", KeyKind.DEPLOYMENT_HASH)
SUBGRAPH = TableSpec("subgraph", "id", KeyKind.SUBGRAPH_ID)
ASSIGNMENT = TableSpec("subgraph_deployment_assignment", "id", KeyKind.DEPLOYMENT_ID, rewrite_column="id")

MANIFEST_VERSION_COLUMN = "graph_node_version_id"
SUBGRAPH_VERSION_SUBGRAPH_COLUMN = "subgraph"

# Foreign-key order: head before deployment, deployment before manifest,
# subgraph_version before subgraph.
REPLICATION_ORDER: Tuple[TableSpec, ...] = (
    HEAD,
    DEPLOYMENT,
    MANIFEST,
    ERRORS,
    FEATURES,
    DYNAMIC_DATA_SOURCES,
    SUBGRAPH_VERSION,
    SUBGRAPH,
    ASSIGNMENT,
)
