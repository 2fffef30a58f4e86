# tests/conftest.py
"""
pytest configuration and fixtures for the migrator tests

Each cluster is an in-memory SQLite database. Postgres schemas are
emulated with attached databases, so ``subgraphs.head`` and ``sgd1.pool``
resolve the way they do on a real cluster.
"""

from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List

import pytest
from sqlalchemy import (
    Boolean, Column, DateTime, Integer, MetaData, Table, Text, create_engine, event, insert, select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from subgraph_migrator.core.logging import MigratorLogger
from subgraph_migrator.database.catalog import base_tables, reflect_table
from subgraph_migrator.database.connection import (
    ClusterSet, DatabaseManager, SOURCE_DATA, SOURCE_METADATA, TARGET_DATA, TARGET_METADATA,
)
from subgraph_migrator.types import (
    AllocatedIdentifier, DatabaseConfig, DeploymentSchema, MigrationPlan, TableTransfer, TransferReport,
)


DEPLOYMENT_HASH = "QmSourceDeployment" + "a" * 28
OTHER_HASH = "QmOtherDeployment" + "b" * 29
SOURCE_ID = 1
TARGET_ID = 7
VERSION_ID = 3
SUBGRAPH_ID = "0b7c6a8f2e1d"
NODE_ID = "index_node_1"


# === Engines ===

def sqlite_engine(*schemas: str) -> Engine:
    engine = create_engine("sqlite://", poolclass=StaticPool,
                           connect_args={"check_same_thread": False})

    @event.listens_for(engine, "connect")
    def attach_schemas(dbapi_conn, connection_record):
        for schema in schemas:
            dbapi_conn.execute(f"ATTACH DATABASE ':memory:' AS {schema}")

    return engine


def _metadata_columns() -> Dict[str, List[Column]]:
    return {
        "graph_node_versions": [
            Column("id", Integer, primary_key=True),
            Column("git_commit_hash", Text),
            Column("crate_version", Text),
        ],
        "head": [
            Column("id", Integer, primary_key=True),
            Column("block_hash", Text),
            Column("block_number", Integer),
            Column("entity_count", Integer),
        ],
        "deployment": [
            Column("id", Integer, primary_key=True),
            Column("subgraph", Text, unique=True),
            Column("earliest_block_number", Integer),
        ],
        "subgraph_manifest": [
            Column("id", Integer, primary_key=True),
            Column("spec_version", Text),
            Column("graph_node_version_id", Integer),
        ],
        "subgraph_error": [
            Column("id", Text, primary_key=True),
            Column("subgraph_id", Text),
            Column("message", Text),
        ],
        "subgraph_features": [
            Column("id", Integer, primary_key=True),
            Column("spec_version", Text),
            Column("network", Text),
        ],
        "dynamic_ethereum_contract_data_source": [
            Column("vid", Integer, primary_key=True),
            Column("name", Text),
            Column("deployment", Text),
            Column("address", Text),
        ],
        "subgraph_version": [
            Column("id", Text, primary_key=True),
            Column("subgraph", Text),
            Column("deployment", Text),
        ],
        "subgraph": [
            Column("id", Text, primary_key=True),
            Column("name", Text),
        ],
        "subgraph_deployment_assignment": [
            Column("id", Integer, primary_key=True),
            Column("node_id", Text),
        ],
    }


def create_metadata_tables(engine: Engine, reverse_columns: bool = False,
                           skip: Iterable[str] = ()) -> None:
    """Create the ``subgraphs`` tables; reversed columns exercise name-based lookups."""
    metadata = MetaData()
    for name, columns in _metadata_columns().items():
        if name in skip:
            continue
        if reverse_columns:
            columns = list(reversed(columns))
        Table(name, metadata, *columns, schema="subgraphs")
    metadata.create_all(engine)


def create_deployment_schemas(engine: Engine, with_sequence: bool = False) -> None:
    metadata = MetaData()
    Table(
        "deployment_schemas", metadata,
        Column("id", Integer, primary_key=True),
        Column("created_at", DateTime),
        Column("subgraph", Text),
        Column("name", Text, unique=True),
        Column("shard", Text),
        Column("version", Text),
        Column("network", Text),
        Column("active", Boolean),
    )
    if with_sequence:
        Table("deployment_schemas_id_seq", metadata, Column("last_value", Integer))
    metadata.create_all(engine)


def insert_rows(engine: Engine, schema, name: str, rows: List[dict]) -> None:
    with engine.begin() as conn:
        target = reflect_table(conn, schema, name)
        conn.execute(insert(target), rows)


def fetch_rows(engine: Engine, schema, name: str) -> List[dict]:
    with engine.connect() as conn:
        source = reflect_table(conn, schema, name)
        return [dict(row._mapping) for row in conn.execute(select(source))]


def set_sequence(engine: Engine, last_value: int) -> None:
    with engine.begin() as conn:
        target = reflect_table(conn, None, "deployment_schemas_id_seq")
        conn.execute(target.delete())
        conn.execute(insert(target), [{"last_value": last_value}])


# === Seed data ===

def seed_source_metadata(engine: Engine) -> None:
    create_deployment_schemas(engine)
    insert_rows(engine, None, "deployment_schemas", [
        {"id": SOURCE_ID, "created_at": datetime(2024, 1, 1), "subgraph": DEPLOYMENT_HASH,
         "name": f"sgd{SOURCE_ID}", "shard": "primary", "version": "relational",
         "network": "mainnet", "active": True},
        {"id": 2, "created_at": datetime(2024, 1, 2), "subgraph": OTHER_HASH,
         "name": "sgd2", "shard": "primary", "version": "relational",
         "network": "mainnet", "active": False},
    ])


def seed_source_data(engine: Engine) -> None:
    create_metadata_tables(engine)
    insert_rows(engine, "subgraphs", "graph_node_versions", [
        {"id": VERSION_ID, "git_commit_hash": "9f1c2e", "crate_version": "0.35.0"},
    ])
    insert_rows(engine, "subgraphs", "head", [
        {"id": SOURCE_ID, "block_hash": "0xfeed", "block_number": 1200, "entity_count": 5},
        {"id": 2, "block_hash": "0xbeef", "block_number": 10, "entity_count": 1},
    ])
    insert_rows(engine, "subgraphs", "deployment", [
        {"id": SOURCE_ID, "subgraph": DEPLOYMENT_HASH, "earliest_block_number": 0},
        {"id": 2, "subgraph": OTHER_HASH, "earliest_block_number": 0},
    ])
    insert_rows(engine, "subgraphs", "subgraph_manifest", [
        {"id": SOURCE_ID, "spec_version": "0.0.5", "graph_node_version_id": VERSION_ID},
    ])
    insert_rows(engine, "subgraphs", "subgraph_error", [
        {"id": "err-1", "subgraph_id": DEPLOYMENT_HASH, "message": "handler failed"},
    ])
    insert_rows(engine, "subgraphs", "subgraph_features", [
        {"id": SOURCE_ID, "spec_version": "0.0.5", "network": "mainnet"},
    ])
    insert_rows(engine, "subgraphs", "dynamic_ethereum_contract_data_source", [
        {"vid": 1, "name": "Pool", "deployment": DEPLOYMENT_HASH, "address": "0xaaa"},
        {"vid": 2, "name": "Pool", "deployment": DEPLOYMENT_HASH, "address": "0xbbb"},
        {"vid": 3, "name": "Pool", "deployment": OTHER_HASH, "address": "0xccc"},
    ])
    insert_rows(engine, "subgraphs", "subgraph_version", [
        {"id": "version-1", "subgraph": SUBGRAPH_ID, "deployment": DEPLOYMENT_HASH},
    ])
    insert_rows(engine, "subgraphs", "subgraph", [
        {"id": SUBGRAPH_ID, "name": "uniswap/v3"},
        {"id": "unrelated", "name": "other/subgraph"},
    ])
    insert_rows(engine, "subgraphs", "subgraph_deployment_assignment", [
        {"id": SOURCE_ID, "node_id": NODE_ID},
    ])

    metadata = MetaData()
    pool = Table("pool", metadata, Column("id", Text, primary_key=True), Column("liquidity", Integer),
                 schema=f"sgd{SOURCE_ID}")
    swap = Table("swap", metadata, Column("id", Text, primary_key=True), Column("amount", Integer),
                 schema=f"sgd{SOURCE_ID}")
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(insert(pool), [{"id": f"pool-{i}", "liquidity": i * 100} for i in range(3)])
        conn.execute(insert(swap), [{"id": f"swap-{i}", "amount": i} for i in range(2)])


# === Fake collaborators ===

class StubAllocator:
    """Hands out a fixed id instead of calling nextval()."""

    def __init__(self, identifier: int = TARGET_ID):
        self.identifier = identifier
        self.calls = 0

    def allocate(self, target_metadata):
        self.calls += 1
        return AllocatedIdentifier(id=self.identifier, namespace=f"sgd{self.identifier}")


class SqliteTransporter:
    """Copies a namespace table by table with SQLAlchemy Core instead of pg_dump and COPY."""

    workdirs: List[Path] = []

    def __init__(self, clusters: ClusterSet, config):
        self.clusters = clusters
        self.config = config

    def transfer(self, plan: MigrationPlan, workdir: Path) -> TransferReport:
        SqliteTransporter.workdirs.append(workdir)
        assert workdir.is_dir()

        report = TransferReport(source_namespace=plan.source_namespace,
                                target_namespace=plan.target_namespace)
        with self.clusters.source_data.get_connection() as source, \
                self.clusters.target_data.get_transaction() as target:
            for name in base_tables(source, plan.source_namespace):
                table = reflect_table(source, plan.source_namespace, name)
                copy = table.to_metadata(MetaData(), schema=plan.target_namespace)
                copy.create(target)
                rows = [dict(row._mapping) for row in source.execute(select(table))]
                if rows:
                    target.execute(insert(copy), rows)
                report.tables.append(TableTransfer(table=name, source_rows=len(rows), target_rows=len(rows)))
        return report


# === Fixtures ===

@pytest.fixture(autouse=True)
def reset_logging():
    yield
    MigratorLogger.reset()


class Clusters:
    def __init__(self, target_metadata_skip: Iterable[str] = ()):
        self.engines = {
            SOURCE_METADATA: sqlite_engine(),
            SOURCE_DATA: sqlite_engine("subgraphs", f"sgd{SOURCE_ID}"),
            TARGET_METADATA: sqlite_engine("subgraphs"),
            TARGET_DATA: sqlite_engine("subgraphs", f"sgd{TARGET_ID}"),
        }
        seed_source_metadata(self.engines[SOURCE_METADATA])
        seed_source_data(self.engines[SOURCE_DATA])

        create_deployment_schemas(self.engines[TARGET_METADATA], with_sequence=True)
        set_sequence(self.engines[TARGET_METADATA], TARGET_ID)
        create_metadata_tables(self.engines[TARGET_METADATA], skip=target_metadata_skip)
        create_metadata_tables(self.engines[TARGET_DATA], reverse_columns=True)

        self.cluster_set = ClusterSet({
            role: DatabaseManager(DatabaseConfig(url="sqlite://"), role, engine=engine)
            for role, engine in self.engines.items()
        })

    def __getattr__(self, role: str) -> Engine:
        engines = self.__dict__.get("engines", {})
        if role in engines:
            return engines[role]
        raise AttributeError(role)

    def dispose(self) -> None:
        for engine in self.engines.values():
            engine.dispose()


@pytest.fixture
def clusters():
    built = Clusters()
    yield built
    built.dispose()


@pytest.fixture
def source_schema(clusters) -> DeploymentSchema:
    rows = fetch_rows(clusters.source_metadata, None, "deployment_schemas")
    return DeploymentSchema.from_row(next(r for r in rows if r["subgraph"] == DEPLOYMENT_HASH))


@pytest.fixture
def plan(source_schema) -> MigrationPlan:
    identifier = AllocatedIdentifier(id=TARGET_ID, namespace=f"sgd{TARGET_ID}")
    return MigrationPlan(deployment_hash=DEPLOYMENT_HASH, source=source_schema,
                         target=source_schema.for_target(identifier, source_schema.shard))
