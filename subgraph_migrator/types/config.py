# subgraph_migrator/types/config.py

from typing import Dict, Optional, List
from pathlib import Path

from msgspec import Struct, field


SQLALCHEMY_DRIVER = "postgresql+psycopg"
LIBPQ_SCHEMES = ("postgresql://", "postgres://")


class DatabaseConfig(Struct):
    url: str
    pool_size: int = 5
    max_overflow: int = 10
    read_only: bool = False

    @property
    def sqlalchemy_url(self) -> str:
        """libpq URIs are rewritten to use the psycopg 3 driver."""
        for scheme in LIBPQ_SCHEMES:
            if self.url.startswith(scheme):
                return f"{SQLALCHEMY_DRIVER}://{self.url[len(scheme):]}"
        return self.url

    @property
    def libpq_url(self) -> str:
        """Connection string understood by pg_dump / psql."""
        if "+" in self.url.split("://", 1)[0]:
            return "postgresql://" + self.url.split("://", 1)[1]
        return self.url


class MigrationConfig(Struct):
    source_metadata_db: Optional[str] = None
    source_data_db: Optional[str] = None
    target_metadata_db: Optional[str] = None
    target_data_db: Optional[str] = None
    override_shard: Optional[str] = None
    temp_dir: Optional[Path] = None
    graph_node_config: Optional[Path] = None
    pause_source: bool = False
    assume_yes: bool = False
    pg_dump_bin: str = "pg_dump"
    psql_bin: str = "psql"
    graphman_bin: str = "graphman"

    def connection_strings(self) -> Dict[str, Optional[str]]:
        return {
            "SOURCE_METADATA_DB": self.source_metadata_db,
            "SOURCE_DATA_DB": self.source_data_db,
            "TARGET_METADATA_DB": self.target_metadata_db,
            "TARGET_DATA_DB": self.target_data_db,
        }

    def missing_connections(self) -> List[str]:
        return [name for name, value in self.connection_strings().items() if not value]


class BatchConfig(Struct):
    hash_file: Path
    parallelism: int = 1
    results_root: Path = field(default_factory=Path.cwd)
    migrate_command: List[str] = field(default_factory=list)
