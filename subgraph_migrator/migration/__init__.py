# subgraph_migrator/migration/__init__.py

from .allocator import IdentifierAllocator, namespace_for
from .metadata import MetadataReplicator
from .transport import SchemaTransporter, rewrite_namespace
from .verifier import ConsistencyVerifier
from .orchestrator import DeploymentMigrator
