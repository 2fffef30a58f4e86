# subgraph_migrator/types/__init__.py

# Configuration Types
from .config import (
    DatabaseConfig,
    MigrationConfig,
    BatchConfig,
)

# Record Types
from .records import (
    NAMESPACE_PREFIX,
    DeploymentSchema,
    AllocatedIdentifier,
    RowSet,
    MigrationPlan,
)

# Result Types
from .results import (
    ExitCode,
    InsertOutcome,
    DestinationOutcome,
    TableCopyOutcome,
    ReplicationReport,
    TableTransfer,
    TransferReport,
    CheckResult,
    VerificationReport,
    MigrationState,
    MigrationResult,
    JobResult,
    Checkpoint,
    BatchSummary,
)
