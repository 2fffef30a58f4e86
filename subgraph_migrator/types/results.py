# subgraph_migrator/types/results.py

import enum
from pathlib import Path
from typing import List, Optional

from msgspec import Struct, field

from .records import MigrationPlan


class ExitCode(enum.IntEnum):
    SUCCESS = 0
    FAILURE = 1
    STOPPED = 2


class InsertOutcome(enum.Enum):
    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"
    EMPTY = "empty"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def wrote_rows(self) -> bool:
        return self is InsertOutcome.INSERTED

    @property
    def is_failure(self) -> bool:
        return self is InsertOutcome.FAILED


class DestinationOutcome(Struct):
    destination: str
    outcome: InsertOutcome
    rows: int = 0
    error: Optional[str] = None


class TableCopyOutcome(Struct):
    table: str
    destinations: List[DestinationOutcome] = field(default_factory=list)


class ReplicationReport(Struct):
    tables: List[TableCopyOutcome] = field(default_factory=list)
    subgraph_id: Optional[str] = None
    graph_node_version_id: Optional[int] = None

    @property
    def warnings(self) -> List[str]:
        return [
            f"{t.table} already present in {d.destination}"
            for t in self.tables for d in t.destinations
            if d.outcome is InsertOutcome.ALREADY_EXISTS
        ]


class TableTransfer(Struct):
    table: str
    source_rows: int
    target_rows: int
    seconds: float = 0.0


class TransferReport(Struct):
    source_namespace: str
    target_namespace: str
    tables: List[TableTransfer] = field(default_factory=list)

    @property
    def table_names(self) -> List[str]:
        return [t.table for t in self.tables]

    @property
    def total_rows(self) -> int:
        return sum(t.target_rows for t in self.tables)


class CheckResult(Struct):
    name: str
    passed: bool
    detail: str = ""


class VerificationReport(Struct):
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(c.passed for c in self.checks)

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]


class MigrationState(enum.Enum):
    VALIDATING = "validating"
    CONFIRMED = "confirmed"
    MIGRATING_METADATA = "migrating_metadata"
    MIGRATING_DATA = "migrating_data"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"


class MigrationResult(Struct):
    deployment_hash: str
    state: MigrationState
    failed_in: Optional[MigrationState] = None
    plan: Optional[MigrationPlan] = None
    replication: Optional[ReplicationReport] = None
    transfer: Optional[TransferReport] = None
    verification: Optional[VerificationReport] = None
    error: Optional[str] = None

    @property
    def exit_code(self) -> ExitCode:
        if self.state in (MigrationState.SUCCEEDED, MigrationState.CANCELLED):
            return ExitCode.SUCCESS
        return ExitCode.FAILURE


class JobResult(Struct):
    index: int
    deployment_hash: str
    succeeded: bool
    returncode: int
    log_path: Path
    seconds: float = 0.0


class Checkpoint(Struct):
    index: int
    total: int
    last_hash: Optional[str]
    stopped_at: str
    remaining_file: Path

    @property
    def remaining(self) -> int:
        return self.total - self.index


class BatchSummary(Struct):
    run_id: str
    results_dir: Path
    total: int
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    checkpoint: Optional[Checkpoint] = None

    @property
    def stopped(self) -> bool:
        return self.checkpoint is not None

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def remaining(self) -> int:
        return self.total - self.processed

    @property
    def exit_code(self) -> ExitCode:
        if self.stopped:
            return ExitCode.STOPPED
        if self.failed:
            return ExitCode.FAILURE
        return ExitCode.SUCCESS
