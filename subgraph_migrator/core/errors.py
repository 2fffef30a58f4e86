# subgraph_migrator/core/errors.py
"""
Exception hierarchy for deployment migrations.

Pre-flight errors are raised before anything is written to a target.
Mid-run errors leave a partially populated target that has to be
cleaned up by hand.
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for every migration failure."""


# === Pre-flight ===

class PreflightError(MigrationError):
    pass


class ConfigurationError(PreflightError):
    pass


class InvalidHashError(PreflightError):
    pass


class ConnectivityError(PreflightError):
    def __init__(self, role: str, reason: str):
        super().__init__(f"Cannot connect to {role} database: {reason}")
        self.role = role


class DeploymentNotFoundError(PreflightError):
    def __init__(self, deployment_hash: str):
        super().__init__(f"Deployment '{deployment_hash}' not found or not active in source database")
        self.deployment_hash = deployment_hash


class DuplicateDeploymentError(PreflightError):
    def __init__(self, deployment_hash: str, detail: Optional[str] = None):
        message = f"Deployment '{deployment_hash}' already exists in target database"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.deployment_hash = deployment_hash


# === Mid-run ===

class AllocationError(MigrationError):
    pass


class ReplicationError(MigrationError):
    def __init__(self, table: str, reason: str):
        super().__init__(f"Failed to replicate {table}: {reason}")
        self.table = table


class SplitBrainError(ReplicationError):
    """One target cluster accepted rows for a table and the other failed."""

    def __init__(self, table: str, accepted: str, failed: str, reason: str):
        super().__init__(table, f"written to {accepted} but not to {failed} ({reason})")
        self.accepted = accepted
        self.failed = failed


class SchemaCloneError(MigrationError):
    pass


class RowCountMismatchError(MigrationError):
    def __init__(self, table: str, source_rows: int, target_rows: int):
        super().__init__(
            f"Row count mismatch for table {table}: source={source_rows}, target={target_rows}"
        )
        self.table = table
        self.source_rows = source_rows
        self.target_rows = target_rows


class ExternalToolError(MigrationError):
    def __init__(self, command: str, returncode: int, stderr: str = ""):
        message = f"{command} exited with status {returncode}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
