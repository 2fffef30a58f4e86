# tests/test_orchestrator.py

import pytest
from sqlalchemy.exc import OperationalError

from subgraph_migrator.core.errors import ExternalToolError, SchemaCloneError
from subgraph_migrator.migration import orchestrator
from subgraph_migrator.migration.orchestrator import DeploymentMigrator, cleanup_statements
from subgraph_migrator.types import ExitCode, MigrationConfig, MigrationState

from conftest import (
    DEPLOYMENT_HASH, OTHER_HASH, SqliteTransporter, StubAllocator, TARGET_ID,
    fetch_rows, insert_rows, set_sequence,
)


@pytest.fixture(autouse=True)
def sqlite_transport(monkeypatch):
    SqliteTransporter.workdirs = []
    monkeypatch.setattr(orchestrator, "SchemaTransporter", SqliteTransporter)


@pytest.fixture
def config(tmp_path):
    return MigrationConfig(temp_dir=tmp_path / "work")


class FakeGraphman:
    def __init__(self, fail_pause=False):
        self.calls = []
        self.fail_pause = fail_pause

    def pause(self, deployment_hash):
        self.calls.append(("pause", deployment_hash))
        if self.fail_pause:
            raise ExternalToolError("graphman pause", 1, "no such deployment")

    def resume(self, deployment_hash):
        self.calls.append(("resume", deployment_hash))


def migrator(config, clusters, **kwargs):
    kwargs.setdefault("allocator", StubAllocator())
    return DeploymentMigrator(config, clusters=clusters.cluster_set, **kwargs)


def test_successful_migration(config, clusters):
    confirmations = []

    def confirm(source, target_shard):
        confirmations.append((source.name, target_shard))
        return True

    result = migrator(config, clusters, confirm=confirm).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.SUCCEEDED, result.error
    assert result.exit_code is ExitCode.SUCCESS
    assert confirmations == [("sgd1", "primary")]
    assert result.plan.target_id == TARGET_ID
    assert result.plan.target_namespace == f"sgd{TARGET_ID}"
    assert result.transfer.total_rows == 5
    assert result.verification.passed


def test_workdir_is_removed_after_run(config, clusters):
    migrator(config, clusters).run(DEPLOYMENT_HASH)

    assert SqliteTransporter.workdirs == [config.temp_dir]
    assert not config.temp_dir.exists()


def test_source_is_never_written(config, clusters):
    before = fetch_rows(clusters.source_metadata, None, "deployment_schemas")
    migrator(config, clusters).run(DEPLOYMENT_HASH)
    assert fetch_rows(clusters.source_metadata, None, "deployment_schemas") == before
    assert len(fetch_rows(clusters.source_data, "subgraphs", "head")) == 2


def test_declining_confirmation_cancels_without_writes(config, clusters):
    allocator = StubAllocator()

    result = migrator(config, clusters, allocator=allocator,
                      confirm=lambda source, shard: False).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.CANCELLED
    assert result.exit_code is ExitCode.SUCCESS
    assert allocator.calls == 0
    assert fetch_rows(clusters.target_metadata, None, "deployment_schemas") == []


def test_assume_yes_skips_confirmation(tmp_path, clusters):
    config = MigrationConfig(temp_dir=tmp_path / "work", assume_yes=True)

    def confirm(source, shard):
        raise AssertionError("confirmation should not be requested")

    result = migrator(config, clusters, confirm=confirm).run(DEPLOYMENT_HASH)
    assert result.state is MigrationState.SUCCEEDED


def test_unknown_deployment_fails_preflight(config, clusters):
    result = migrator(config, clusters).run("Qm" + "z" * 44)

    assert result.state is MigrationState.FAILED
    assert result.failed_in is MigrationState.VALIDATING
    assert "not found or not active" in result.error
    assert result.exit_code is ExitCode.FAILURE


def test_inactive_deployment_fails_preflight(config, clusters):
    result = migrator(config, clusters).run(OTHER_HASH)
    assert result.failed_in is MigrationState.VALIDATING


def test_existing_target_deployment_fails_preflight(config, clusters):
    insert_rows(clusters.target_metadata, None, "deployment_schemas", [
        {"id": 3, "subgraph": DEPLOYMENT_HASH, "name": "sgd3", "shard": "primary",
         "version": "relational", "network": "mainnet", "active": False},
    ])
    allocator = StubAllocator()

    result = migrator(config, clusters, allocator=allocator).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert result.failed_in is MigrationState.VALIDATING
    assert "already exists" in result.error
    assert allocator.calls == 0
    assert fetch_rows(clusters.target_data, "subgraphs", "head") == []


def test_missing_connection_strings_fail_preflight(config):
    result = DeploymentMigrator(config).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert "SOURCE_METADATA_DB" in result.error
    assert "TARGET_DATA_DB" in result.error


def test_override_shard_is_recorded_in_target(tmp_path, clusters):
    config = MigrationConfig(temp_dir=tmp_path / "work", override_shard="shard_b")

    result = migrator(config, clusters).run(DEPLOYMENT_HASH)

    assert result.plan.target.shard == "shard_b"
    rows = fetch_rows(clusters.target_metadata, None, "deployment_schemas")
    assert [r["shard"] for r in rows] == ["shard_b"]


def test_failed_checks_complete_with_warnings(config, clusters):
    set_sequence(clusters.target_metadata, 1)

    result = migrator(config, clusters).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.COMPLETED_WITH_WARNINGS
    assert result.exit_code is ExitCode.FAILURE
    assert [c.name for c in result.verification.failures] == ["id_sequence"]


def test_mid_run_failure_keeps_partial_writes(config, clusters, monkeypatch):
    def failing_transfer(self, plan, workdir):
        raise SchemaCloneError("psql exited with status 3")

    monkeypatch.setattr(SqliteTransporter, "transfer", failing_transfer)

    result = migrator(config, clusters).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert result.failed_in is MigrationState.MIGRATING_DATA
    assert result.plan.target_id == TARGET_ID
    # nothing is rolled back
    assert [r["id"] for r in fetch_rows(clusters.target_metadata, None, "deployment_schemas")] == [TARGET_ID]
    assert not config.temp_dir.exists()


def test_unexpected_error_after_writes_fails_with_cleanup(config, clusters, monkeypatch):
    def lost_connection(self, plan, workdir):
        raise OperationalError("SELECT count(*)", {}, Exception("server closed the connection"))

    cleaned_up = []
    monkeypatch.setattr(SqliteTransporter, "transfer", lost_connection)
    monkeypatch.setattr(DeploymentMigrator, "_log_cleanup", lambda self, plan: cleaned_up.append(plan.target_id))

    result = migrator(config, clusters).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert result.failed_in is MigrationState.MIGRATING_DATA
    assert "OperationalError" in result.error
    assert result.exit_code is ExitCode.FAILURE
    assert cleaned_up == [TARGET_ID]
    assert not config.temp_dir.exists()


def test_graphman_pauses_and_resumes_around_migration(config, clusters):
    graphman = FakeGraphman()

    result = migrator(config, clusters, graphman=graphman).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.SUCCEEDED
    assert graphman.calls == [("pause", DEPLOYMENT_HASH), ("resume", DEPLOYMENT_HASH)]


def test_graphman_resumes_after_failure(config, clusters, monkeypatch):
    def failing_transfer(self, plan, workdir):
        raise SchemaCloneError("pg_dump exited with status 1")

    monkeypatch.setattr(SqliteTransporter, "transfer", failing_transfer)
    graphman = FakeGraphman()

    result = migrator(config, clusters, graphman=graphman).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert graphman.calls[-1] == ("resume", DEPLOYMENT_HASH)


def test_pause_failure_stops_before_any_write(config, clusters):
    graphman = FakeGraphman(fail_pause=True)
    allocator = StubAllocator()

    result = migrator(config, clusters, graphman=graphman, allocator=allocator).run(DEPLOYMENT_HASH)

    assert result.state is MigrationState.FAILED
    assert result.failed_in is MigrationState.CONFIRMED
    assert allocator.calls == 0
    assert graphman.calls == [("pause", DEPLOYMENT_HASH)]


def test_cleanup_statements_cover_both_targets(plan):
    statements = cleanup_statements(plan)

    assert statements[0].startswith(f"DROP SCHEMA IF EXISTS sgd{TARGET_ID} CASCADE;")
    assert f"DELETE FROM subgraphs.head WHERE id = {TARGET_ID};" in statements
    assert f"DELETE FROM subgraphs.deployment WHERE subgraph = '{DEPLOYMENT_HASH}';" in statements
    assert statements[-1].startswith(f"DELETE FROM deployment_schemas WHERE id = {TARGET_ID};")
