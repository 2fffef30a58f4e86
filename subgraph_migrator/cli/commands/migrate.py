# subgraph_migrator/cli/commands/migrate.py

import sys
from pathlib import Path
from typing import Optional

import click

from ...batch.hashes import validate_deployment_hash
from ...core.config import load_migration_config
from ...core.errors import InvalidHashError
from ...migration.orchestrator import DeploymentMigrator
from ...types.records import DeploymentSchema
from ...types.results import MigrationResult, MigrationState


def confirm_migration(source: DeploymentSchema, target_shard: str) -> bool:
    click.echo()
    click.echo(click.style("About to migrate deployment:", fg='yellow'))
    click.echo(f"  Deployment:    {source.subgraph}")
    click.echo(f"  Source Schema: {source.name} (ID: {source.id})")
    click.echo("  Target Schema: allocated from the target sequence after confirmation")
    click.echo(f"  Source Shard:  {source.shard}")
    click.echo(f"  Target Shard:  {target_shard}")
    click.echo(f"  Network:       {source.network}")
    click.echo()
    return click.confirm("Proceed with migration?", default=False)


def print_summary(result: MigrationResult) -> None:
    plan = result.plan
    if plan is None:
        return

    click.echo()
    click.echo("=" * 40)
    click.echo("Migration Summary")
    click.echo("=" * 40)
    click.echo(f"Deployment Hash:    {result.deployment_hash}")
    click.echo(f"Source Schema:      {plan.source_namespace}")
    click.echo(f"Target Schema:      {plan.target_namespace}")
    click.echo(f"Source ID:          {plan.source_id}")
    click.echo(f"Target ID:          {plan.target_id}")
    click.echo(f"Network:            {plan.source.network}")
    click.echo(f"Source Shard:       {plan.source.shard}")
    click.echo(f"Target Shard:       {plan.target.shard}")

    if result.transfer and result.transfer.tables:
        click.echo()
        click.echo(f"Tables Migrated:    {len(result.transfer.tables)}")
        for table in result.transfer.tables:
            click.echo(f"  - {table.table} ({table.target_rows:,} rows)")

    if result.verification and result.verification.failures:
        click.echo()
        click.echo(click.style("Failed checks:", fg='red'))
        for check in result.verification.failures:
            click.echo(f"  - {check.name}: {check.detail}")

    click.echo("=" * 40)


@click.command('migrate')
@click.argument('deployment_hash')
@click.option('--yes', '-y', is_flag=True, help='Answer yes to every confirmation prompt')
@click.option('--temp-dir', type=click.Path(file_okay=False, path_type=Path),
              help='Working directory for schema dumps (env: TEMP_DIR)')
@click.option('--shard', help='Shard recorded for the target deployment (env: OVERRIDE_SHARD)')
@click.option('--graph-node-config', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='graph-node TOML config used to derive the source clusters (env: GRAPH_NODE_CONFIG)')
@click.option('--pause-source', is_flag=True,
              help='Pause the deployment with graphman during the migration')
def migrate(deployment_hash: str, yes: bool, temp_dir: Optional[Path], shard: Optional[str],
            graph_node_config: Optional[Path], pause_source: bool):
    """Migrate one deployment to the target clusters

    Examples:
        # Interactive migration
        migrate QmXYZ...

        # Unattended, with a different target shard
        migrate QmXYZ... --yes --shard shard_b
    """
    try:
        validate_deployment_hash(deployment_hash)
    except InvalidHashError as e:
        click.echo(click.style(str(e), fg='yellow'))
        if not yes and not click.confirm("Continue anyway?", default=False):
            sys.exit(1)

    config = load_migration_config(
        override_shard=shard,
        temp_dir=temp_dir,
        graph_node_config=graph_node_config,
        pause_source=pause_source or None,
        assume_yes=yes or None,
    )
    if config.pause_source and config.graph_node_config is None:
        raise click.UsageError("--pause-source requires --graph-node-config or GRAPH_NODE_CONFIG")

    result = DeploymentMigrator(config, confirm=confirm_migration).run(deployment_hash)

    if result.state is MigrationState.SUCCEEDED:
        print_summary(result)
        click.echo(click.style("✅ Migration completed successfully!", fg='green'))
    elif result.state is MigrationState.COMPLETED_WITH_WARNINGS:
        print_summary(result)
        click.echo(click.style("❌ Migration completed with consistency check failures", fg='red'), err=True)
    elif result.state is MigrationState.FAILED:
        click.echo(f"❌ Migration failed during {result.failed_in.value}: {result.error}", err=True)

    sys.exit(int(result.exit_code))
