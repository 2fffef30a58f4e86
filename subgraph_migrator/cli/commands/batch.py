# subgraph_migrator/cli/commands/batch.py

"""
Batch migration command

Runs one ``migrate --yes`` process per deployment and collects the results
in a per-run directory. Press Ctrl+D (or send SIGTERM, or touch the
``.stop_requested`` file in the results directory) to stop after the
running migrations complete.
"""

import sys
from pathlib import Path

import click

from ...batch.hashes import load_hash_list
from ...batch.scheduler import BatchScheduler
from ...core.errors import ConfigurationError
from ...core.logging import MigratorLogger
from ...types.config import BatchConfig
from ...types.results import BatchSummary


def print_batch_summary(summary: BatchSummary) -> None:
    click.echo()
    click.echo("=" * 40)
    click.echo("Batch Migration Summary")
    click.echo("=" * 40)
    click.echo(f"Total deployments: {summary.total}")
    click.echo(f"Processed: {summary.processed}")
    click.echo(click.style(f"Successful: {len(summary.succeeded)}", fg='green'))

    if summary.failed:
        click.echo(click.style(f"Failed: {len(summary.failed)}", fg='red'))
        click.echo(click.style("Failed deployments:", fg='red'))
        for deployment_hash in summary.failed:
            click.echo(f"  - {deployment_hash}")
    else:
        click.echo("Failed: 0")

    if summary.stopped:
        click.echo()
        click.echo(click.style("Batch was stopped early", fg='yellow'))
        click.echo(click.style(f"Remaining: {summary.remaining} deployments not processed", fg='yellow'))
        click.echo(f"See {summary.results_dir / 'stopped_at.txt'} for resume instructions")

    click.echo()
    click.echo(f"Detailed logs available in: {summary.results_dir}")


@click.command('batch')
@click.argument('hash_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('parallelism', type=click.IntRange(min=1), default=1, required=False)
@click.pass_context
def batch(ctx, hash_file: Path, parallelism: int):
    """Migrate every deployment listed in HASH_FILE

    Empty lines and lines starting with # are ignored. Failed migrations
    are recorded but don't stop the batch.

    Examples:
        batch deployments.txt
        batch deployments.txt 4
    """
    try:
        hashes = load_hash_list(hash_file)
    except ConfigurationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not hashes:
        click.echo(f"❌ No deployment hashes found in {hash_file}", err=True)
        sys.exit(1)

    scheduler = BatchScheduler(BatchConfig(hash_file=hash_file, parallelism=parallelism))
    results_dir = scheduler.prepare()

    verbose = ctx.obj.get('verbose', False) if ctx.obj else False
    MigratorLogger.configure(
        log_dir=results_dir,
        log_level="DEBUG" if verbose else "INFO",
        console_enabled=True,
        file_enabled=True,
        structured_format=False,
        colored=sys.stdout.isatty(),
        log_file_name='batch.log',
        force=True,
    )

    click.echo(f"Hash file: {hash_file}")
    click.echo(f"Total deployments: {len(hashes)}")
    click.echo(f"Parallelism: {parallelism}")
    click.echo(f"Batch ID: {scheduler.run_id}")
    click.echo(f"Results directory: {results_dir}")

    scheduler.token.install_signal_handler()
    scheduler.token.watch_stdin()
    click.echo("Press Ctrl+D to stop after current migration(s) complete")

    summary = scheduler.run(hashes)
    print_batch_summary(summary)
    sys.exit(int(summary.exit_code))
