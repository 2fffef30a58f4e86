# subgraph_migrator/cli/__main__.py

"""
Subgraph deployment migration CLI

Usage: python -m subgraph_migrator [command] [options]

Commands:
    migrate  Migrate one deployment between cluster pairs
    batch    Migrate every deployment listed in a hash file
"""

import sys
from pathlib import Path
from typing import Optional

import click

from ..core.config import load_environment
from ..core.logging import MigratorLogger


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Load environment variables from this file (default: .env)')
@click.pass_context
def cli(ctx, verbose: bool, env_file: Optional[Path]):
    """Subgraph deployment migrator

    Moves deployments from a source pair of Postgres clusters (metadata +
    data) to a target pair, allocating a new deployment id in the target.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose

    load_environment(env_file)

    MigratorLogger.configure(
        log_level="DEBUG" if verbose else "INFO",
        console_enabled=True,
        file_enabled=False,
        structured_format=verbose,
        colored=sys.stdout.isatty(),
        force=True,
    )


from .commands.migrate import migrate
from .commands.batch import batch

cli.add_command(migrate)
cli.add_command(batch)


if __name__ == '__main__':
    cli()
