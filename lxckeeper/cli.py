#!/usr/bin/env python3
"""lxckeeper CLI - backups, restores and snapshots for LXC containers."""

from typing import Optional

import typer
from rich.console import Console

from lxckeeper.cli_backup_commands import register_backup_commands
from lxckeeper.cli_container_commands import register_container_commands
from lxckeeper.cli_snapshot_commands import register_snapshot_commands
from lxckeeper.core.logger import get_logger

app = typer.Typer(
    name="lxk",
    help="""lxckeeper - Container lifecycle for LXC hosts

Quick start:
  lxk backup create web1 --snapshot   # Archive with minimal downtime
  lxk backup list web1                # Show archives, newest first
  lxk backup restore web1 <file>      # Recreate from an archive
  lxk snapshot create web1            # btrfs snapshot

More commands: lxk --help
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Write logs to this file."),
) -> None:
    from lxckeeper.cli_support import set_verbose, setup_file_logging
    set_verbose(verbose)
    if verbose or log_file:
        setup_file_logging(log_file=log_file, verbose=verbose)


# Attach modular subcommands
register_backup_commands(app, console)
register_snapshot_commands(app, console)
register_container_commands(app, console)

if __name__ == "__main__":
    app()
