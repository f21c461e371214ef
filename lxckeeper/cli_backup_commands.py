"""Backup CLI commands - create, list, delete, restore."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

BackupTyper = typer.Typer(help="Create, list and restore container backups")


def register_backup_commands(root: typer.Typer, console: Console) -> None:
    """Attach backup commands to the main CLI."""
    from lxckeeper.cli_support import (
        confirm_action,
        format_size,
        get_keeper,
        is_mock,
        print_success,
        print_warning,
        report_outcome,
        run_guarded,
        wait_for_ticket,
    )

    @BackupTyper.command("create")
    def create(
        container: str = typer.Argument(..., help="Container to back up."),
        path: Optional[str] = typer.Option(None, "--path", help="Backup root (overrides config)."),
        keep: Optional[int] = typer.Option(None, "--keep", help="Archives to retain per container."),
        compression: Optional[int] = typer.Option(None, "--compression", help="xz level 0-9."),
        threads: Optional[int] = typer.Option(None, "--threads", help="xz threads (0 = auto)."),
        use_snapshot: Optional[bool] = typer.Option(
            None, "--snapshot/--no-snapshot", help="Archive from a temporary btrfs snapshot."),
        allow_running: bool = typer.Option(False, "--allow-running", help="Do not stop a running container."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Back up a container to <backup root>/<container>/."""
        keeper = get_keeper(config)
        overrides = {
            'path': path,
            'keep': keep,
            'compression': compression,
            'threads': threads,
            'use_snapshot': use_snapshot,
        }
        ticket = run_guarded(console, keeper.backup, container, overrides, allow_running)

        mode = "snapshot" if ticket.use_snapshot else ("live" if allow_running else "stop")
        console.print(f"Backing up [cyan]{container}[/cyan] to {ticket.backup_file} ({mode} mode)")
        outcome = wait_for_ticket(ticket, keeper, console, f"Backing up {container}")
        report_outcome(outcome, console)

    @BackupTyper.command("list")
    def list_command(
        container: Optional[str] = typer.Argument(None, help="Only list this container's backups."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """List backup archives, newest first."""
        keeper = get_keeper(config)
        archives = run_guarded(console, keeper.list_backups, container)
        if not archives:
            print_warning(console, "No backups found")
            return

        table = Table(title="LXC Backups")
        table.add_column("Container", style="cyan")
        table.add_column("File", style="green")
        table.add_column("Created", style="yellow")
        table.add_column("Size", style="magenta")
        for archive in archives:
            table.add_row(
                archive.container,
                archive.filename,
                archive.created.strftime("%Y-%m-%d %H:%M:%S"),
                format_size(archive.size),
            )
        console.print(table)

    @BackupTyper.command("delete")
    def delete(
        container: str = typer.Argument(..., help="Container the backup belongs to."),
        filename: str = typer.Argument(..., help="Archive file name."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Delete one backup archive."""
        if not confirm_action(f"Delete backup {filename} of {container}?", yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        keeper = get_keeper(config)
        run_guarded(console, keeper.delete_backup, container, filename)
        print_success(console, f"Deleted {filename}")

    @BackupTyper.command("restore")
    def restore(
        source: str = typer.Argument(..., help="Container whose backup to restore."),
        filename: str = typer.Argument(..., help="Archive file name."),
        target: Optional[str] = typer.Option(None, "--as", help="Restore under a different name."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Recreate a container from a backup archive.

        An existing container with the target name is destroyed first.
        """
        target_name = target or source
        keeper = get_keeper(config)

        exists = keeper.runtime.exists(target_name)
        if exists and not confirm_action(
                f"Container {target_name} exists and will be destroyed (including its snapshots). Continue?",
                yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        ticket = run_guarded(console, keeper.restore, source, target_name, filename)
        outcome = wait_for_ticket(ticket, keeper, console, f"Restoring {target_name}")
        report_outcome(outcome, console)

    root.add_typer(BackupTyper, name="backup")
