"""Snapshot CLI commands - create, list, delete, restore, clone."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

SnapshotTyper = typer.Typer(help="Manage btrfs container snapshots")


def register_snapshot_commands(root: typer.Typer, console: Console) -> None:
    """Attach snapshot commands to the main CLI."""
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

    @SnapshotTyper.command("create")
    def create(
        container: str = typer.Argument(..., help="Container to snapshot."),
        name: Optional[str] = typer.Option(None, "--name", "-n", help="Snapshot name (runtime picks one if omitted)."),
        allow_running: bool = typer.Option(False, "--allow-running", help="Do not stop a running container."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Create a snapshot of a btrfs-backed container."""
        keeper = get_keeper(config)
        snapshot = run_guarded(console, keeper.create_snapshot, container, name, allow_running)
        print_success(console, f"Created snapshot {snapshot} of {container}")

    @SnapshotTyper.command("list")
    def list_command(
        container: Optional[str] = typer.Argument(None, help="Only list this container's snapshots."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """List snapshots."""
        keeper = get_keeper(config)
        if container:
            snapshots = run_guarded(console, keeper.list_snapshots, container)
        else:
            snapshots = keeper.list_all_snapshots()

        if not snapshots:
            print_warning(console, "No snapshots found")
            return

        table = Table(title="LXC Snapshots")
        table.add_column("Container", style="cyan")
        table.add_column("Snapshot", style="green")
        table.add_column("Created", style="yellow")
        table.add_column("Size", style="magenta")
        for snap in snapshots:
            table.add_row(snap.container, snap.name, snap.timestamp or "-", format_size(snap.size))
        console.print(table)

    @SnapshotTyper.command("delete")
    def delete(
        container: str = typer.Argument(..., help="Container name."),
        snapshot: str = typer.Argument(..., help="Snapshot id."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Delete a snapshot."""
        if not confirm_action(f"Delete snapshot {snapshot} of {container}?", yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        keeper = get_keeper(config)
        run_guarded(console, keeper.delete_snapshot, container, snapshot)
        print_success(console, f"Deleted snapshot {snapshot} of {container}")

    @SnapshotTyper.command("restore")
    def restore(
        container: str = typer.Argument(..., help="Container name."),
        snapshot: str = typer.Argument(..., help="Snapshot id to roll back to."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Roll a container back to a snapshot in place."""
        if not confirm_action(f"Roll {container} back to {snapshot}? Changes since then are lost.",
                              yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        keeper = get_keeper(config)
        ticket = run_guarded(console, keeper.restore_snapshot, container, snapshot)
        outcome = wait_for_ticket(ticket, keeper, console, f"Restoring {container} from {snapshot}")
        report_outcome(outcome, console)

    @SnapshotTyper.command("clone")
    def clone(
        source: str = typer.Argument(..., help="Source container."),
        snapshot: str = typer.Argument(..., help="Snapshot id."),
        new_name: str = typer.Argument(..., help="Name of the new container."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Create a new container from a snapshot."""
        keeper = get_keeper(config)
        ticket = run_guarded(console, keeper.clone_from_snapshot, source, snapshot, new_name)
        outcome = wait_for_ticket(ticket, keeper, console, f"Cloning {new_name}")
        report_outcome(outcome, console)

    root.add_typer(SnapshotTyper, name="snapshot")
