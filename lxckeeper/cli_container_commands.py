"""Container CLI commands - convert-storage, destroy, status."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table


def register_container_commands(root: typer.Typer, console: Console) -> None:
    """Attach container-level commands to the main CLI."""
    from lxckeeper.cli_support import (
        confirm_action,
        get_keeper,
        is_mock,
        print_info,
        print_success,
        print_warning,
        report_outcome,
        run_guarded,
        wait_for_ticket,
    )

    @root.command("convert-storage")
    def convert_storage(
        container: str = typer.Argument(..., help="Directory-backed container to convert."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Move a container's rootfs onto a btrfs subvolume."""
        if not confirm_action(f"Convert {container} to BTRFS? It is stopped during the copy.",
                              yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        keeper = get_keeper(config)
        ticket = run_guarded(console, keeper.convert_storage, container)
        outcome = wait_for_ticket(ticket, keeper, console, f"Converting {container}")
        report_outcome(outcome, console)

    @root.command("destroy")
    def destroy(
        container: str = typer.Argument(..., help="Container to destroy."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Destroy a container and renumber the remaining ones."""
        if not confirm_action(f"Destroy container {container}? This cannot be undone.",
                              yes_flag=yes, mock=is_mock()):
            print_warning(console, "Cancelled")
            raise typer.Exit(0)

        keeper = get_keeper(config)
        reindexed = run_guarded(console, keeper.destroy_container, container)
        print_success(console, f"Destroyed {container}")
        if reindexed:
            print_info(console, f"{len(reindexed)} container(s) renumbered 1..{len(reindexed)}")

    @root.command("status")
    def status(
        config: Optional[str] = typer.Option(None, "--config", "-c", help="lxckeeper config file."),
    ) -> None:
        """Show containers with their storage, state and ordering index."""
        keeper = get_keeper(config)
        names = run_guarded(console, keeper.runtime.list_containers)
        if not names:
            print_warning(console, "No containers found")
            return

        table = Table(title="LXC Containers")
        table.add_column("#", style="dim")
        table.add_column("Container", style="cyan")
        table.add_column("State", style="green")
        table.add_column("Storage", style="yellow")

        rows = []
        for name in names:
            index = keeper.get_index(name)
            storage = keeper.snapshots.container_config(name).backing_storage
            state = "running" if keeper.runtime.is_running(name) else "stopped"
            rows.append((index, name, state, storage))

        rows.sort(key=lambda row: (row[0] is None, row[0] or 0, row[1]))
        for index, name, state, storage in rows:
            table.add_row(str(index) if index is not None else "-", name, state, storage)
        console.print(table)
