"""Shared utilities for lxckeeper CLI modules."""
from __future__ import annotations

import os
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

import typer
from rich.console import Console

from lxckeeper.core.errors import KeeperError, NotFoundError
from lxckeeper.models.operation import OperationOutcome, Ticket
from lxckeeper.services.lxc import LxcKeeper

WAIT_SLICE = 0.5

# Set by the root callback for every invocation
_cli_state = {"verbose": False}


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("LXCKEEPER_MOCK") == "1"


def set_verbose(verbose: bool) -> None:
    """Remember --verbose so CLI errors include a traceback."""
    _cli_state["verbose"] = verbose


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands."""
    from lxckeeper.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)


def get_keeper(config_path: Optional[str] = None) -> LxcKeeper:
    """Return an LxcKeeper for the active config with mock defaults."""
    return LxcKeeper.from_config(config_path, mock=is_mock())


def handle_cli_error(e: Exception, console: Console, verbose: bool = False, exit_code: int = 1) -> None:
    """Print a KeeperError (or anything else) and exit."""
    console.print(f"[red]Error:[/red] {e}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode."""
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def wait_for_ticket(ticket: Ticket, keeper: LxcKeeper, console: Console, label: str) -> OperationOutcome:
    """Block on a background operation behind a spinner.

    Ctrl-C requests cancellation and keeps waiting so compensation (restart,
    partial file removal) finishes before the process exits.
    """
    cancelled = False
    with console.status(f"{label}...") as status:
        while True:
            try:
                return ticket.task.result(timeout=WAIT_SLICE)
            except FutureTimeout:
                continue
            except KeyboardInterrupt:
                if cancelled:
                    continue
                cancelled = True
                status.update(f"Aborting {label.lower()}, cleaning up...")
                try:
                    keeper.registry.request_cancel(ticket.container)
                except NotFoundError:
                    # Already finished
                    pass


def report_outcome(outcome: OperationOutcome, console: Console) -> None:
    """Print the outcome; failed operations exit non-zero."""
    if outcome.success:
        print_success(console, outcome.message)
        return
    print_error(console, outcome.message)
    raise typer.Exit(1)


def run_guarded(console: Console, func, *args, **kwargs):
    """Call func, turning KeeperError into a clean CLI error."""
    try:
        return func(*args, **kwargs)
    except KeeperError as e:
        handle_cli_error(e, console, _cli_state["verbose"])


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if value < 1024 or unit == "TiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")
