import logging
import signal
import sys
from typing import Any, Callable

import click
from rich.panel import Panel
from rich.prompt import Prompt
from rich.traceback import install as install_rich_traceback

from arvobill import installer, updater
from arvobill.config import LOG_FILE, SystemPaths
from arvobill.errors import ArvoBillError, StepFailed
from arvobill.preflight import check_ubuntu, require_root
from arvobill.ui import (
    NordColors,
    console,
    create_header,
    print_error,
    print_success,
    print_warning,
    setup_logger,
)

# locals would include database passwords
install_rich_traceback(show_locals=False)

logger = logging.getLogger("arvobill")


# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
def signal_handler(sig: int, frame: Any) -> None:
    try:
        sig_name = signal.Signals(sig).name
    except ValueError:
        sig_name = f"signal {sig}"
    print_warning(f"Process interrupted by {sig_name}")
    # SystemExit unwinds through the cleanup scopes of the running step
    sys.exit(128 + sig)


def setup_signal_handlers() -> None:
    for sig in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(sig, signal_handler)


# ----------------------------------------------------------------
# Flows
# ----------------------------------------------------------------
def preflight(paths: SystemPaths) -> None:
    require_root()
    pretty = check_ubuntu(paths.os_release)
    print_success(f"OS check passed: {pretty}")


def install_flow() -> None:
    console.print(create_header("Installer (Ubuntu 22.04+)"))
    paths = SystemPaths()
    preflight(paths)
    ctx = installer.prompt_install_context(paths)
    installer.install(ctx)


def update_flow() -> None:
    console.print(create_header("Updater (Ubuntu 22.04+)"))
    paths = SystemPaths()
    preflight(paths)
    ctx = updater.prompt_update_context(paths)
    updater.update(ctx)


def run_flow(flow: Callable[[], None]) -> None:
    """Run flow with logging set up and map failures to exit codes."""
    setup_signal_handlers()
    setup_logger(LOG_FILE)
    try:
        flow()
    except StepFailed as e:
        logger.debug("Run aborted", exc_info=True)
        print_error(f"Step '{e.step_name}' failed: {e.cause}")
        print_error("Fix the cause above and run the tool again; finished steps are skipped.")
        sys.exit(1)
    except ArvoBillError as e:
        print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        print_warning("Interrupted by user.")
        sys.exit(130)


# ----------------------------------------------------------------
# Command Line Interface
# ----------------------------------------------------------------
@click.group(invoke_without_command=True)
@click.pass_context
def cli(ctx: click.Context) -> None:
    """ArvoBill installer and updater for Ubuntu 22.04+."""
    if ctx.invoked_subcommand is not None:
        return
    console.print(create_header("Setup"))
    console.print(
        Panel.fit("MAIN MENU", title="[bold]ArvoBill Setup", border_style=NordColors.FROST_3)
    )
    console.print(f"[bold {NordColors.FROST_2}]1.[/] Install ArvoBill")
    console.print(f"[bold {NordColors.FROST_2}]2.[/] Update an existing installation")
    console.print(f"[bold {NordColors.FROST_2}]3.[/] Exit\n")
    choice = Prompt.ask(
        f"[bold {NordColors.FROST_1}]Enter your choice[/]",
        choices=["1", "2", "3"],
        default="1",
    )
    if choice == "1":
        ctx.invoke(install)
    elif choice == "2":
        ctx.invoke(update)


@cli.command()
def install() -> None:
    """Install ArvoBill with its packages, database, web server and jobs."""
    run_flow(install_flow)


@cli.command()
def update() -> None:
    """Update an existing ArvoBill installation in place."""
    run_flow(update_flow)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
