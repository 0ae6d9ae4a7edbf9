"""In-place update of an existing ArvoBill installation."""
import logging
from pathlib import Path
from typing import List, Optional

from rich.prompt import Confirm, Prompt

from arvobill import laravel, schedule, staging
from arvobill.config import DEFAULT_INSTALL_DIR, ZIP_URL, SystemPaths
from arvobill.context import RunContext
from arvobill.errors import StepFailed
from arvobill.installer import install_cron
from arvobill.preflight import validate_install_dir_for_update
from arvobill.runner import Step, StepOutcome, run_steps
from arvobill.ui import (
    NordColors,
    display_panel,
    print_section,
    print_status_report,
    print_success,
    print_warning,
)

logger = logging.getLogger(__name__)


def sync_release(ctx: RunContext) -> None:
    staging.fetch_release(ZIP_URL, ctx, staging.UPDATE)


def build_update_steps() -> List[Step]:
    return [
        Step(
            "Maintenance mode",
            action=laravel.enter_maintenance,
            check=laravel.is_down,
            when=lambda ctx: ctx.use_maintenance,
        ),
        Step("Application files", action=sync_release),
        Step("PHP dependencies", action=laravel.composer_install),
        Step("Node dependencies", action=laravel.npm_install),
        Step("Frontend build", action=laravel.npm_build),
        # unconditional: composer and artisan run as root and write into bootstrap/cache
        Step("File permissions", action=laravel.fix_permissions),
        Step("Clear caches", action=laravel.clear_caches, fatal=False),
        Step(
            "Database migrations",
            action=laravel.run_migrations,
            check=lambda ctx: not laravel.migrations_pending(ctx),
            when=lambda ctx: ctx.run_migrations,
        ),
        Step("Scheduler cron", action=install_cron, check=schedule.cron_installed),
        Step(
            "Leave maintenance mode",
            action=laravel.leave_maintenance,
            when=lambda ctx: ctx.maintenance_engaged,
        ),
    ]


def prompt_update_context(paths: Optional[SystemPaths] = None) -> RunContext:
    ctx = RunContext(paths=paths or SystemPaths())
    print_section("Update Settings")
    install_dir = Prompt.ask(
        "[bold]ArvoBill install directory[/]", default=DEFAULT_INSTALL_DIR
    )
    ctx.install_dir = validate_install_dir_for_update(Path(install_dir))
    print_success(f"Updating installation at: {ctx.install_dir}")

    ctx.use_maintenance = Confirm.ask(
        "[bold]Enable maintenance mode during update?[/]", default=True
    )
    if not ctx.use_maintenance:
        print_warning("Skipping maintenance mode.")
    ctx.run_migrations = Confirm.ask(
        "[bold]Run database migrations after the update?[/]", default=False
    )
    return ctx


def build_summary(ctx: RunContext) -> str:
    lines = [f"Install directory: {ctx.install_dir}", "", "Recommended checks:"]
    if not ctx.run_migrations:
        lines.append(f"- php {ctx.artisan_path} migrate --force   (migrations were skipped)")
    lines += [
        "- systemctl status nginx php-fpm",
        "- Verify checkout, payments, and provisioning flows in the panel UI",
    ]
    return "\n".join(lines)


def update(ctx: RunContext) -> List[StepOutcome]:
    """Run the update; the app leaves maintenance mode however this exits."""
    with laravel.maintenance_guard(ctx):
        try:
            outcomes = run_steps(build_update_steps(), ctx)
        except StepFailed as e:
            print_status_report(e.outcomes, "ArvoBill Update Status")
            raise
    print_status_report(outcomes, "ArvoBill Update Status")
    display_panel(build_summary(ctx), NordColors.GREEN, "Update Complete")
    return outcomes
