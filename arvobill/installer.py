"""Fresh ArvoBill installation.

Every step carries an "already done?" check, so re-running the installer
after fixing a failure skips straight to the step that broke.
"""
import logging
import secrets
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlsplit

from rich.prompt import Confirm, Prompt

from arvobill import database, laravel, packages, schedule, services, staging, webserver, worker
from arvobill.config import (
    BASE_PACKAGES,
    CRON_SERVICE_CANDIDATES,
    DB_CLIENT_CANDIDATES,
    DB_SERVICE_CANDIDATES,
    DEFAULT_DB_NAME,
    DEFAULT_DB_USER,
    DEFAULT_INSTALL_DIR,
    PHP_FPM_SERVICE_CANDIDATES,
    PHP_VERSION,
    ZIP_URL,
    SystemPaths,
)
from arvobill.context import DatabaseSettings, RunContext
from arvobill.envfile import ensure_env_file, read_env, set_env_values
from arvobill.errors import PreconditionError, StepFailed
from arvobill.preflight import validate_domain
from arvobill.runner import Step, StepOutcome, run_steps
from arvobill.ui import (
    NordColors,
    display_panel,
    print_section,
    print_status_report,
    print_warning,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Step Actions
# ----------------------------------------------------------------
def desired_env(ctx: RunContext) -> Dict[str, str]:
    db = ctx.database
    return {
        "APP_NAME": "ArvoBill",
        "APP_ENV": "production",
        "APP_DEBUG": "false",
        "APP_URL": ctx.app_url,
        "DB_CONNECTION": "mysql",
        "DB_HOST": db.host,
        "DB_PORT": str(db.port),
        "DB_DATABASE": db.name,
        "DB_USERNAME": db.user,
        "DB_PASSWORD": db.password,
        "QUEUE_CONNECTION": "database",
    }


def env_current(ctx: RunContext) -> bool:
    if not ctx.env_file.exists():
        return False
    current = read_env(ctx.env_file)
    return all(current.get(key) == value for key, value in desired_env(ctx).items())


def write_env(ctx: RunContext) -> None:
    ensure_env_file(ctx.install_dir)
    set_env_values(ctx.env_file, desired_env(ctx))
    if laravel.config_cached(ctx):
        laravel.artisan(ctx, "config:clear")


def stage_release(ctx: RunContext) -> None:
    staging.fetch_release(ZIP_URL, ctx, staging.INSTALL)


def db_client_installed(ctx: RunContext) -> bool:
    return any(packages.is_installed(pkg) for pkg in DB_CLIENT_CANDIDATES)


def install_db_client(ctx: RunContext) -> None:
    packages.ensure_one_of(DB_CLIENT_CANDIDATES, "database client")


def install_cron(ctx: RunContext) -> None:
    services.start_first_available(CRON_SERVICE_CANDIDATES)
    schedule.install_cron(ctx)


def build_install_steps() -> List[Step]:
    def ssl_selected(ctx: RunContext) -> bool:
        return ctx.configure_ssl

    return [
        Step(
            "PHP repository",
            action=lambda ctx: packages.add_php_repository(),
            check=lambda ctx: packages.php_repository_ready(PHP_VERSION),
        ),
        Step(
            "System packages",
            action=lambda ctx: packages.ensure_packages(BASE_PACKAGES),
            check=lambda ctx: packages.all_installed(BASE_PACKAGES),
        ),
        Step("Database client", action=install_db_client, check=db_client_installed),
        Step(
            "Database service",
            action=lambda ctx: services.start_first_available(DB_SERVICE_CANDIDATES),
            check=lambda ctx: services.any_active(DB_SERVICE_CANDIDATES),
        ),
        Step(
            "PHP-FPM service",
            action=lambda ctx: services.start_first_available(PHP_FPM_SERVICE_CANDIDATES),
            check=lambda ctx: services.any_active(PHP_FPM_SERVICE_CANDIDATES),
        ),
        Step(
            "Database and user",
            action=database.provision_database,
            check=database.database_ready,
        ),
        Step(
            "Application files",
            action=stage_release,
            check=lambda ctx: ctx.artisan_path.exists(),
        ),
        Step("Environment file", action=write_env, check=env_current),
        Step(
            "PHP dependencies",
            action=laravel.composer_install,
            check=laravel.vendor_installed,
        ),
        Step(
            "Node dependencies",
            action=laravel.npm_install,
            check=laravel.node_modules_installed,
        ),
        Step("Frontend build", action=laravel.npm_build, check=laravel.assets_built),
        Step(
            "Application key",
            action=laravel.generate_app_key,
            check=laravel.app_key_set,
        ),
        Step(
            "Database migrations",
            action=laravel.run_migrations,
            check=lambda ctx: not laravel.migrations_pending(ctx),
        ),
        Step("Storage link", action=laravel.link_storage, check=laravel.storage_linked),
        Step(
            "Configuration cache",
            action=laravel.cache_config,
            check=laravel.config_cached,
        ),
        Step(
            "File permissions",
            action=laravel.fix_permissions,
            check=laravel.permissions_ok,
        ),
        Step(
            "Web server site",
            action=webserver.materialize_site,
            check=webserver.site_is_current,
            when=ssl_selected,
        ),
        Step(
            "TLS certificate",
            action=webserver.obtain_certificate,
            check=webserver.certificate_present,
            when=ssl_selected,
        ),
        # re-rendered now that the certificate exists
        Step(
            "HTTPS site",
            action=webserver.materialize_site,
            check=webserver.site_is_current,
            when=ssl_selected,
        ),
        Step(
            "Scheduler cron",
            action=install_cron,
            check=schedule.cron_installed,
            when=lambda ctx: ctx.configure_cron,
        ),
        Step(
            "Queue worker",
            action=worker.configure_worker,
            check=worker.worker_configured,
            when=lambda ctx: ctx.configure_queue,
        ),
    ]


# ----------------------------------------------------------------
# Prompts
# ----------------------------------------------------------------
def prompt_install_context(paths: Optional[SystemPaths] = None) -> RunContext:
    ctx = RunContext(paths=paths or SystemPaths())

    print_section("Installation Settings")
    ctx.install_dir = Path(
        Prompt.ask("[bold]ArvoBill install directory[/]", default=DEFAULT_INSTALL_DIR)
    )
    if ctx.artisan_path.exists():
        print_warning("Existing installation detected; completed steps will be skipped.")
    elif ctx.install_dir.is_dir() and any(ctx.install_dir.iterdir()):
        ctx.allow_non_empty_dir = Confirm.ask(
            f"[bold]{ctx.install_dir} is not empty. Install into it anyway?[/]",
            default=False,
        )
        if not ctx.allow_non_empty_dir:
            raise PreconditionError("Installation cancelled: install directory is not empty.")

    print_section("Database Configuration")
    # a re-run keeps the credentials the app already uses
    stored = read_env(ctx.env_file)
    name = Prompt.ask(
        "[bold]Database name[/]", default=stored.get("DB_DATABASE") or DEFAULT_DB_NAME
    )
    user = Prompt.ask(
        "[bold]Database user[/]", default=stored.get("DB_USERNAME") or DEFAULT_DB_USER
    )
    database.quote_identifier(name)
    database.validate_user(user)
    stored_password = stored.get("DB_PASSWORD", "")
    hint = "keep the stored one" if stored_password else "generate one"
    password = Prompt.ask(
        f"[bold]Database password (leave blank to {hint})[/]",
        password=True,
        default="",
        show_default=False,
    )
    if not password and stored_password:
        password = stored_password
    elif not password:
        password = secrets.token_urlsafe(24)
        print_warning("Generated a database password; it is stored in the app's .env.")
    ctx.database = DatabaseSettings(name=name, user=user, password=password)

    print_section("Web Server")
    ctx.configure_ssl = Confirm.ask(
        "[bold]Configure nginx with a Let's Encrypt certificate?[/]", default=True
    )
    stored_domain = urlsplit(stored.get("APP_URL", "")).hostname or ""
    if stored_domain == "localhost":
        stored_domain = ""
    if ctx.configure_ssl:
        domain_default = {"default": stored_domain} if stored_domain else {}
        ctx.domain = validate_domain(Prompt.ask("[bold]Domain name[/]", **domain_default))
        ctx.admin_email = Prompt.ask(
            "[bold]Email for Let's Encrypt notices[/]", default=""
        ).strip()
        if ctx.paths.site_config.exists():
            ctx.overwrite_site_config = Confirm.ask(
                f"[bold]{ctx.paths.site_config} already exists. Overwrite it?[/]",
                default=False,
            )
    else:
        domain = Prompt.ask(
            "[bold]Domain for APP_URL (leave blank for localhost)[/]", default=stored_domain
        ).strip()
        ctx.domain = validate_domain(domain) if domain else ""

    print_section("Background Jobs")
    ctx.configure_cron = Confirm.ask(
        "[bold]Install the scheduler cron entry?[/]", default=True
    )
    ctx.configure_queue = Confirm.ask(
        "[bold]Configure a supervisor queue worker?[/]", default=True
    )
    return ctx


# ----------------------------------------------------------------
# Run and Summary
# ----------------------------------------------------------------
def build_summary(ctx: RunContext) -> str:
    lines = [
        f"Install directory: {ctx.install_dir}",
        f"Database: {ctx.database.name} (user {ctx.database.user})",
        f"Application URL: {ctx.app_url}",
        "",
    ]
    if ctx.configure_ssl:
        lines.append(f"nginx serves {ctx.domain} over HTTPS with a Let's Encrypt certificate.")
    else:
        lines += [
            "The web server was not configured. To finish manually:",
            f"1) Point an nginx server block at {ctx.public_dir}",
            f"2) Pass PHP requests to unix:{ctx.paths.php_fpm_socket}",
            "3) Obtain a TLS certificate, e.g. certbot certonly --webroot",
        ]
    if not ctx.configure_cron:
        lines.append(
            "Scheduler cron not installed: add "
            f"'* * * * * cd {ctx.install_dir} && php artisan schedule:run' to root's crontab."
        )
    if not ctx.configure_queue:
        lines.append(f"Queue worker not configured: run 'php {ctx.artisan_path} queue:work'.")
    return "\n".join(lines)


def install(ctx: RunContext) -> List[StepOutcome]:
    try:
        outcomes = run_steps(build_install_steps(), ctx)
    except StepFailed as e:
        print_status_report(e.outcomes, "ArvoBill Installation Status")
        raise
    print_status_report(outcomes, "ArvoBill Installation Status")
    display_panel(build_summary(ctx), NordColors.GREEN, "Installation Complete")
    return outcomes
