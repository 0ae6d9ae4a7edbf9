import logging

from arvobill import services, shell
from arvobill.config import (
    SUPERVISOR_SERVICE_CANDIDATES,
    WEB_USER,
    WORKER_NAME,
)
from arvobill.context import RunContext
from arvobill.render import render_template, write_atomic
from arvobill.ui import print_step

logger = logging.getLogger(__name__)

WORKER_TEMPLATE = "supervisor-worker.conf.j2"
WORKER_PROCESSES = 2


def render_worker(ctx: RunContext) -> str:
    return render_template(
        WORKER_TEMPLATE,
        name=WORKER_NAME,
        install_dir=str(ctx.install_dir),
        user=WEB_USER,
        numprocs=WORKER_PROCESSES,
    )


def worker_configured(ctx: RunContext) -> bool:
    target = ctx.paths.worker_config
    if not target.exists() or target.read_text() != render_worker(ctx):
        return False
    result = shell.run_command(["supervisorctl", "status", f"{WORKER_NAME}:*"], check=False)
    return result.returncode == 0 and "RUNNING" in (result.stdout or "")


def configure_worker(ctx: RunContext) -> None:
    services.start_first_available(SUPERVISOR_SERVICE_CANDIDATES)

    print_step(f"Writing {ctx.paths.worker_config}...")
    write_atomic(ctx.paths.worker_config, render_worker(ctx), mode=0o644)
    ctx.written_files.add(ctx.paths.worker_config)

    shell.run_command(["supervisorctl", "reread"])
    shell.run_command(["supervisorctl", "update"])
    shell.run_command(["supervisorctl", "start", f"{WORKER_NAME}:*"])
