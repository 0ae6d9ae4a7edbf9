from typing import List

from arvobill import shell
from arvobill.context import RunContext


def scheduler_line(ctx: RunContext) -> str:
    return f"* * * * * cd {ctx.install_dir} && php artisan schedule:run >> /dev/null 2>&1"


def current_crontab() -> List[str]:
    # `crontab -l` exits 1 when the user has no crontab yet
    result = shell.run_command(["crontab", "-l"], check=False)
    if result.returncode != 0:
        return []
    return result.stdout.splitlines()


def cron_installed(ctx: RunContext) -> bool:
    line = scheduler_line(ctx)
    return any(entry.strip() == line for entry in current_crontab())


def install_cron(ctx: RunContext) -> None:
    lines = current_crontab()
    lines.append(scheduler_line(ctx))
    shell.run_command(["crontab", "-"], input="\n".join(lines) + "\n")
