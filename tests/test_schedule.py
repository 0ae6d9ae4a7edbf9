from arvobill import schedule


def test_cron_entry_is_appended_to_existing_crontab(fake_shell, ctx):
    fake_shell.on("crontab", "-l", stdout="0 3 * * * /usr/local/bin/backup\n")

    schedule.install_cron(ctx)

    i = fake_shell.index("crontab", "-")
    assert fake_shell.inputs[i] == (
        "0 3 * * * /usr/local/bin/backup\n" + schedule.scheduler_line(ctx) + "\n"
    )


def test_missing_crontab_is_treated_as_empty(fake_shell, ctx):
    fake_shell.on("crontab", "-l", returncode=1, stderr="no crontab for root")

    assert not schedule.cron_installed(ctx)
    schedule.install_cron(ctx)

    i = fake_shell.index("crontab", "-")
    assert fake_shell.inputs[i] == schedule.scheduler_line(ctx) + "\n"


def test_cron_installed_matches_exact_line(fake_shell, ctx):
    fake_shell.on("crontab", "-l", stdout=f"  {schedule.scheduler_line(ctx)}\n")

    assert schedule.cron_installed(ctx)


def test_scheduler_line_runs_from_install_dir(ctx):
    line = schedule.scheduler_line(ctx)

    assert line.startswith("* * * * * ")
    assert f"cd {ctx.install_dir} && php artisan schedule:run" in line
