"""nginx virtual host and TLS certificate for the ArvoBill site.

A rendered site is checked on its own with ``nginx -t`` against a scratch
main config before it is written to sites-available or linked into
sites-enabled, so a broken render never reaches the running server.
"""
import logging
import os
from pathlib import Path
from typing import Optional

from arvobill import services, shell
from arvobill.context import RunContext
from arvobill.errors import CommandError, PreconditionError
from arvobill.render import render_template, write_atomic
from arvobill.staging import TempWorkspace
from arvobill.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

SITE_TEMPLATE = "nginx-site.conf.j2"

_SCRATCH_MAIN_CONF = """\
error_log stderr;
pid {pid};
events {{}}
http {{
    include {mime_types};
    include {site};
}}
"""


def certificate_paths(ctx: RunContext):
    live = ctx.paths.letsencrypt_live / ctx.domain
    return live / "fullchain.pem", live / "privkey.pem"


def certificate_present(ctx: RunContext) -> bool:
    fullchain, privkey = certificate_paths(ctx)
    return fullchain.exists() and privkey.exists()


def render_site(ctx: RunContext) -> str:
    """Render the vhost; the HTTPS server block appears once a certificate exists."""
    fullchain, privkey = certificate_paths(ctx)
    return render_template(
        SITE_TEMPLATE,
        domain=ctx.domain,
        root=str(ctx.public_dir),
        php_socket=str(ctx.paths.php_fpm_socket),
        tls=ctx.configure_ssl and certificate_present(ctx),
        certificate=str(fullchain),
        certificate_key=str(privkey),
    )


def site_is_current(ctx: RunContext) -> bool:
    target, link = ctx.paths.site_config, ctx.paths.site_link
    if not target.exists() or not link.is_symlink():
        return False
    if Path(os.readlink(link)) != target:
        return False
    return target.read_text() == render_site(ctx)


def validate_site(ctx: RunContext, rendered: str) -> None:
    """Run nginx -t on rendered alone, outside the live configuration."""
    conf_dir = ctx.paths.nginx_conf_dir
    with TempWorkspace(prefix="arvobill-nginx-") as scratch:
        site = scratch.path / "site.conf"
        site.write_text(rendered)
        # relative includes resolve against the scratch dir
        os.symlink(conf_dir / "fastcgi_params", scratch.path / "fastcgi_params")
        main_conf = scratch.path / "nginx.conf"
        main_conf.write_text(
            _SCRATCH_MAIN_CONF.format(
                pid=scratch.path / "nginx.pid",
                mime_types=conf_dir / "mime.types",
                site=site,
            )
        )
        shell.run_command(["nginx", "-t", "-q", "-c", str(main_conf)])


def _restore_previous(target: Path, previous: Optional[str]) -> None:
    if previous is None:
        target.unlink()
    else:
        write_atomic(target, previous)


def materialize_site(ctx: RunContext) -> None:
    """Write and enable the site, leaving the previous state if nginx rejects it."""
    target, link = ctx.paths.site_config, ctx.paths.site_link
    rendered = render_site(ctx)

    if (
        target.exists()
        and target.read_text() != rendered
        and target not in ctx.written_files
        and not ctx.overwrite_site_config
    ):
        raise PreconditionError(
            f"{target} already exists; confirm overwriting it or remove it first"
        )

    print_step("Validating rendered nginx configuration...")
    validate_site(ctx, rendered)

    previous = target.read_text() if target.exists() else None
    previous_link = os.readlink(link) if link.is_symlink() else None
    write_atomic(target, rendered, mode=0o644)

    linked_now = False
    if not (previous_link is not None and Path(previous_link) == target):
        if link.is_symlink() or link.exists():
            link.unlink()
        link.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(target, link)
        linked_now = True

    try:
        shell.run_command(["nginx", "-t", "-q"])
    except CommandError:
        logger.warning(f"Full nginx check failed; restoring previous {target}")
        _restore_previous(target, previous)
        if linked_now:
            link.unlink()
            if previous_link is not None:
                os.symlink(previous_link, link)
        raise
    ctx.written_files.add(target)

    if services.is_active("nginx"):
        services.reload_service("nginx")
    else:
        services.start_first_available(["nginx"])
    print_success(f"nginx is serving {ctx.domain}.")


def obtain_certificate(ctx: RunContext) -> None:
    """Request a certificate over HTTP-01 using the site's public dir as webroot."""
    cmd = [
        "certbot",
        "certonly",
        "--webroot",
        "--webroot-path",
        str(ctx.public_dir),
        "--non-interactive",
        "--agree-tos",
        "-d",
        ctx.domain,
    ]
    if ctx.admin_email:
        cmd += ["--email", ctx.admin_email]
    else:
        cmd.append("--register-unsafely-without-email")

    print_step(f"Obtaining Let's Encrypt certificate for {ctx.domain}...")
    shell.run_command(cmd)

    result = shell.run_command(["systemctl", "enable", "--now", "certbot.timer"], check=False)
    if result.returncode != 0:
        print_warning("Could not enable certbot.timer; renew certificates manually.")
