"""Local MySQL/MariaDB database and user for the app.

Root access goes through the server's unix socket (Ubuntu's default
auth_socket/unix_socket setup), so no root password is ever asked for.
User supplied values travel as query parameters; the database name is an
identifier and cannot, so it is validated and backtick-quoted instead.
"""
import logging
import re

import pymysql

from arvobill.context import RunContext
from arvobill.errors import PreconditionError
from arvobill.ui import print_step

logger = logging.getLogger(__name__)

APP_USER_HOSTS = ("localhost", "127.0.0.1")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")
_USER_RE = re.compile(r"^[A-Za-z0-9_]{1,32}$")


def quote_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise PreconditionError(
            f"Invalid database name {name!r}: use letters, digits and underscores"
        )
    return f"`{name}`"


def validate_user(user: str) -> str:
    if not _USER_RE.match(user):
        raise PreconditionError(
            f"Invalid database user {user!r}: use letters, digits and underscores"
        )
    return user


def connect_as_root(ctx: RunContext):
    return pymysql.connect(
        unix_socket=str(ctx.paths.mysql_socket),
        user="root",
        charset="utf8mb4",
        autocommit=True,
    )


def connect_as_app(ctx: RunContext):
    db = ctx.database
    return pymysql.connect(
        host=db.host,
        port=db.port,
        user=db.user,
        password=db.password,
        database=db.name,
        charset="utf8mb4",
        connect_timeout=5,
    )


def database_ready(ctx: RunContext) -> bool:
    """True when the app credentials already open the app database."""
    try:
        conn = connect_as_app(ctx)
    except pymysql.MySQLError as e:
        logger.debug(f"App database login failed: {e}")
        return False
    conn.close()
    return True


def provision_database(ctx: RunContext) -> None:
    db = ctx.database
    name = quote_identifier(db.name)
    user = validate_user(db.user)

    print_step(f"Creating database {db.name} and user {user}...")
    conn = connect_as_root(ctx)
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS {name} "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            for host in APP_USER_HOSTS:
                cur.execute(
                    "CREATE USER IF NOT EXISTS %s@%s IDENTIFIED BY %s",
                    (user, host, db.password),
                )
                # an existing user gets the password entered for this run
                cur.execute(
                    "ALTER USER %s@%s IDENTIFIED BY %s", (user, host, db.password)
                )
                cur.execute(
                    f"GRANT ALL PRIVILEGES ON {name}.* TO %s@%s", (user, host)
                )
            cur.execute("FLUSH PRIVILEGES")
    finally:
        conn.close()
