"""CLI commands for Arkiv."""

import asyncio
import base64
import re
import secrets
import sys
from pathlib import Path

import click


@click.group()
@click.version_option(package_name="arkiv")
def cli():
    """Arkiv - tenant media storage and secure delivery."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option("--workers", default=1, type=int, help="Number of worker processes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
)
def serve(host, port, reload, workers, log_level):
    """Run the Arkiv server."""
    import signal

    from hypercorn.asyncio import serve as hypercorn_serve
    from hypercorn.config import Config

    config = Config()
    config.application_path = "arkiv.asgi:app"
    config.bind = [f"{host}:{port}"]
    config.workers = 1 if reload else workers
    config.loglevel = log_level.upper()
    config.include_server_header = False

    if reload:
        config.use_reloader = True
        from hypercorn.run import run
        run(config)
        return

    from arkiv.asgi import create_app

    app = create_app()
    shutdown_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_event.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_event.set)
    try:
        loop.run_until_complete(
            hypercorn_serve(app, config, shutdown_trigger=shutdown_event.wait)
        )
    finally:
        loop.close()


@cli.command()
@click.option(
    "--write",
    type=click.Path(),
    default=None,
    help="Write SECRET_KEY to a .env file",
)
@click.option(
    "--format",
    "fmt",
    default="urlsafe",
    type=click.Choice(["urlsafe", "hex", "base64"]),
    help="Output format for the secret key",
)
@click.option("--length", default=32, type=int, help="Number of random bytes")
def secret(write, fmt, length):
    """Generate a secure secret key."""
    if fmt == "urlsafe":
        key = secrets.token_urlsafe(length)
    elif fmt == "hex":
        key = secrets.token_hex(length)
    else:
        key = base64.b64encode(secrets.token_bytes(length)).decode("ascii")

    if not write:
        click.echo(key)
        return

    env_path = Path(write)
    env_content = env_path.read_text() if env_path.exists() else ""

    secret_key_pattern = re.compile(r"^SECRET_KEY=.*$", re.MULTILINE)
    new_line = f"SECRET_KEY={key}"
    if secret_key_pattern.search(env_content):
        env_content = secret_key_pattern.sub(new_line, env_content)
    else:
        if env_content and not env_content.endswith("\n"):
            env_content += "\n"
        env_content += new_line + "\n"

    env_path.write_text(env_content)
    click.echo(f"SECRET_KEY written to {env_path}")


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant the caller belongs to")
@click.option("--user", "user_id", required=True, help="User id carried in the token")
@click.option("--role", default="learner", show_default=True, help="Role name")
@click.option("--ttl", type=int, default=None, help="Lifetime in seconds (defaults to TOKEN_TTL)")
def token(tenant_id, user_id, role, ttl):
    """Issue a signed access token for local testing."""
    from arkiv.auth.roles import get_role_definition
    from arkiv.auth.tokens import create_access_token
    from arkiv.config import get_settings

    if get_role_definition(role) is None:
        raise click.BadParameter(f"Unknown role '{role}'", param_hint="--role")

    settings = get_settings()
    click.echo(
        create_access_token(
            tenant_id, user_id, role, settings.secret_key, expires_in=ttl or settings.token_ttl
        )
    )


@cli.command("test-connection")
@click.argument("backend", type=click.Choice(["local", "s3"]))
def test_connection(backend):
    """Check that a storage backend is reachable."""
    from arkiv.config import get_settings
    from arkiv.lib.storage import StorageManager

    async def run():
        storage = StorageManager(get_settings().storage)
        try:
            if not storage.is_configured(backend):
                return None
            return await (await storage.get(backend)).test_connection()
        finally:
            await storage.close()

    status = asyncio.run(run())
    if status is None:
        click.echo(f"Storage backend '{backend}' is not configured.", err=True)
        sys.exit(1)
    if not status.success:
        click.echo(f"Connection failed: {status.error}", err=True)
        sys.exit(1)
    click.echo(f"Storage backend '{backend}' is reachable.")


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant whose files to measure")
def estimate(tenant_id):
    """Estimate how long migrating a tenant's files would take."""
    from arkiv.asgi import create_db_config
    from arkiv.config import get_settings
    from arkiv.lib.imaging import format_bytes
    from arkiv.services.migration import estimate_migration

    settings = get_settings()
    db_config = create_db_config(settings)

    async def run():
        try:
            async with db_config.get_session() as session:
                return await estimate_migration(
                    session, tenant_id, settings.migration.throughput_bytes_per_second
                )
        finally:
            await db_config.get_engine().dispose()

    result = asyncio.run(run())
    click.echo(f"Files: {result.total_files}")
    click.echo(f"Size:  {format_bytes(result.total_size)}")
    click.echo(f"Time:  ~{result.estimated_time}")


@cli.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant whose files to migrate")
@click.option(
    "--direction",
    required=True,
    type=click.Choice(["local-to-s3", "s3-to-local"]),
    help="Which way to move the bytes",
)
@click.option("--delete-source", is_flag=True, help="Delete each source object once copied")
@click.option(
    "--skip-existing/--overwrite",
    default=None,
    help="Skip objects already present on the target (default from config)",
)
@click.option("--workers", type=int, default=None, help="Concurrent transfers (default from config)")
def migrate(tenant_id, direction, delete_source, skip_existing, workers):
    """Copy a tenant's files between storage backends and rewrite their URLs."""
    from arkiv.asgi import create_db_config
    from arkiv.config import get_settings
    from arkiv.lib.errors import ArkivError
    from arkiv.lib.storage import StorageManager
    from arkiv.services.migration import MigrationService, MigrationStatus

    settings = get_settings()
    db_config = create_db_config(settings)
    storage = StorageManager(settings.storage)

    def report(progress):
        done = progress.completed + progress.failed
        click.echo(f"\r[{done}/{progress.total}] {progress.current}".ljust(80), nl=False)

    async def run():
        service = MigrationService(
            storage,
            db_config.get_session,
            direction,
            delete_source=delete_source,
            skip_existing=settings.migration.skip_existing if skip_existing is None else skip_existing,
            worker_limit=workers or settings.migration.worker_limit,
        )
        try:
            return await service.migrate(tenant_id, on_progress=report)
        finally:
            await storage.close()
            await db_config.get_engine().dispose()

    try:
        result = asyncio.run(run())
    except ArkivError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    click.echo()
    click.echo(
        f"{result.status.value}: {result.completed} migrated "
        f"({result.skipped} skipped), {result.failed} failed of {result.total}"
    )
    for error in result.errors:
        click.echo(f"  - {error}", err=True)
    if result.status is not MigrationStatus.COMPLETED:
        sys.exit(1)


def _run_alembic(args: list[str]) -> None:
    """Build an Alembic Config programmatically and run the given command."""
    from alembic.config import CommandLine, Config

    arkiv_dir = Path(__file__).parent

    alembic_ini = Path.cwd() / "alembic.ini"
    cfg = Config(str(alembic_ini)) if alembic_ini.exists() else Config()
    cfg.set_main_option("script_location", str(arkiv_dir / "alembic"))

    cmd = CommandLine()
    options = cmd.parser.parse_args(args)
    if not hasattr(options, "cmd"):
        cmd.parser.error("too few arguments")
    else:
        cfg.cmd_opts = options
        fn, positional, kwarg = options.cmd
        fn(
            cfg,
            *[getattr(options, k, None) for k in positional],
            **{k: getattr(options, k, None) for k in kwarg},
        )


@cli.command(
    context_settings=dict(
        ignore_unknown_options=True,
        allow_extra_args=True,
    )
)
@click.pass_context
def db(ctx):
    """Run database migrations via Alembic.

    \b
    Examples:
        arkiv db upgrade head      # Apply all migrations
        arkiv db downgrade -1      # Rollback one migration
        arkiv db current           # Show current revision
        arkiv db history           # Show migration history
    """
    if not ctx.args:
        click.echo(ctx.get_help())
        return

    _run_alembic(ctx.args)
