"""Entry-point for the Study Portal application."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from portal.bootstrap import BootstrapError, initialize_app
from portal.logging_utils import build_log_handlers, configure_logging
from portal.services.auth import ROLES, AuthService, SessionSigner
from portal.services.backup import BackupNotFound, BackupService
from portal.services.storage import ContentRepository, IntegrityViolation, PersistenceError
from portal.ui.console import ConsoleUI
from portal.web import create_app


LOGGER = logging.getLogger("study_portal.cli")


cli = typer.Typer(add_completion=False, help="Study Portal management commands")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_log_handlers(storage_root))


def _initialize():
    try:
        config = initialize_app()
    except BootstrapError as error:
        typer.echo(f"Initialization failed: {error}")
        raise typer.Exit(code=1) from error
    _prepare_logging(config.storage_root)
    return config


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="STUDY_PORTAL_ROOT_PATH",
    ),
) -> None:
    """Run the web application."""

    app_config = _initialize()
    repository = ContentRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    LOGGER.info("Serving Study Portal on http://%s:%s%s/", host, port, normalized_root)
    server.run()


@cli.command()
def overview() -> None:
    """Print the stored batches, lectures and live classes."""

    config = _initialize()
    ConsoleUI(ContentRepository(config), echo=typer.echo).run()


@cli.command("create-user")
def create_user(
    email: str = typer.Option(..., help="Login email"),
    password: str = typer.Option(..., prompt=True, hide_input=True, help="Login password"),
    role: str = typer.Option("super_admin", help=f"One of: {', '.join(ROLES)}"),
    batch: List[int] = typer.Option([], "--batch", help="Batch id assigned to an uploader"),
) -> None:
    """Create an administrator or uploader account."""

    if role not in ROLES:
        raise typer.BadParameter(f"Role must be one of: {', '.join(ROLES)}", param_hint="--role")
    config = _initialize()
    repository = ContentRepository(config)
    service = AuthService(repository, SessionSigner(config.secret_key))
    try:
        user_id = service.create_user(email, password, role, assigned_batches=batch)
    except IntegrityViolation as error:
        typer.echo(f"A user with email '{email}' already exists.")
        raise typer.Exit(code=1) from error
    typer.echo(f"Created {role} account '{email}' (id={user_id}).")


@cli.command()
def backup() -> None:
    """Snapshot all content into today's backup."""

    config = _initialize()
    service = BackupService(ContentRepository(config))
    try:
        summary = service.create_backup()
    except PersistenceError as error:
        typer.echo(f"Backup failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Backup stored for {summary['backup_date']}.")
    for table, count in summary["counts"].items():
        typer.echo(f"  {table}: {count}")


@cli.command()
def restore(
    backup_date: str = typer.Argument(..., help="Backup date (YYYY-MM-DD) to restore"),
) -> None:
    """Replace all content with the snapshot taken on BACKUP_DATE."""

    config = _initialize()
    service = BackupService(ContentRepository(config))
    try:
        counts = service.restore_from_backup(backup_date)
    except BackupNotFound as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except PersistenceError as error:
        typer.echo(f"Restore failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Data restored from {backup_date}.")
    for table, count in counts.items():
        typer.echo(f"  {table}: {count}")


@cli.command("export-backup")
def export_backup(
    destination: Path = typer.Argument(..., help="JSON file to write"),
    backup_date: Optional[str] = typer.Option(
        None, "--date", help="Export a stored backup instead of the current content"
    ),
) -> None:
    """Write a backup snapshot to a JSON file."""

    config = _initialize()
    service = BackupService(ContentRepository(config))
    try:
        written = service.export_backup(destination, backup_date=backup_date)
    except BackupNotFound as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except PersistenceError as error:
        typer.echo(f"Export failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"Backup exported to: {written}")


if __name__ == "__main__":
    cli()
