"""Entry-point for the media catalog backoffice."""

from __future__ import annotations

import inspect
import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from backoffice.bootstrap import initialize_app
from backoffice.logging_utils import build_file_handler, configure_logging, DEFAULT_LOG_FORMAT
from backoffice.services.accounts import AccountError, AccountService
from backoffice.services.documents import DocumentRepository
from backoffice.services.naming import parse_timestamp, utc_now
from backoffice.services.status import STATUS_COLLECTIONS, sync_collection_status
from backoffice.services.uploads import UploadStore
from backoffice.ui.overview import CatalogOverview
from backoffice.web import create_app
from backoffice.web.server import get_max_upload_bytes


LOGGER = logging.getLogger("backoffice.cli")


cli = typer.Typer(add_completion=False, help="Media catalog backoffice management commands")


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _prepare_logging(storage_root: Path) -> None:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    configure_logging(handlers=[build_file_handler(storage_root / "backoffice.log"), stream_handler])


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
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None, open_browser=False)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="BACKOFFICE_ROOT_PATH",
    ),
    open_browser: bool = typer.Option(False, "--open-browser", help="Open the admin shell once started"),
) -> None:
    """Run the backoffice HTTP API and admin shell."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = DocumentRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    config_kwargs = {}
    max_upload_bytes = get_max_upload_bytes()
    if max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = max_upload_bytes
        else:
            LOGGER.warning(
                "Ignoring max upload size limit; uvicorn.Config does not support "
                "'limit_max_request_size'.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    if open_browser:
        browser_host = host if host and host not in {"0.0.0.0", "::"} else "127.0.0.1"
        url = f"http://{browser_host}:{port}{normalized_root}/admin"

        def _open_browser_later() -> None:
            time.sleep(1.0)
            if not webbrowser.open(url, new=2, autoraise=True):
                LOGGER.info("Open %s in a browser to reach the admin shell", url)

        threading.Thread(target=_open_browser_later, daemon=True).start()

    server.run()


@cli.command()
def overview() -> None:
    """Render an overview of the catalog in the terminal."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = DocumentRepository(app_config)
    uploads = UploadStore(app_config, repository, max_bytes=get_max_upload_bytes())
    CatalogOverview(repository, uploads).run()


@cli.command("create-super-admin")
def create_super_admin(
    name: str = typer.Option(..., "--name", help="Display name of the account"),
    email: str = typer.Option(..., "--email", help="Login email of the account"),
    password: str = typer.Option(
        ..., "--password", prompt=True, hide_input=True, confirmation_prompt=True
    ),
) -> None:
    """Create an approved super admin account."""

    app_config = initialize_app()
    configure_logging()
    if len(password) < 8:
        typer.echo("Password must have at least 8 characters.", err=True)
        raise typer.Exit(code=1)

    accounts = AccountService(DocumentRepository(app_config), app_config.security)
    try:
        admin = accounts.create_super_admin(name, email, password)
    except AccountError as error:
        typer.echo(f"Cannot create super admin: {error.message}", err=True)
        raise typer.Exit(code=1) from error
    typer.echo(f"Super admin {admin['email']} created ({admin['_id']}).")


@cli.command("purge-deleted-files")
def purge_deleted_files(
    days: int = typer.Option(7, "--days", min=0, help="Purge files soft-deleted more than DAYS ago"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without asking for confirmation"),
) -> None:
    """Hard-delete uploads that were soft-deleted before the cutoff."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)
    repository = DocumentRepository(app_config)
    store = UploadStore(app_config, repository, max_bytes=get_max_upload_bytes())
    candidates = store.purge_candidates(older_than_days=days)
    if not candidates:
        typer.echo(f"No files were soft-deleted more than {days} day(s) ago.")
        typer.echo("0 file(s) purged.")
        return

    now = utc_now()
    for record in candidates:
        deleted_at = parse_timestamp(record.get("deletedAt"))
        age = (now - deleted_at).days if deleted_at else 0
        typer.echo(
            f"  {record.get('name') or record['_id']}  {float(record.get('size') or 0):.2f} KB"
            f"  {age} day(s) ago  {record.get('deletionReason') or 'manual'}"
        )
    if not yes:
        typer.confirm(f"Permanently delete {len(candidates)} file(s)?", abort=True)

    purged = store.purge(candidates)
    for record in purged:
        typer.echo(f"Purged {record.get('name') or record['_id']}")
    typer.echo(f"{len(purged)} file(s) purged.")


@cli.command("sync-status")
def sync_status() -> None:
    """Rewrite status fields of documents that carry a publication date."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)
    repository = DocumentRepository(app_config)
    for collection in STATUS_COLLECTIONS:
        fixed = sync_collection_status(repository, collection)
        typer.echo(f"{collection}: {fixed} document(s) updated")


if __name__ == "__main__":
    cli()
