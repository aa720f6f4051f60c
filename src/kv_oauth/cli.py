"""``kv-oauth`` command line.

``serve`` runs the sign-in web app, ``clear`` wipes every OAuth and site
session from the configured store.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer

from kv_oauth import __version__
from kv_oauth.config import Config, ConfigError, load_config
from kv_oauth.errors import KvOAuthError
from kv_oauth.logging_config import get_logger, setup_logging

logger = get_logger(__name__)

app = typer.Typer(
    name="kv-oauth",
    help="OAuth 2.0 sign-in sessions backed by a key-value store",
    add_completion=False,
)


def _version_text() -> str:
    return f"kv-oauth version {__version__}\nPython {sys.version}"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(_version_text())
        raise typer.Exit()


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Turn configuration and session-layer failures into exit status 1."""
    try:
        yield
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None
    except KvOAuthError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None


def _configure(config_path: str | None, overrides: dict[str, Any] | None = None) -> Config:
    config = load_config(path=config_path, cli_args=overrides)
    setup_logging(config)
    return config


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """KV OAuth CLI."""


@app.command()
def serve(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (JSON or YAML)"
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="DEBUG, INFO, WARNING, ERROR or CRITICAL"
    ),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    store: str | None = typer.Option(
        None, "--store", "-s", help="Session store backend: memory, file or redis"
    ),
) -> None:
    """Serve /signin, /callback and /signout."""
    overrides = {
        "log_level": log_level,
        "host": host,
        "port": port,
        "store_backend": store,
    }
    with _exit_on_error():
        config = _configure(config_path, overrides)
        logger.info(
            "Starting %s (env: %s, store: %s)",
            config.app_name,
            config.environment.value,
            config.store_backend.value,
        )
        try:
            asyncio.run(_serve(config))
        except KeyboardInterrupt:
            logger.info("Shutting down (keyboard interrupt)")


async def _serve(config: Config) -> None:
    from kv_oauth.app import create_app, run_app

    await run_app(create_app(config), config.host, config.port, config.log_level.value.lower())


@app.command()
def clear(
    config_path: str | None = typer.Option(
        None, "--config", "-c", help="Path to configuration file (JSON or YAML)"
    ),
) -> None:
    """Delete every OAuth and site session from the store."""
    with _exit_on_error():
        count = asyncio.run(_clear(_configure(config_path)))
    typer.echo(f"Deleted {count} session records")


async def _clear(config: Config) -> int:
    from kv_oauth.store.kv import create_kv_store
    from kv_oauth.store.sessions import SessionRecordStore

    async with SessionRecordStore(create_kv_store(config)) as sessions:
        return await sessions.clear()


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(_version_text())


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
