"""Portcullis CLI — database setup, local accounts, providers, audit log.

Usage:
    portcullis init-db                         # Create tables
    portcullis create-user alice --email a@x   # Local account (prompts for password)
    portcullis providers                       # Configured identity providers
    portcullis events --limit 20               # Recent authentication events
    portcullis serve --port 8000               # Run the web app under uvicorn
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import sys
from typing import Optional

import click
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from portcullis import __version__
from portcullis.config import settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _engine() -> AsyncEngine:
    from portcullis.db.engine import engine

    return engine


def _session_factory() -> async_sessionmaker:
    return async_sessionmaker(_engine(), expire_on_commit=False)


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(
            str(row.get(k) if row.get(k) is not None else "—")[:w].ljust(w)
            for _, k, w in columns
        )
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="portcullis")
def main():
    """Portcullis — session authentication for web applications."""


# ---------------------------------------------------------------------------
# portcullis init-db
# ---------------------------------------------------------------------------


@main.command("init-db")
def init_db():
    """Create the users and events tables if they don't exist.

    Production deployments should run the Alembic migrations instead.
    """
    _run(_init_db_impl())
    click.secho("Database initialized", fg="green")


async def _init_db_impl():
    from portcullis.db.models import Base

    async with _engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# portcullis create-user
# ---------------------------------------------------------------------------


@main.command("create-user")
@click.argument("username")
@click.option("--email", "-e", help="Email address (optional)")
@click.password_option(help="Password (prompted if omitted)")
def create_user(username: str, email: Optional[str], password: str):
    """Create a local username/password account."""
    from portcullis.services.credential_store import ValidationFailure

    try:
        user = _run(_create_user_impl(username, email, password))
    except ValidationFailure as failure:
        click.secho("Could not create user:", fg="red", err=True)
        for field, messages in failure.errors.items():
            for message in messages:
                click.secho(f"  {field} {message}", fg="red", err=True)
        sys.exit(1)
    click.secho(f"Created user {user.username} ({user.id})", fg="green")


async def _create_user_impl(username: str, email: Optional[str], password: str):
    from portcullis.services.registration import RegistrationService

    async with _session_factory()() as db:
        return await RegistrationService(db).register(
            username=username, email=email, password=password
        )


# ---------------------------------------------------------------------------
# portcullis providers
# ---------------------------------------------------------------------------


@main.command()
def providers():
    """List configured identity providers and their endpoints."""
    from portcullis.auth.providers import resolve_options

    if not settings.providers:
        click.echo("No identity providers configured.")
        click.echo("Set PORTCULLIS_PROVIDERS__<NAME>__CLIENT_ID and __CLIENT_SECRET.")
        return

    rows = []
    for name in sorted(settings.providers):
        options = resolve_options(name, settings.providers[name])
        rows.append({
            "name": name,
            "client_id": options["client_id"],
            "endpoint": options.get("server_metadata_url")
            or options.get("authorize_url"),
            "scope": options["client_kwargs"].get("scope"),
        })
    _print_table(rows, [
        ("PROVIDER", "name", 10),
        ("CLIENT ID", "client_id", 24),
        ("SCOPE", "scope", 24),
        ("ENDPOINT", "endpoint", 70),
    ])


# ---------------------------------------------------------------------------
# portcullis events
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-n", default=20, show_default=True, help="Max events")
@click.option("--type", "-t", "event_types", multiple=True,
              help="Only these event types (repeatable)")
def events(limit: int, event_types: tuple[str, ...]):
    """Show recent authentication events, newest first."""
    rows = _run(_events_impl(limit, list(event_types)))
    if not rows:
        click.echo("No events.")
        return
    _print_table(rows, [
        ("ID", "id", 6),
        ("WHEN", "created_at", 20),
        ("TYPE", "type", 16),
        ("STREAM", "stream_id", 44),
        ("DATA", "data", 40),
    ])


async def _events_impl(limit: int, event_types: list[str]) -> list[dict]:
    from portcullis.events.store import EventStore

    async with _session_factory()() as db:
        found = await EventStore(db).read_recent(
            event_types=event_types or None, limit=limit
        )
        return [
            {
                "id": e.id,
                "created_at": e.created_at.strftime("%Y-%m-%d %H:%M:%S")
                if e.created_at else None,
                "type": e.type,
                "stream_id": e.stream_id,
                "data": e.data,
            }
            for e in found
        ]


# ---------------------------------------------------------------------------
# portcullis serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help=f"Bind address (default {settings.host})")
@click.option("--port", "-p", type=int, default=None,
              help=f"Port (default {settings.port})")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (dev)")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the web application under uvicorn."""
    import uvicorn

    uvicorn.run(
        "portcullis.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


if __name__ == "__main__":
    main()
