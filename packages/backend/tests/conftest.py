"""Test fixtures — a fresh in-memory database and app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + aiosqlite:

1. Each test gets its own in-memory SQLite engine. StaticPool keeps the
   single connection alive, so every session sees the same database.
2. pysqlite/aiosqlite emit BEGIN lazily, which breaks SAVEPOINT. The two
   event hooks below take over transaction control (the recipe from the
   SQLAlchemy SQLite dialect docs), so CredentialStore.create's
   begin_nested() behaves the way it does on Postgres.
3. The app's get_db is overridden to hand out sessions on that engine.
4. Identity providers are replaced with FakeIntegration, which skips the
   network round-trip but still runs the real user-info normalizer.
"""

import os

# Settings are read at import time; make hashing cheap and keep the
# module-level engine off Postgres before anything imports portcullis.
os.environ["PORTCULLIS_BCRYPT_ROUNDS"] = "4"
os.environ["PORTCULLIS_DATABASE_URL"] = "sqlite+aiosqlite://"

import pytest_asyncio  # noqa: E402
from authlib.integrations.starlette_client import OAuthError  # noqa: E402
from fastapi.responses import RedirectResponse  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from portcullis.auth.password import hash_password  # noqa: E402
from portcullis.auth.providers import (  # noqa: E402
    ProviderIntegration,
    ProviderRegistry,
    normalize_github,
    normalize_oidc,
)
from portcullis.config import Settings, settings  # noqa: E402
from portcullis.db.engine import get_db  # noqa: E402
from portcullis.db.models import Base, User  # noqa: E402
from portcullis.main import create_app  # noqa: E402
from portcullis.services.credential_store import CredentialStore  # noqa: E402


def sqlite_engine(url: str = "sqlite+aiosqlite://", **kwargs):
    engine = create_async_engine(url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


class FakeIntegration(ProviderIntegration):
    """Provider integration with a canned user-info payload.

    Set .info to what the provider would return, or .error to an
    OAuthError to simulate a refused or broken callback. .begin_error
    does the same for the initial redirect (e.g. unreachable metadata).
    """

    def __init__(self, name: str, normalize=normalize_oidc):
        super().__init__(name, client=None, normalize=normalize)
        self.info: dict = {}
        self.error: OAuthError | None = None
        self.begin_error: OAuthError | None = None

    async def authorize_redirect(self, request, redirect_uri):
        if self.begin_error is not None:
            raise self.begin_error
        return RedirectResponse(
            f"https://{self.name}.example/authorize?redirect_uri={redirect_uri}",
            status_code=302,
        )

    async def fetch_assertion(self, request):
        if self.error is not None:
            raise self.error
        return self.assertion_from(self.info)


@pytest_asyncio.fixture()
async def engine():
    engine = sqlite_engine(poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for driving services directly (no HTTP)."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def store(db_session):
    return CredentialStore(db_session)


@pytest_asyncio.fixture()
async def make_user(session_factory):
    """Insert a user straight into the table, bypassing validation."""

    async def _make(
        username: str | None = "alice",
        password: str = "secret",
        email: str | None = None,
        provider: str | None = None,
        external_uid: str | None = None,
    ) -> User:
        async with session_factory() as session:
            user = User(
                username=username,
                email=email,
                password_hash=hash_password(password),
                provider=provider,
                external_uid=external_uid,
            )
            session.add(user)
            await session.commit()
            return user

    return _make


@pytest_asyncio.fixture()
async def google():
    return FakeIntegration("google")


@pytest_asyncio.fixture()
async def github():
    return FakeIntegration("github", normalize=normalize_github)


@pytest_asyncio.fixture()
async def app_factory(session_factory, google, github):
    """Build the real app, wired to the test database and fake providers."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def _build(config: Settings = settings):
        application = create_app(
            config,
            providers=ProviderRegistry({"google": google, "github": github}),
        )
        application.dependency_overrides[get_db] = override_get_db
        return application

    return _build


@pytest_asyncio.fixture()
async def app(app_factory):
    return app_factory()


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client with a cookie jar, so the session survives between calls.

    Redirects are NOT followed: tests assert on the 303 and its Location.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
