"""Credential store — persistence and validation for user records.

Learn: Every other component reads and creates users through this class,
never through raw queries. Validation runs before the insert so the caller
gets field-level errors ("username has already been taken") instead of a
database exception, but the database constraints stay authoritative:
if a concurrent request wins the race between our check and our insert,
the IntegrityError is caught inside a SAVEPOINT, the check is re-run
against the now-committed row, and the same field-level errors come back.
"""

import re
import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.db.models import User

logger = structlog.get_logger()

TAKEN = "has already been taken"
REQUIRED = "can't be blank"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
_MAX_LENGTHS = {"username": 100, "email": 255, "provider": 50, "external_uid": 255}


class ValidationFailure(Exception):
    """Raised when a user record cannot be saved.

    errors maps a field name to its messages, e.g.
    {"username": ["has already been taken"]}. The "base" key holds
    errors that don't belong to a single field.
    """

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__(
            "; ".join(
                f"{field} {message}"
                for field, messages in errors.items()
                for message in messages
            )
        )

    def has_error(self, field: str, message: str) -> bool:
        return message in self.errors.get(field, [])


class CredentialStore:
    """Lookup and creation of users. Users are never updated or deleted here."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ────────────────────────────────────────

    async def get(self, user_id: uuid.UUID) -> User | None:
        return await self.db.get(User, user_id)

    async def find_by_username(self, username: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.username == username)
        )
        return result.scalars().first()

    async def find_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def find_by_provider_identity(
        self, provider: str, external_uid: str
    ) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.provider == provider,
                User.external_uid == external_uid,
            )
        )
        return result.scalars().first()

    # ─── Creation ───────────────────────────────────────

    async def create(
        self,
        *,
        password_hash: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
        provider: Optional[str] = None,
        external_uid: Optional[str] = None,
    ) -> User:
        """Validate and insert a new user.

        The insert is flushed inside a SAVEPOINT so a constraint violation
        only rolls back this user, not the caller's transaction. The caller
        still owns the commit.

        Raises ValidationFailure with field-level errors.
        """
        attrs = {
            "username": username,
            "email": email,
            "password_hash": password_hash,
            "provider": provider,
            "external_uid": external_uid,
        }
        errors = await self.validate(**attrs)
        if errors:
            raise ValidationFailure(errors)

        user = User(**attrs)
        try:
            async with self.db.begin_nested():
                self.db.add(user)
        except IntegrityError:
            # Lost a race with a concurrent insert. The winner is committed
            # now, so the uniqueness checks will see it.
            errors = await self.validate(**attrs)
            logger.info(
                "portcullis.user_create_conflict",
                provider=provider,
                fields=sorted(errors),
            )
            raise ValidationFailure(errors or {"base": ["could not be saved"]})

        logger.info(
            "portcullis.user_created",
            user_id=str(user.id),
            provider=provider,
        )
        return user

    async def validate(
        self,
        *,
        password_hash: Optional[str],
        username: Optional[str],
        email: Optional[str],
        provider: Optional[str],
        external_uid: Optional[str],
    ) -> dict[str, list[str]]:
        """Return field-level errors for a prospective user (empty if valid)."""
        errors: dict[str, list[str]] = {}

        def add(field: str, message: str) -> None:
            errors.setdefault(field, []).append(message)

        if not password_hash:
            add("password", REQUIRED)

        if bool(provider) != bool(external_uid):
            add("provider" if not provider else "external_uid", REQUIRED)

        # Local accounts are identified by username; federated ones may omit it.
        if not username and not provider:
            add("username", REQUIRED)

        if email is not None and not _EMAIL_RE.match(email):
            add("email", "is invalid")

        values = {
            "username": username,
            "email": email,
            "provider": provider,
            "external_uid": external_uid,
        }
        for field, limit in _MAX_LENGTHS.items():
            value = values[field]
            if value is not None and len(value) > limit:
                add(field, f"is too long (maximum is {limit} characters)")

        if username and await self.find_by_username(username):
            add("username", TAKEN)
        if email and await self.find_by_email(email):
            add("email", TAKEN)
        if (
            provider
            and external_uid
            and await self.find_by_provider_identity(provider, external_uid)
        ):
            add("external_uid", TAKEN)

        return errors
