"""Local signup — create a username/password account.

Learn: Password rules are checked here, next to the store's own checks,
so a rejected signup reports every problem at once
({"username": [...], "password": [...]}) instead of one per attempt.
"""

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.auth.password import hash_password
from portcullis.config import settings
from portcullis.db.models import User
from portcullis.events.store import EventStore, user_stream
from portcullis.events.types import USER_REGISTERED
from portcullis.services.credential_store import (
    REQUIRED,
    CredentialStore,
    ValidationFailure,
)

logger = structlog.get_logger()

# bcrypt ignores everything past 72 bytes.
MAX_PASSWORD_BYTES = 72


def password_errors(password: str, confirmation: Optional[str]) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not password:
        errors["password"] = [REQUIRED]
    elif len(password) < settings.min_password_length:
        errors["password"] = [
            f"is too short (minimum is {settings.min_password_length} characters)"
        ]
    elif len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors["password"] = [f"is too long (maximum is {MAX_PASSWORD_BYTES} bytes)"]
    if confirmation is not None and confirmation != password:
        errors["password_confirmation"] = ["doesn't match password"]
    return errors


class RegistrationService:
    """Creates local accounts."""

    def __init__(self, db: AsyncSession, store: CredentialStore | None = None):
        self.db = db
        self.store = store or CredentialStore(db)
        self.events = EventStore(db)

    async def register(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        password_confirmation: Optional[str] = None,
    ) -> User:
        """Create and commit a local user. Raises ValidationFailure."""
        username = username.strip()
        email = (email or "").strip() or None

        errors = password_errors(password, password_confirmation)
        # Hashing is slow, so validate before hashing; validate() only
        # checks that some hash will be present.
        store_errors = await self.store.validate(
            username=username or None,
            email=email,
            password_hash=password or None,
            provider=None,
            external_uid=None,
        )
        for field, messages in store_errors.items():
            merged = errors.setdefault(field, [])
            merged.extend(m for m in messages if m not in merged)
        if errors:
            raise ValidationFailure(errors)

        user = await self.store.create(
            username=username,
            email=email,
            password_hash=hash_password(password),
        )
        await self.events.append(
            stream_id=user_stream(user.id),
            event_type=USER_REGISTERED,
            data={"username": user.username},
        )
        await self.db.commit()

        logger.info("portcullis.user_registered", user_id=str(user.id))
        return user
