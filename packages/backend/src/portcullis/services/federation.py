"""Federated identity reconciliation — map a provider identity to a local user.

Learn: A provider integration hands us an IdentityAssertion: "provider X
vouches that this person is uid Y". We look for a user already bound to
(X, Y). If there is one we return it untouched. If not, we create one.

Things that are deliberately NOT done:
- No attribute refresh on repeat login. A user who renamed themselves
  locally keeps their name even if the provider's display name changes.
- No linking by email. A federated identity whose email matches an
  existing local account does not take that account over; the create
  fails with "email has already been taken" instead.

Concurrency: two first-time logins for the same identity can both miss
the lookup. Only one insert can win the (provider, external_uid) unique
constraint. The loser sees "external_uid has already been taken", which
we treat as "found" and re-fetch, so both requests end up with the same
user.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.auth.password import random_password_hash
from portcullis.db.models import User
from portcullis.events.store import EventStore, user_stream
from portcullis.events.types import USER_FEDERATED
from portcullis.services.credential_store import (
    TAKEN,
    CredentialStore,
    ValidationFailure,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class IdentityAssertion:
    """A verified, normalized identity claim from an identity provider.

    fallback_username is whatever handle the provider offers besides the
    display name (GitHub login, Twitter username, ...), if any.
    """

    provider: str
    external_uid: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    fallback_username: Optional[str] = None

    def derived_username(self) -> Optional[str]:
        """display_name if non-empty, else fallback_username if non-empty."""
        for candidate in (self.display_name, self.fallback_username):
            if candidate and candidate.strip():
                return candidate.strip()
        return None


class FederatedIdentityReconciler:
    """Resolves identity assertions to users, creating users on first login."""

    def __init__(self, db: AsyncSession, store: CredentialStore | None = None):
        self.db = db
        self.store = store or CredentialStore(db)
        self.events = EventStore(db)

    async def reconcile(self, assertion: IdentityAssertion) -> User:
        """Return the user bound to the assertion's identity.

        Creates and commits a new user the first time an identity is seen.
        Raises ValidationFailure if the new user can't be saved (derived
        username or email already in use, fields too long, ...). No session
        should be established in that case.
        """
        existing = await self.store.find_by_provider_identity(
            assertion.provider, assertion.external_uid
        )
        if existing is not None:
            return existing

        try:
            user = await self.store.create(
                username=assertion.derived_username(),
                email=assertion.email or None,
                password_hash=random_password_hash(),
                provider=assertion.provider,
                external_uid=assertion.external_uid,
            )
        except ValidationFailure as failure:
            if not failure.has_error("external_uid", TAKEN):
                logger.info(
                    "portcullis.federation_rejected",
                    provider=assertion.provider,
                    errors=failure.errors,
                )
                raise
            winner = await self.store.find_by_provider_identity(
                assertion.provider, assertion.external_uid
            )
            if winner is None:
                raise
            logger.info(
                "portcullis.federation_race_resolved",
                provider=assertion.provider,
                user_id=str(winner.id),
            )
            return winner

        await self.events.append(
            stream_id=user_stream(user.id),
            event_type=USER_FEDERATED,
            data={"provider": assertion.provider, "username": user.username},
        )
        await self.db.commit()

        logger.info(
            "portcullis.user_federated",
            provider=assertion.provider,
            user_id=str(user.id),
        )
        return user
