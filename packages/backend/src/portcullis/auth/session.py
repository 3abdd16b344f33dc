"""Session manager — who is logged in for this request.

Learn: The session itself is a plain dict provided by Starlette's
SessionMiddleware (a signed cookie). We own exactly one key in it,
"user_id". Everything else about the cookie (signing, expiry, transport
flags) is the middleware's business.

AuthContext is created once per request (see
portcullis.auth.dependencies.get_auth_context) and remembers the user it
loaded, so the gate and the route handler don't each hit the database.
It is never shared between requests.
"""

import uuid
from collections.abc import MutableMapping
from typing import Any

import structlog

from portcullis.db.models import User
from portcullis.services.credential_store import CredentialStore

logger = structlog.get_logger()

SESSION_USER_KEY = "user_id"

_UNSET = object()


class AuthContext:
    """Per-request authentication state backed by the session mapping."""

    def __init__(self, session: MutableMapping[str, Any], store: CredentialStore):
        self.session = session
        self.store = store
        self._user: Any = _UNSET

    async def get_current_user(self) -> User | None:
        """The user referenced by the session, or None. Memoized per request."""
        if self._user is _UNSET:
            self._user = await self._load_user()
        return self._user

    async def is_authenticated(self) -> bool:
        return await self.get_current_user() is not None

    def set_user(self, user_id: uuid.UUID) -> None:
        """Bind the session to a user. The next read reloads the user."""
        self.session[SESSION_USER_KEY] = str(user_id)
        self._user = _UNSET

    def clear(self) -> None:
        """Unbind the session. Safe to call when nobody is logged in."""
        self.session.pop(SESSION_USER_KEY, None)
        self._user = None

    async def _load_user(self) -> User | None:
        raw = self.session.get(SESSION_USER_KEY)
        if raw is None:
            return None
        try:
            user_id = uuid.UUID(str(raw))
        except ValueError:
            logger.warning("portcullis.session_user_id_malformed")
            return None

        user = await self.store.get(user_id)
        if user is None:
            logger.warning("portcullis.session_user_missing", user_id=str(user_id))
        return user


# ─── Flash ─────────────────────────────────────────────
# One message carried across the redirect back to the login page.

FLASH_KEY = "flash"


def flash(session: MutableMapping[str, Any], message: str) -> None:
    session[FLASH_KEY] = message


def pop_flash(session: MutableMapping[str, Any]) -> str | None:
    return session.pop(FLASH_KEY, None)
