"""Local authenticator — username/password login.

Learn: An unknown username and a wrong password produce the same
AuthFailure with the same message. Telling them apart would let anyone
probe which usernames exist.

This class only reads. It doesn't touch the session, doesn't record
events and doesn't count attempts; the login route does all of that.
"""

import structlog

from portcullis.auth.password import verify_password
from portcullis.db.models import User
from portcullis.services.credential_store import CredentialStore

logger = structlog.get_logger()

INVALID_CREDENTIALS = "Invalid username or password"


class AuthFailure(Exception):
    """Raised when a username/password pair doesn't identify a user."""

    def __init__(self, message: str = INVALID_CREDENTIALS):
        super().__init__(message)


class LocalAuthenticator:
    """Verifies username/password pairs against the credential store."""

    def __init__(self, store: CredentialStore):
        self.store = store

    async def authenticate(self, username: str, password: str) -> User:
        """Return the user whose username and password both match.

        Raises AuthFailure otherwise.
        """
        user = await self.store.find_by_username(username)
        if user is None:
            logger.debug("portcullis.local_auth_unknown_user")
            raise AuthFailure()

        if not verify_password(password, user.password_hash):
            logger.debug("portcullis.local_auth_bad_password", user_id=str(user.id))
            raise AuthFailure()

        return user
