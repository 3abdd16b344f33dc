"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover all event types in the system.
"""

# ─── Account lifecycle ───────────────────────────────────

USER_REGISTERED = "user.registered"
USER_FEDERATED = "user.federated"

# ─── Session lifecycle ───────────────────────────────────

SESSION_STARTED = "session.started"
SESSION_ENDED = "session.ended"
LOGIN_FAILED = "login.failed"
