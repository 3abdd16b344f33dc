"""Pydantic schemas for login, signup and the current user.

Learn: Pydantic v2 models validate request/response data. Separate
"Request" schemas (input) from "Read" schemas (output) for clean APIs.
The form payloads stand in for the rendered pages: UI is not this
service's job, but the client still needs to know which form to show
and what went wrong.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


# ─── Requests ───────────────────────────────────────────

class LoginRequest(BaseModel):
    username: str
    password: str


class SignupRequest(BaseModel):
    username: str = ""
    email: Optional[str] = None
    password: str
    password_confirmation: str


# ─── Responses ──────────────────────────────────────────

class UserRead(BaseModel):
    id: uuid.UUID
    username: Optional[str] = None
    email: Optional[str] = None
    provider: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LoginForm(BaseModel):
    """What the login page needs: the pending error and the provider buttons."""
    form: str = "login"
    error: Optional[str] = None
    providers: list[str] = []


class SignupForm(BaseModel):
    """The signup page, possibly re-presented with errors and prefilled values."""
    form: str = "signup"
    errors: dict[str, list[str]] = {}
    username: Optional[str] = None
    email: Optional[str] = None
    provider: Optional[str] = None
