"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Generic column types (Uuid, JSON) keep the schema portable between
Postgres in production and SQLite in tests.

Uniqueness lives in the database, not in application code:
- users.username and users.email are unique when present (NULLs never collide)
- (provider, external_uid) is unique, which is what makes concurrent
  first-time federated logins safe
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


PROVIDER_IDENTITY_CONSTRAINT = "uq_users_provider_identity"


class User(Base):
    """A person who can hold a session.

    Learn: One table covers both kinds of account. A local account is
    identified by username; a federated account by (provider, external_uid)
    and may have no username at all. The check constraint keeps the
    provider pair all-or-nothing.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint(
            "provider", "external_uid", name=PROVIDER_IDENTITY_CONSTRAINT
        ),
        CheckConstraint(
            "(provider IS NULL) = (external_uid IS NULL)",
            name="ck_users_provider_pair",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    username: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )
    email: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    external_uid: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    @property
    def is_federated(self) -> bool:
        return self.provider is not None

    def __repr__(self) -> str:
        return f"<User {self.id} username={self.username!r} provider={self.provider!r}>"


class Event(Base):
    """Immutable authentication audit log.

    Learn: Every login, logout and account creation is recorded as an
    event. Events are append-only (never updated/deleted).

    stream_id examples: "user:<uuid>", "login:alice"
    type examples: "session.started", "user.federated"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    meta: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )  # request_id, client ip
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
