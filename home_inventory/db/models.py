"""
SQLAlchemy ORM models for the home inventory platform.

Only the ``users`` table is mutated by identity synchronization. Emails are
stored normalized (trimmed, lower-cased) so the unique constraint doubles
as a case-insensitive one.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class User(Base):
    """
    Local user record reconciled with the Clerk identity.

    ``external_id`` is nullable for accounts created before the IdP
    integration; ``is_active`` / ``deleted_at`` form the soft-delete pair.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
        comment="Clerk user id",
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (Index("ix_users_active", "is_active"),)

    @property
    def is_soft_deleted(self) -> bool:
        return not self.is_active or self.deleted_at is not None

    def __repr__(self) -> str:
        return f"User(id={self.id}, external_id={self.external_id!r}, email={self.email!r})"
