"""
SQLAlchemy Models for UMS Client Storage

Async-compatible SQLAlchemy 2.0 ORM model for the durable key/value table.

Designed to work with:
- SQLite (via aiosqlite)
- PostgreSQL (via asyncpg)
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class KeyValueModel(Base):
    """
    One durable client-state entry.

    `expires_at` is stored naive in UTC so SQLite and PostgreSQL compare alike.
    """
    __tablename__ = "ums_client_kv"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: _utcnow().replace(tzinfo=None)
    )

    __table_args__ = (
        Index("ix_ums_client_kv_expires_at", "expires_at"),
    )
