"""
SQLAlchemy models for the SQL-backed key-value namespace.

One table holds every key: values are stored as text exactly as written,
with optional JSON metadata and an absolute expiry.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, JSON, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class KVEntry(Base):
    """
    A single key-value pair.

    Attributes:
        key: Store key (e.g. 'bookmarks:sites')
        value: Serialized value as written by the client
        meta: Optional JSON metadata attached on put
        expires_at: Absolute expiry, None for keys that never expire
        updated_at: Last write time
    """
    __tablename__ = 'kv_entries'

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index('ix_kv_entries_expires_at', 'expires_at'),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            # SQLite drops tzinfo on the way back
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now

    def __repr__(self):
        return f"<KVEntry(key='{self.key}', size={len(self.value)})>"
