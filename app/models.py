"""
SQLAlchemy ORM Models for the guide cache

This module defines the database models for guide sources and their programs.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import String, Text, DateTime, Index, ForeignKey, TypeDecorator
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC in SQLite and hands back timezone-aware UTC datetimes"""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class GuideSource(Base):
    """Guide feed bound to a playlist, with its fetch bookkeeping"""
    __tablename__ = "guide_sources"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    # One active source per playlist, enforced here rather than by convention
    playlist_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    guide_url: Mapped[str] = mapped_column(String, nullable=False)
    last_fetched: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_modified: Mapped[str | None] = mapped_column(String, nullable=True)
    etag: Mapped[str | None] = mapped_column(String, nullable=True)
    fetch_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    def __repr__(self) -> str:
        return f"<GuideSource(id={self.id}, playlist_id={self.playlist_id}, guide_url={self.guide_url})>"


class Program(Base):
    """Program model for storing guide entries of one source"""
    __tablename__ = "guide_programs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    source_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("guide_sources.id", ondelete="CASCADE"),
        nullable=False
    )
    channel_id: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    icon_url: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)

    __table_args__ = (
        Index("idx_guide_programs_source_channel_time", "source_id", "channel_id", "start_time"),
        Index("idx_guide_programs_end_time", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<Program(id={self.id}, title={self.title}, channel={self.channel_id})>"
