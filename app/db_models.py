"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """An account able to own viewing profiles."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(120), unique=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    profile_pic: Mapped[str] = mapped_column(String(512), default="")
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Profile(Base):
    """A viewing profile with its own rating ceiling.

    ``user_id`` is a plain reference rather than a cascading foreign key so
    that removing dependent rows stays an explicit, service-level step.
    """

    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_profile_user_name"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(120))
    avatar: Mapped[str] = mapped_column(String(512), default="")
    kind: Mapped[str] = mapped_column(String(16), default="adult")
    max_content_rating: Mapped[str] = mapped_column(String(8), default="NC-17")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class ContentItem(Base):
    """A catalog entry (an anime series or film)."""

    __tablename__ = "content_items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(255), unique=True)
    image_url: Mapped[str] = mapped_column(String(512), default="")
    synopsis: Mapped[str] = mapped_column(Text, default="")
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    season_count: Mapped[int] = mapped_column(Integer, default=1)
    episode_count: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(16), default="airing")
    release_year: Mapped[int] = mapped_column(Integer)
    studio: Mapped[str] = mapped_column(String(255))
    content_rating: Mapped[str] = mapped_column(String(8), default="PG-13", index=True)
    external_id: Mapped[str | None] = mapped_column(
        String(64), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class WatchlistEntry(Base):
    """Membership of a content item in a profile's watchlist."""

    __tablename__ = "watchlist_entries"
    __table_args__ = (
        UniqueConstraint("profile_id", "content_id", name="uq_watchlist_profile_content"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    profile_id: Mapped[str] = mapped_column(String(32), index=True)
    content_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("content_items.id", ondelete="CASCADE")
    )
    status: Mapped[str] = mapped_column(String(16), default="plan_to_watch")
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_watched: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
