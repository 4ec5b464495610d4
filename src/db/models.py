"""SQLAlchemy models for the user directory and call history."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class User(Base):
    """Directory entry: profile, matching preferences and coin balance."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128))
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    gender: Mapped[str] = mapped_column(String(16), default="")
    language: Mapped[str] = mapped_column(String(32), default="")
    location: Mapped[str] = mapped_column(String(128), default="")
    avatar: Mapped[str] = mapped_column(String(512), default="")
    coins: Mapped[int] = mapped_column(default=0)
    created_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(timezone.utc))


class CallRecord(Base):
    """One finished, accepted call."""

    __tablename__ = "call_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    a_phone: Mapped[str] = mapped_column(String(32), index=True)
    b_phone: Mapped[str] = mapped_column(String(32), index=True)
    mode: Mapped[str] = mapped_column(String(16))
    duration_ms: Mapped[int] = mapped_column()
    ended_at: Mapped[datetime] = mapped_column(default=lambda: datetime.now(timezone.utc))
