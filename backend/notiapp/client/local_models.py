# @TASK P1-T1.1 - Local store schema (notes, notifications, subscription, settings)

"""Tables of the durable local store.

These live in the client's own SQLite file and never share metadata with
the remote store models in :mod:`notiapp.models`.
"""

import uuid
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from notiapp.utils.datetime_utils import now_ms


class LocalBase(DeclarativeBase):
    """Declarative base for the durable local store."""


def _new_client_id() -> str:
    return str(uuid.uuid4())


class LocalNote(LocalBase):
    """A note written on this device. ``id`` never leaves the device."""

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String(64), unique=True, default=_new_client_id)
    text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)  # epoch ms
    synced: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_notes_synced", "synced"),
        Index("idx_notes_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )


class NotificationRecord(LocalBase):
    """Notification history entry, created from received push messages."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), default="")
    body: Mapped[str] = mapped_column(Text, default="")
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    received_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)  # epoch ms
    read: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_notifications_read", "read"),
        Index("idx_notifications_received_at", "received_at"),
        {"sqlite_autoincrement": True},
    )


class SubscriptionRecord(LocalBase):
    """The single local copy of the push subscription (``id == "current"``)."""

    __tablename__ = "subscription"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    endpoint: Mapped[str] = mapped_column(String(2048), unique=True)
    keys: Mapped[dict] = mapped_column(JSON, default=dict)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferences: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)


class SettingRecord(LocalBase):
    """Arbitrary JSON value stored under a string key."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
