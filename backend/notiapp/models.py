# @TASK P0-T0.5 - Remote store schema (notes + push subscriptions)

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from notiapp.database import Base


class RemoteNote(Base):
    """A note persisted remotely, deduplicated by its client-generated id."""

    __tablename__ = "remote_notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    text: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(20), default="online")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_remote_notes_created_at", "created_at"),)


class PushSubscription(Base):
    """A Web Push subscription, upserted by endpoint."""

    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    endpoint: Mapped[str] = mapped_column(String(2048), unique=True, index=True)
    keys: Mapped[dict] = mapped_column(JSON, default=dict)  # {"p256dh": "...", "auth": "..."}
    user_name: Mapped[str] = mapped_column(String(255), default="Usuario")
    preferences: Mapped[list] = mapped_column(JSON, default=list)
    subscribed_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str] = mapped_column(String(512), default="")
    language: Mapped[str] = mapped_column(String(16), default="es")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
