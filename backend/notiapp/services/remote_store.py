# @TASK P2-T2.1 - Remote store repositories (notes + push subscriptions)
# @TEST tests/test_remote_store.py

"""Storage abstraction behind the remote data and push endpoints.

The API routers depend only on the two repository protocols below; the
SQLAlchemy implementations work against any async engine (PostgreSQL in
production, SQLite in tests).

Note dedup is keyed by ``client_id``.  The repository checks for an
existing row before inserting and *also* relies on the unique constraint
on ``remote_notes.client_id``: when two identical writes race past the
existence check, the loser's ``IntegrityError`` is reported as
``already_exists`` instead of a failure.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from notiapp.config import get_settings
from notiapp.constants import NoteSource, RemoteSyncStatus
from notiapp.models import PushSubscription, RemoteNote
from notiapp.schemas import SubscriptionInfo, UserData

logger = logging.getLogger(__name__)


class NoteRepository(Protocol):
    async def save_once(
        self,
        client_id: str,
        text: str,
        *,
        created_at: datetime | None = None,
        source: str = NoteSource.ONLINE,
    ) -> RemoteSyncStatus: ...

    async def list_recent(self, limit: int = 100) -> list[RemoteNote]: ...


class SubscriptionRepository(Protocol):
    async def upsert(self, subscription: SubscriptionInfo, user_data: UserData | None) -> PushSubscription: ...

    async def get(self, endpoint: str) -> PushSubscription | None: ...

    async def delete(self, endpoint: str) -> bool: ...

    async def list_all(self) -> list[PushSubscription]: ...


class SqlNoteRepository:
    """Remote notes persisted through an SQLAlchemy async session.

    Args:
        db: An SQLAlchemy async session (caller manages commit).
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def exists(self, client_id: str) -> bool:
        result = await self._db.execute(select(RemoteNote.id).where(RemoteNote.client_id == client_id))
        return result.scalar_one_or_none() is not None

    async def save_once(
        self,
        client_id: str,
        text: str,
        *,
        created_at: datetime | None = None,
        source: str = NoteSource.ONLINE,
    ) -> RemoteSyncStatus:
        """Insert a note unless one with *client_id* already exists.

        Returns:
            ``RemoteSyncStatus.SYNCED`` when a row was written,
            ``RemoteSyncStatus.ALREADY_EXISTS`` otherwise.
        """
        if await self.exists(client_id):
            return RemoteSyncStatus.ALREADY_EXISTS

        now = datetime.now(UTC)
        note = RemoteNote(
            client_id=client_id,
            text=text,
            source=str(source),
            created_at=created_at or now,
            synced_at=now,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(note)
        except IntegrityError:
            logger.info("[RemoteStore] Concurrent insert for client_id=%s resolved as duplicate", client_id)
            return RemoteSyncStatus.ALREADY_EXISTS
        return RemoteSyncStatus.SYNCED

    async def list_recent(self, limit: int = 100) -> list[RemoteNote]:
        result = await self._db.execute(
            select(RemoteNote).order_by(RemoteNote.created_at.desc(), RemoteNote.id.desc()).limit(limit)
        )
        return list(result.scalars().all())


class SqlSubscriptionRepository:
    """Push subscriptions persisted through an SQLAlchemy async session.

    Args:
        db: An SQLAlchemy async session (caller manages commit).
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, endpoint: str) -> PushSubscription | None:
        result = await self._db.execute(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
        return result.scalar_one_or_none()

    async def upsert(self, subscription: SubscriptionInfo, user_data: UserData | None) -> PushSubscription:
        """Create or replace the subscription stored for ``subscription.endpoint``."""
        settings = get_settings()
        user_data = user_data or UserData()
        values = {
            "keys": subscription.keys.model_dump() if subscription.keys else {},
            "user_name": user_data.user_name or settings.DEFAULT_USER_NAME,
            "preferences": list(user_data.preferences),
            "subscribed_at": user_data.subscribed_at or datetime.now(UTC).isoformat(),
            "user_agent": user_data.user_agent or "",
            "language": user_data.language or settings.DEFAULT_LANGUAGE,
        }

        existing = await self.get(subscription.endpoint)
        if existing is None:
            row = PushSubscription(endpoint=subscription.endpoint, **values)
            try:
                async with self._db.begin_nested():
                    self._db.add(row)
                return row
            except IntegrityError:
                # Lost a race with an identical subscribe; fall through to update.
                existing = await self.get(subscription.endpoint)
                if existing is None:
                    raise

        for name, value in values.items():
            setattr(existing, name, value)
        await self._db.flush()
        return existing

    async def delete(self, endpoint: str) -> bool:
        result = await self._db.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
        return (result.rowcount or 0) > 0

    async def list_all(self) -> list[PushSubscription]:
        result = await self._db.execute(select(PushSubscription).order_by(PushSubscription.id))
        return list(result.scalars().all())
