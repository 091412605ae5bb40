# @TASK P1-T1.2 - Durable local store (versioned SQLite via SQLAlchemy async)
# @TEST tests/test_local_store.py

"""Versioned, durable record store for the page context.

The store keeps four independent collections (notes, notifications,
subscription, settings) in one SQLite file and is the source of truth
while the device is offline.

Schema versioning uses SQLite's ``PRAGMA user_version``.  Opening the
store at a higher version runs the additive upgrade steps in
:data:`SCHEMA_HISTORY`: collections introduced after the stored version are
created, existing collections are left untouched.  Opening a file whose
stored version is *newer* than requested fails.

Writes to one collection are serialised with a per-collection
:class:`asyncio.Lock` held around the whole SQLite transaction, so two
concurrent ``add`` calls never interleave key assignment.  Every write is
committed before the call returns.

Usage::

    store = LocalStore("sqlite+aiosqlite:///./notiapp-local.db")
    await store.open()
    note = await store.add_note("buy milk")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, nullcontext
from typing import Any

from sqlalchemy import Connection, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from notiapp.client.local_models import (
    LocalBase,
    LocalNote,
    NotificationRecord,
    SettingRecord,
    SubscriptionRecord,
)
from notiapp.config import get_settings
from notiapp.constants import CURRENT_SUBSCRIPTION_ID, Collection
from notiapp.utils.datetime_utils import now_ms

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# Tables introduced by each schema version.  Upgrades only ever add.
SCHEMA_HISTORY: dict[int, tuple[str, ...]] = {
    1: ("notes", "notifications", "subscription"),
    2: ("settings",),
}

_MODELS: dict[Collection, type[LocalBase]] = {
    Collection.NOTES: LocalNote,
    Collection.NOTIFICATIONS: NotificationRecord,
    Collection.SUBSCRIPTION: SubscriptionRecord,
    Collection.SETTINGS: SettingRecord,
}

# Secondary lookups accepted by :meth:`LocalStore.get_all`.
_INDEXES: dict[Collection, frozenset[str]] = {
    Collection.NOTES: frozenset({"synced", "client_id"}),
    Collection.NOTIFICATIONS: frozenset({"read"}),
    Collection.SUBSCRIPTION: frozenset({"endpoint"}),
    Collection.SETTINGS: frozenset(),
}


class StoreOpenError(Exception):
    """Raised when the local store cannot be opened or upgraded.

    This is fatal for every component that depends on the store.
    """


class StoreNotOpenError(Exception):
    """Raised when the store is used before :meth:`LocalStore.open`."""

    def __init__(self) -> None:
        super().__init__("Local store is not open")


class StoreOperationError(Exception):
    """Raised when a single store operation fails (constraint, quota, I/O).

    Attributes:
        collection: The collection the operation targeted.
        message: A human-readable description.
    """

    def __init__(self, collection: str, message: str) -> None:
        self.collection = collection
        self.message = message
        super().__init__(f"{collection}: {message}")


class LocalStore:
    """Durable local store with generic CRUD and typed helpers.

    Args:
        url: SQLAlchemy async URL of the SQLite file.  Defaults to
            ``LOCAL_DATABASE_URL``.
        schema_version: Version to open the schema at.
    """

    def __init__(self, url: str | None = None, schema_version: int = SCHEMA_VERSION) -> None:
        if schema_version not in SCHEMA_HISTORY:
            raise ValueError(f"Unknown schema version {schema_version}")
        self._url = url or get_settings().LOCAL_DATABASE_URL
        self._schema_version = schema_version
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._locks: dict[Collection, asyncio.Lock] = {c: asyncio.Lock() for c in Collection}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._session_factory is not None

    @property
    def schema_version(self) -> int:
        return self._schema_version

    async def open(self) -> None:
        """Open the store, upgrading the schema if needed.

        Raises:
            StoreOpenError: The file cannot be opened, is newer than this
                schema version, or the upgrade fails.
        """
        if self.is_ready:
            return

        try:
            engine = create_async_engine(self._url, echo=False)
        except SQLAlchemyError as exc:
            raise StoreOpenError(f"Invalid local store URL: {exc}") from exc

        try:
            async with engine.begin() as conn:
                stored = (await conn.exec_driver_sql("PRAGMA user_version")).scalar() or 0
                if stored > self._schema_version:
                    raise StoreOpenError(
                        f"Stored schema version {stored} is newer than requested {self._schema_version}"
                    )
                if stored < self._schema_version:
                    await conn.run_sync(self._upgrade, stored)
        except StoreOpenError:
            await engine.dispose()
            raise
        except (SQLAlchemyError, OSError) as exc:
            await engine.dispose()
            logger.error("[LocalStore] Error opening database: %s", exc)
            raise StoreOpenError(f"Cannot open local store: {exc}") from exc

        self._engine = engine
        self._session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("[LocalStore] Database opened (schema v%d)", self._schema_version)

    def _upgrade(self, conn: Connection, old_version: int) -> None:
        logger.info("[LocalStore] Upgrading schema v%d -> v%d", old_version, self._schema_version)
        for version in range(old_version + 1, self._schema_version + 1):
            for name in SCHEMA_HISTORY[version]:
                LocalBase.metadata.tables[name].create(conn, checkfirst=True)
        conn.exec_driver_sql(f"PRAGMA user_version = {int(self._schema_version)}")

    async def close(self) -> None:
        """Dispose the engine.  The store can be re-opened afterwards."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def _transaction(self, collection: Collection, *, write: bool) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            raise StoreNotOpenError()

        guard = self._locks[collection] if write else nullcontext()
        async with guard:
            async with self._session_factory() as session:
                try:
                    yield session
                    if write:
                        await session.commit()
                except (SQLAlchemyError, TypeError) as exc:
                    await session.rollback()
                    logger.error("[LocalStore] %s operation failed: %s", collection, exc)
                    raise StoreOperationError(collection, str(exc)) from exc

    # ------------------------------------------------------------------
    # Generic CRUD
    # ------------------------------------------------------------------

    async def add(self, collection: Collection, data: dict[str, Any]) -> Any:
        """Insert a new record; fails on key or unique constraint conflicts."""
        model = _MODELS[collection]
        async with self._transaction(collection, write=True) as session:
            record = model(**data)
            session.add(record)
            await session.flush()
        logger.debug("[LocalStore] Added to %s", collection)
        return record

    async def get(self, collection: Collection, key: Any) -> Any | None:
        async with self._transaction(collection, write=False) as session:
            return await session.get(_MODELS[collection], key)

    async def get_all(self, collection: Collection, index: str | None = None, value: Any = None) -> list[Any]:
        """Return every record, optionally filtered on a declared index."""
        model = _MODELS[collection]
        stmt = select(model)
        if index is not None:
            if index not in _INDEXES[collection]:
                raise ValueError(f"{collection} has no index {index!r}")
            stmt = stmt.where(getattr(model, index) == value)

        async with self._transaction(collection, write=False) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update(self, collection: Collection, data: dict[str, Any] | LocalBase) -> Any:
        """Insert or replace a record by primary key (put semantics)."""
        model = _MODELS[collection]
        record = model(**data) if isinstance(data, dict) else data
        async with self._transaction(collection, write=True) as session:
            merged = await session.merge(record)
            await session.flush()
        return merged

    async def delete(self, collection: Collection, key: Any) -> bool:
        """Delete by primary key.  Returns whether a record existed."""
        async with self._transaction(collection, write=True) as session:
            record = await session.get(_MODELS[collection], key)
            if record is None:
                return False
            await session.delete(record)
        logger.debug("[LocalStore] Deleted from %s: %s", collection, key)
        return True

    async def clear(self, collection: Collection) -> None:
        async with self._transaction(collection, write=True) as session:
            await session.execute(delete(_MODELS[collection]))
        logger.info("[LocalStore] Cleared %s", collection)

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def add_note(self, text: str, client_id: str | None = None) -> LocalNote:
        data: dict[str, Any] = {"text": text, "created_at": now_ms(), "synced": False}
        if client_id:
            data["client_id"] = client_id
        return await self.add(Collection.NOTES, data)

    async def get_all_notes(self) -> list[LocalNote]:
        """All notes, newest first."""
        notes = await self.get_all(Collection.NOTES)
        return sorted(notes, key=lambda n: (n.created_at, n.id), reverse=True)

    async def delete_note(self, note_id: int) -> bool:
        return await self.delete(Collection.NOTES, note_id)

    async def get_unsynced_notes(self) -> list[LocalNote]:
        return await self.get_all(Collection.NOTES, "synced", False)

    async def mark_note_synced(self, note_id: int) -> LocalNote | None:
        async with self._transaction(Collection.NOTES, write=True) as session:
            note = await session.get(LocalNote, note_id)
            if note is not None:
                note.synced = True
        return note

    async def mark_note_synced_by_client_id(self, client_id: str) -> bool:
        async with self._transaction(Collection.NOTES, write=True) as session:
            result = await session.execute(
                update(LocalNote).where(LocalNote.client_id == client_id).values(synced=True)
            )
        return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def add_notification(
        self,
        title: str,
        body: str = "",
        data: dict | None = None,
        received_at: int | None = None,
    ) -> NotificationRecord:
        return await self.add(
            Collection.NOTIFICATIONS,
            {
                "title": title,
                "body": body,
                "data": data or {},
                "received_at": received_at or now_ms(),
                "read": False,
            },
        )

    async def get_all_notifications(self) -> list[NotificationRecord]:
        """All notifications, newest first."""
        records = await self.get_all(Collection.NOTIFICATIONS)
        return sorted(records, key=lambda n: (n.received_at, n.id), reverse=True)

    async def get_unread_notifications(self) -> list[NotificationRecord]:
        return await self.get_all(Collection.NOTIFICATIONS, "read", False)

    async def mark_notification_read(self, notification_id: int) -> NotificationRecord | None:
        async with self._transaction(Collection.NOTIFICATIONS, write=True) as session:
            record = await session.get(NotificationRecord, notification_id)
            if record is not None:
                record.read = True
        return record

    async def clear_notifications(self) -> None:
        await self.clear(Collection.NOTIFICATIONS)

    # ------------------------------------------------------------------
    # Subscription (singleton)
    # ------------------------------------------------------------------

    async def save_subscription(
        self,
        endpoint: str,
        keys: dict | None = None,
        user_name: str | None = None,
        preferences: list[str] | None = None,
    ) -> SubscriptionRecord:
        """Create or replace the ``"current"`` subscription record."""
        return await self.update(
            Collection.SUBSCRIPTION,
            {
                "id": CURRENT_SUBSCRIPTION_ID,
                "endpoint": endpoint,
                "keys": keys or {},
                "user_name": user_name,
                "preferences": list(preferences or []),
                "created_at": now_ms(),
            },
        )

    async def get_subscription(self) -> SubscriptionRecord | None:
        return await self.get(Collection.SUBSCRIPTION, CURRENT_SUBSCRIPTION_ID)

    async def delete_subscription(self) -> bool:
        return await self.delete(Collection.SUBSCRIPTION, CURRENT_SUBSCRIPTION_ID)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_setting(self, key: str, value: Any) -> Any:
        await self.update(Collection.SETTINGS, {"key": key, "value": value})
        return value

    async def get_setting(self, key: str, default: Any = None) -> Any:
        record = await self.get(Collection.SETTINGS, key)
        return record.value if record is not None else default
