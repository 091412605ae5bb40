# @TASK P2-T2.1 - Named response caches (cache generations)
# @TEST tests/test_cache_storage.py

"""Named response caches backed by their own SQLite database.

A *cache generation* is one named cache (``notiapp-v1``,
``notiapp-dynamic-v1``).  Entries are keyed by absolute URL and a ``put``
overwrites the previous entry for the same URL.  ``CacheStorage.match``
looks through every cache in creation order and returns the first hit.

Responses are stored fully read: the body is kept decoded, so
``content-encoding``, ``content-length`` and ``transfer-encoding`` are
dropped and recomputed when the response is rebuilt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager, nullcontext

import httpx
from sqlalchemy import BigInteger, ForeignKey, Integer, LargeBinary, String, UniqueConstraint, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import JSON

from notiapp.config import get_settings
from notiapp.utils.datetime_utils import now_ms

logger = logging.getLogger(__name__)

_HOP_HEADERS = frozenset({"content-encoding", "content-length", "transfer-encoding"})

Fetcher = Callable[[str], Awaitable[httpx.Response]]


class CacheBase(DeclarativeBase):
    pass


class CacheName(CacheBase):
    __tablename__ = "caches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)

    __table_args__ = ({"sqlite_autoincrement": True},)


class CacheEntry(CacheBase):
    __tablename__ = "cache_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cache_id: Mapped[int] = mapped_column(Integer, ForeignKey("caches.id"), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    headers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
    stored_at: Mapped[int] = mapped_column(BigInteger, nullable=False, default=now_ms)

    __table_args__ = (UniqueConstraint("cache_id", "url", name="uq_cache_entries_cache_url"),)


class CacheError(Exception):
    """Raised when a cache operation cannot complete.

    Attributes:
        cache_name: Name of the cache involved, if any.
        message: A human-readable description.
    """

    def __init__(self, message: str, cache_name: str | None = None) -> None:
        self.cache_name = cache_name
        self.message = message
        super().__init__(message)


def snapshot(response: httpx.Response) -> httpx.Response:
    """Rebuild a fully-read *response* so it can be returned more than once."""
    headers = [(k, v) for k, v in response.headers.multi_items() if k.lower() not in _HOP_HEADERS]
    return httpx.Response(response.status_code, headers=headers, content=response.content)


def _to_response(entry: CacheEntry) -> httpx.Response:
    return httpx.Response(
        entry.status_code,
        headers=[(k, v) for k, v in entry.headers],
        content=entry.body,
    )


class Cache:
    """One named cache.  Obtain instances through :meth:`CacheStorage.open`."""

    def __init__(self, storage: CacheStorage, cache_id: int, name: str) -> None:
        self._storage = storage
        self._cache_id = cache_id
        self.name = name

    def __repr__(self) -> str:
        return f"Cache({self.name!r})"

    async def match(self, url: str) -> httpx.Response | None:
        async with self._storage.session() as session:
            entry = await session.scalar(
                select(CacheEntry).where(CacheEntry.cache_id == self._cache_id, CacheEntry.url == url)
            )
        return _to_response(entry) if entry is not None else None

    async def keys(self) -> list[str]:
        async with self._storage.session() as session:
            result = await session.execute(
                select(CacheEntry.url).where(CacheEntry.cache_id == self._cache_id).order_by(CacheEntry.id)
            )
            return list(result.scalars().all())

    async def put(self, url: str, response: httpx.Response) -> None:
        """Store *response* under *url*, replacing any previous entry."""
        await self._write([(url, response)])

    async def add_all(self, urls: Iterable[str], fetch: Fetcher) -> None:
        """Fetch every URL, then store all responses in one transaction.

        Nothing is written unless every fetch succeeds with a 2xx status.

        Raises:
            CacheError: A response was not successful or the write failed.
            httpx.HTTPError: A fetch failed at the transport level.
        """
        fetched: list[tuple[str, httpx.Response]] = []
        for url in urls:
            response = await fetch(url)
            if not response.is_success:
                raise CacheError(f"Request for {url} failed with status {response.status_code}", self.name)
            fetched.append((url, response))
        await self._write(fetched)
        logger.info("[Cache] %s: stored %d response(s)", self.name, len(fetched))

    async def delete(self, url: str) -> bool:
        async with self._storage.session(write=True) as session:
            result = await session.execute(
                delete(CacheEntry).where(CacheEntry.cache_id == self._cache_id, CacheEntry.url == url)
            )
        return (result.rowcount or 0) > 0

    async def _write(self, items: list[tuple[str, httpx.Response]]) -> None:
        async with self._storage.session(write=True) as session:
            for url, response in items:
                headers = [[k, v] for k, v in response.headers.multi_items() if k.lower() not in _HOP_HEADERS]
                entry = await session.scalar(
                    select(CacheEntry).where(CacheEntry.cache_id == self._cache_id, CacheEntry.url == url)
                )
                if entry is None:
                    entry = CacheEntry(cache_id=self._cache_id, url=url)
                    session.add(entry)
                entry.status_code = response.status_code
                entry.headers = headers
                entry.body = response.content
                entry.stored_at = now_ms()


class CacheStorage:
    """All named caches of one origin.

    Args:
        url: SQLAlchemy async URL; defaults to ``CACHE_DATABASE_URL``.
    """

    def __init__(self, url: str | None = None) -> None:
        self._url = url or get_settings().CACHE_DATABASE_URL
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._session_factory is not None:
            return
        engine = create_async_engine(self._url, echo=False)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(CacheBase.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            await engine.dispose()
            raise CacheError(f"Cannot open cache storage: {exc}") from exc
        self._engine = engine
        self._session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    @asynccontextmanager
    async def session(self, *, write: bool = False) -> AsyncIterator[AsyncSession]:
        """Session scope; writes are serialised and committed on exit."""
        if self._session_factory is None:
            raise CacheError("Cache storage is not connected")

        guard = self._write_lock if write else nullcontext()
        async with guard:
            async with self._session_factory() as session:
                try:
                    yield session
                    if write:
                        await session.commit()
                except SQLAlchemyError as exc:
                    await session.rollback()
                    logger.error("[CacheStorage] Operation failed: %s", exc)
                    raise CacheError(f"Cache operation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Named caches
    # ------------------------------------------------------------------

    async def open(self, name: str) -> Cache:
        """Return the cache called *name*, creating it if needed."""
        async with self.session(write=True) as session:
            row = await session.scalar(select(CacheName).where(CacheName.name == name))
            if row is None:
                row = CacheName(name=name)
                session.add(row)
                await session.flush()
                logger.debug("[CacheStorage] Created cache %s", name)
        return Cache(self, row.id, row.name)

    async def has(self, name: str) -> bool:
        async with self.session() as session:
            return await session.scalar(select(CacheName.id).where(CacheName.name == name)) is not None

    async def keys(self) -> list[str]:
        """Cache names in creation order."""
        async with self.session() as session:
            result = await session.execute(select(CacheName.name).order_by(CacheName.id))
            return list(result.scalars().all())

    async def delete(self, name: str) -> bool:
        async with self.session(write=True) as session:
            cache_id = await session.scalar(select(CacheName.id).where(CacheName.name == name))
            if cache_id is None:
                return False
            await session.execute(delete(CacheEntry).where(CacheEntry.cache_id == cache_id))
            await session.execute(delete(CacheName).where(CacheName.id == cache_id))
        logger.info("[CacheStorage] Deleted cache %s", name)
        return True

    async def match(self, url: str) -> httpx.Response | None:
        hit = await self.match_with_name(url)
        return hit[1] if hit is not None else None

    async def match_with_name(self, url: str) -> tuple[str, httpx.Response] | None:
        """First entry for *url* across caches in creation order, with its cache name."""
        stmt = (
            select(CacheName.name, CacheEntry)
            .join(CacheEntry, CacheEntry.cache_id == CacheName.id)
            .where(CacheEntry.url == url)
            .order_by(CacheName.id)
            .limit(1)
        )
        async with self.session() as session:
            row = (await session.execute(stmt)).first()
        if row is None:
            return None
        name, entry = row
        return name, _to_response(entry)

