# @TASK P0-T0.3 - Test configuration
import base64
import os
from collections.abc import AsyncGenerator

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ORIGIN", "http://notiapp.test")
os.environ.setdefault("VAPID_PRIVATE_KEY", "test-vapid-private-key")
os.environ.setdefault("VAPID_SUBJECT", "mailto:test@notiapp.test")
os.environ.setdefault("PUSH_SERVICE_URL", "https://push.notiapp.test/send")
if "VAPID_PUBLIC_KEY" not in os.environ:
    _vapid_public = ec.generate_private_key(ec.SECP256R1()).public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    os.environ["VAPID_PUBLIC_KEY"] = base64.urlsafe_b64encode(_vapid_public).rstrip(b"=").decode()

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

ORIGIN = os.environ["APP_ORIGIN"]

STATIC_FILES: dict[str, tuple[str, str]] = {
    "/": ("text/html", "<html>NotiApp</html>"),
    "/index.html": ("text/html", "<html>NotiApp</html>"),
    "/styles.css": ("text/css", "body { margin: 0; }"),
    "/manifest.json": ("application/json", '{"name": "NotiApp"}'),
}


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


# ---------------------------------------------------------------------------
# Remote store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def remote_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a fresh SQLite remote store with all tables created."""
    from notiapp.database import Base
    import notiapp.models  # noqa: F401 - Import to register models with Base

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db(remote_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with remote_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def test_app(remote_session_factory):
    """FastAPI app whose requests each get their own committed session."""
    from notiapp.database import get_db
    from notiapp.main import app

    async def override_get_db():
        async with remote_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ---------------------------------------------------------------------------
# Client-side stores
# ---------------------------------------------------------------------------


@pytest.fixture
def local_store_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'local.db'}"


@pytest_asyncio.fixture(scope="function")
async def local_store(local_store_url):
    from notiapp.client.local_store import LocalStore

    store = LocalStore(local_store_url)
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture(scope="function")
async def cache_storage(tmp_path):
    from notiapp.worker.cache_storage import CacheStorage

    storage = CacheStorage(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await storage.connect()
    yield storage
    await storage.close()


# ---------------------------------------------------------------------------
# Simulated network
# ---------------------------------------------------------------------------


class SiteTransport(httpx.AsyncBaseTransport):
    """The app's origin as seen over the network.

    Static files are served from :data:`STATIC_FILES`; ``/api/*`` goes to the
    FastAPI app when one is given.  ``online = False`` makes every request
    fail with :class:`httpx.ConnectError`.
    """

    def __init__(self, api_app=None, files: dict[str, tuple[str, str]] | None = None) -> None:
        self.online = True
        self.files = dict(STATIC_FILES if files is None else files)
        self.requests: list[httpx.Request] = []
        self._api = ASGITransport(app=api_app) if api_app is not None else None

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("Network is unreachable", request=request)
        self.requests.append(request)
        if request.url.path.startswith("/api/"):
            if self._api is None:
                return httpx.Response(404, json={"detail": "Not Found"})
            return await self._api.handle_async_request(request)
        if request.url.path in self.files:
            content_type, body = self.files[request.url.path]
            return httpx.Response(200, headers={"content-type": content_type}, text=body)
        return httpx.Response(404, text="Not Found")


@pytest.fixture
def site() -> SiteTransport:
    return SiteTransport()


@pytest.fixture
def site_with_api(test_app) -> SiteTransport:
    return SiteTransport(api_app=test_app)
