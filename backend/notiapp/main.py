# @TASK P0-T0.3 - Remote API application (data + push routers)

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notiapp.config import get_settings
from notiapp.database import create_tables, engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the remote tables on startup, release the pool on shutdown."""
    await create_tables()

    yield
    # Shutdown: dispose the async engine connection pool
    await engine.dispose()


app = FastAPI(
    title="NotiApp",
    description="Remote note store and Web Push dispatch for the NotiApp client",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router includes ---
from notiapp.api.data import router as data_router  # noqa: E402
from notiapp.api.push import router as push_router  # noqa: E402

app.include_router(data_router, prefix="/api")
app.include_router(push_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns a simple status response to verify the API is running.
    """
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}
