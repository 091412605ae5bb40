# @TASK P0-T0.3 - Settings shared by the client runtime and the remote API

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """NotiApp settings shared by the client runtime and the remote API.

    All values are loaded from environment variables.
    A .env file in the working directory is also supported.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Remote store (server side) ---
    DATABASE_URL: str = "postgresql+asyncpg://notiapp:notiapp@db:5432/notiapp"

    # --- Client-side stores ---
    LOCAL_DATABASE_URL: str = "sqlite+aiosqlite:///./notiapp-local.db"
    CACHE_DATABASE_URL: str = "sqlite+aiosqlite:///./notiapp-cache.db"

    # --- Page / network mediator ---
    APP_ORIGIN: str = "http://localhost:3000"
    API_PREFIX: str = "/api/"
    STATIC_CACHE_NAME: str = "notiapp-v1"
    DYNAMIC_CACHE_NAME: str = "notiapp-dynamic-v1"
    STATIC_ASSETS: list[str] = [
        "/",
        "/index.html",
        "/styles.css",
        "/manifest.json",
        "/js/app.js",
        "/js/db.js",
        "/js/push.js",
        "/icons/icon-72.svg",
        "/icons/icon-96.svg",
        "/icons/icon-128.svg",
        "/icons/icon-144.svg",
        "/icons/icon-152.svg",
        "/icons/icon-192.svg",
        "/icons/icon-384.svg",
        "/icons/icon-512.svg",
    ]
    APP_SHELL_PATH: str = "/index.html"
    SW_SKIP_WAITING: bool = True
    HTTP_TIMEOUT: float = 30.0

    # --- Web Push (VAPID) ---
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""  # base64url raw key or PEM path, as accepted by pywebpush
    VAPID_SUBJECT: str = "mailto:notiapp@example.com"
    PUSH_SERVICE_URL: str = "https://push.example.com/send"

    # --- Defaults ---
    DEFAULT_USER_NAME: str = "Usuario"
    DEFAULT_LANGUAGE: str = "es"
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses the asyncpg driver."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings singleton."""
    return Settings()
