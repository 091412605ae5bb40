"""NotiApp: offline-first notes with a caching network mediator and Web Push."""

__version__ = "0.1.0"
