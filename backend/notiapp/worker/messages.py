"""Messages exchanged between the page and the worker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from notiapp.constants import MessageType


@dataclass(frozen=True)
class WorkerMessage:
    """A fire-and-forget message; ``type`` is the only correlation."""

    type: MessageType | str
    payload: dict[str, Any] = field(default_factory=dict)
