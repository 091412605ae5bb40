"""Wire schemas for the remote data and push endpoints.

The JSON contract uses camelCase keys (``clientId``, ``userData``); the
models accept either spelling and serialise with aliases.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialise with camelCase aliases, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class SaveNoteRequest(_WireModel):
    client_id: str | None = Field(default=None, alias="clientId")
    text: str


class SaveNoteResponse(_WireModel):
    success: bool
    id: str


class SyncItem(_WireModel):
    client_id: str = Field(alias="clientId")
    text: str
    timestamp: int  # epoch milliseconds of local creation


class SyncRequest(_WireModel):
    items: list[SyncItem]


class SyncItemResult(_WireModel):
    client_id: str = Field(alias="clientId")
    status: str  # "synced" | "already_exists"


class SyncResponse(_WireModel):
    success: bool
    synced: int
    results: list[SyncItemResult] = []


class RemoteNoteItem(_WireModel):
    client_id: str = Field(alias="clientId")
    text: str
    created_at: str | None = Field(default=None, alias="createdAt")
    source: str | None = None


class NoteListResponse(_WireModel):
    success: bool
    total: int
    items: list[RemoteNoteItem]


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class SubscriptionKeys(_WireModel):
    p256dh: str
    auth: str


class SubscriptionInfo(_WireModel):
    endpoint: str
    keys: SubscriptionKeys | None = None


class UserData(_WireModel):
    user_name: str | None = Field(default=None, alias="userName")
    preferences: list[str] = []
    subscribed_at: str | None = Field(default=None, alias="subscribedAt")
    user_agent: str | None = Field(default=None, alias="userAgent")
    language: str | None = None


class SubscribeRequest(_WireModel):
    subscription: SubscriptionInfo
    user_data: UserData | None = Field(default=None, alias="userData")


class UnsubscribeRequest(_WireModel):
    endpoint: str


class UnsubscribeResponse(_WireModel):
    success: bool
    deleted: bool


class NotificationContent(_WireModel):
    title: str | None = None
    body: str | None = None
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: dict[str, Any] = {}


class SendRequest(_WireModel):
    endpoint: str
    notification: NotificationContent = NotificationContent()


class BroadcastFilter(_WireModel):
    preference: str | None = None


class BroadcastRequest(_WireModel):
    notification: NotificationContent
    filter: BroadcastFilter | None = None


class BroadcastResults(_WireModel):
    sent: int = 0
    failed: int = 0
    expired: int = 0


class SubscriptionSummary(_WireModel):
    user_name: str = Field(alias="userName")
    preferences: list[str]
    subscribed_at: str | None = Field(default=None, alias="subscribedAt")
    endpoint: str
    endpoint_short: str = Field(alias="endpointShort")


class VapidKeyResponse(_WireModel):
    public_key: str = Field(alias="publicKey")
