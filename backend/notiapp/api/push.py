# @TASK P4-T4.3 - Web Push endpoints
# @TEST tests/test_api_push.py

"""Push subscription and delivery endpoints.

Provides:
- ``GET  /push/vapid-key``     -- public application-server key
- ``POST /push/subscribe``     -- upsert a subscription by endpoint (201)
- ``POST /push/unsubscribe``   -- remove a subscription
- ``POST /push/send``          -- personalised push to one endpoint (410 when expired)
- ``POST /push/broadcast``     -- push to every subscription, optional preference filter
- ``GET  /push/subscriptions`` -- list stored subscriptions
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from notiapp.config import get_settings
from notiapp.database import get_db
from notiapp.schemas import (
    BroadcastRequest,
    BroadcastResults,
    SendRequest,
    SubscribeRequest,
    SubscriptionSummary,
    UnsubscribeRequest,
    UnsubscribeResponse,
    VapidKeyResponse,
)
from notiapp.services import push_sender
from notiapp.services.push_sender import PushDeliveryError, PushExpiredError
from notiapp.services.remote_store import SqlSubscriptionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["push"])


def get_subscription_repository(db: AsyncSession = Depends(get_db)) -> SqlSubscriptionRepository:  # noqa: B008
    return SqlSubscriptionRepository(db)


@router.get("/vapid-key", response_model=VapidKeyResponse)
async def vapid_key() -> VapidKeyResponse:
    return VapidKeyResponse(public_key=get_settings().VAPID_PUBLIC_KEY)


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    body: SubscribeRequest,
    repo: SqlSubscriptionRepository = Depends(get_subscription_repository),  # noqa: B008
) -> dict:
    if not body.subscription.endpoint:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid subscription")

    row = await repo.upsert(body.subscription, body.user_data)
    logger.info("[Subscribe] %s", row.user_name)
    return {"success": True, "message": "Subscription saved successfully"}


@router.post("/unsubscribe", response_model=UnsubscribeResponse)
async def unsubscribe(
    body: UnsubscribeRequest,
    repo: SqlSubscriptionRepository = Depends(get_subscription_repository),  # noqa: B008
) -> UnsubscribeResponse:
    deleted = await repo.delete(body.endpoint)
    logger.info("[Unsubscribe] removed=%s", deleted)
    return UnsubscribeResponse(success=True, deleted=deleted)


@router.post("/send")
async def send(
    body: SendRequest,
    db: AsyncSession = Depends(get_db),  # noqa: B008
) -> dict:
    repo = SqlSubscriptionRepository(db)
    subscription = await repo.get(body.endpoint)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

    payload = push_sender.personalize_notification(body.notification, subscription)
    try:
        await push_sender.deliver(subscription, payload)
    except PushExpiredError:
        await repo.delete(body.endpoint)
        # Commit before raising: the dependency rolls back on exceptions.
        await db.commit()
        logger.info("[Send] Subscription expired, removed %s...", body.endpoint[:40])
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="Subscription expired") from None
    except PushDeliveryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send notification: {exc.message}",
        ) from exc

    return {"success": True, "message": "Notification sent"}


@router.post("/broadcast")
async def broadcast(
    body: BroadcastRequest,
    repo: SqlSubscriptionRepository = Depends(get_subscription_repository),  # noqa: B008
) -> dict:
    results = BroadcastResults()
    expired: list[str] = []
    preference = body.filter.preference if body.filter else None

    for subscription in await repo.list_all():
        if preference and preference not in (subscription.preferences or []):
            continue
        payload = push_sender.personalize_notification(body.notification, subscription)
        try:
            await push_sender.deliver(subscription, payload)
            results.sent += 1
        except PushExpiredError:
            expired.append(subscription.endpoint)
            results.expired += 1
        except PushDeliveryError:
            results.failed += 1

    for endpoint in expired:
        await repo.delete(endpoint)

    logger.info("[Broadcast] %s", results.model_dump())
    return {"success": True, "results": results.model_dump()}


@router.get("/subscriptions")
async def list_subscriptions(
    repo: SqlSubscriptionRepository = Depends(get_subscription_repository),  # noqa: B008
) -> dict:
    rows = await repo.list_all()
    subscriptions = [
        SubscriptionSummary(
            user_name=row.user_name,
            preferences=list(row.preferences or []),
            subscribed_at=row.subscribed_at,
            endpoint=row.endpoint,
            endpoint_short=row.endpoint[:50] + "...",
        ).to_wire()
        for row in rows
    ]
    return {"total": len(subscriptions), "subscriptions": subscriptions}
