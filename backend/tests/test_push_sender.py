# @TASK P2-T2.2 - Web Push delivery tests
# @TEST tests/test_push_sender.py

"""Tests for payload personalisation and pywebpush error mapping."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from pywebpush import WebPushException

from notiapp.models import PushSubscription
from notiapp.schemas import NotificationContent
from notiapp.services.push_sender import (
    PushDeliveryError,
    PushExpiredError,
    deliver,
    personalize_notification,
)


def _subscription() -> PushSubscription:
    return PushSubscription(
        endpoint="https://push.notiapp.test/send/xyz",
        keys={"p256dh": "BPk", "auth": "aut"},
        user_name="Ana",
        preferences=["news"],
    )


class TestPersonalize:
    def test_defaults_and_user_data(self):
        payload = personalize_notification(NotificationContent(data={"type": "test"}), _subscription())

        assert payload["title"] == "NotiApp"
        assert payload["body"] == ""
        assert payload["tag"].startswith("notiapp-")
        assert payload["data"]["type"] == "test"
        assert payload["data"]["userName"] == "Ana"
        assert payload["data"]["preferences"] == ["news"]
        assert "personalizedAt" in payload["data"]

    def test_explicit_fields_win(self):
        content = NotificationContent(title="T", body="B", icon="/i.png", badge="/b.png", tag="t-1")

        payload = personalize_notification(content, _subscription())

        assert (payload["title"], payload["body"], payload["icon"], payload["badge"], payload["tag"]) == (
            "T",
            "B",
            "/i.png",
            "/b.png",
            "t-1",
        )


class TestDeliver:
    @pytest.mark.asyncio
    async def test_deliver_calls_webpush_with_vapid_claims(self):
        with patch("notiapp.services.push_sender.webpush") as mock_webpush:
            await deliver(_subscription(), {"title": "x"})

        kwargs = mock_webpush.call_args.kwargs
        assert kwargs["subscription_info"]["endpoint"] == "https://push.notiapp.test/send/xyz"
        assert json.loads(kwargs["data"]) == {"title": "x"}
        assert kwargs["vapid_claims"] == {"sub": "mailto:test@notiapp.test"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [404, 410])
    async def test_gone_subscription_is_expired(self, status_code):
        error = WebPushException("gone", response=MagicMock(status_code=status_code))
        with patch("notiapp.services.push_sender.webpush", side_effect=error):
            with pytest.raises(PushExpiredError) as exc_info:
                await deliver(_subscription(), {})

        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_failure_without_response(self):
        with patch("notiapp.services.push_sender.webpush", side_effect=WebPushException("no route")):
            with pytest.raises(PushDeliveryError) as exc_info:
                await deliver(_subscription(), {})

        assert not isinstance(exc_info.value, PushExpiredError)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_missing_vapid_key(self):
        settings = MagicMock(VAPID_PRIVATE_KEY="")
        with patch("notiapp.services.push_sender.get_settings", return_value=settings):
            with pytest.raises(PushDeliveryError, match="VAPID"):
                await deliver(_subscription(), {})
