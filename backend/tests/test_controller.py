# @TASK P4-T4.1 - Application controller tests
# @TEST tests/test_controller.py

"""End-to-end tests of one page with its worker, local store and the
remote API, all in-process."""

from __future__ import annotations

import json
import os
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from pywebpush import WebPushException

from notiapp.client.controller import NotiApp
from notiapp.client.local_store import LocalStore
from notiapp.client.push_platform import LocalPushPlatform
from notiapp.constants import SYNC_TAG, MessageType, NoticeLevel, PermissionState, WorkerState
from notiapp.worker.cache_storage import CacheStorage
from notiapp.worker.messages import WorkerMessage
from notiapp.worker.service_worker import ServiceWorker

ORIGIN = os.environ["APP_ORIGIN"]


def _make_app(tmp_path, network, **kwargs) -> NotiApp:
    kwargs.setdefault("store", LocalStore(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}"))
    return NotiApp(
        network=network,
        caches=CacheStorage(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"),
        push_platform=LocalPushPlatform(permission=PermissionState.GRANTED),
        origin=ORIGIN,
        static_assets=list(network.files),
        **kwargs,
    )


def _messages(app: NotiApp, level: NoticeLevel | None = None) -> list[str]:
    return [n.message for n in app.state.notices if level is None or n.level == level]


@pytest_asyncio.fixture
async def app(tmp_path, site_with_api):
    app = _make_app(tmp_path, site_with_api)
    await app.init()
    yield app
    await app.close()


async def _remote_client_ids(test_client) -> list[str]:
    data = (await test_client.get("/api/data/list")).json()
    return [item["clientId"] for item in data["items"]]


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestInit:
    @pytest.mark.asyncio
    async def test_init_activates_worker_and_controls_page(self, app):
        assert app.state.disabled is False
        assert app.state.worker_active is True
        assert app.page.controller is app.registration.active
        assert app.state.push.supported is True
        assert app.state.push.subscribed is False
        assert app.state.notes == []

    @pytest.mark.asyncio
    async def test_store_open_failure_disables_app(self, tmp_path, site_with_api):
        broken = LocalStore(f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'local.db'}")
        app = _make_app(tmp_path, site_with_api, store=broken)

        await app.init()

        assert app.state.disabled is True
        assert "Almacenamiento local no disponible" in _messages(app, NoticeLevel.ERROR)
        assert await app.add_note("x") is None
        assert "Error al guardar nota" in _messages(app, NoticeLevel.ERROR)
        await app.close()

    @pytest.mark.asyncio
    async def test_worker_install_failure_keeps_app_usable(self, tmp_path, site_with_api):
        app = _make_app(tmp_path, site_with_api)
        app._static_assets = ["/", "/missing.js"]

        await app.init()

        assert app.state.worker_active is False
        assert "Error al registrar Service Worker" in _messages(app, NoticeLevel.ERROR)
        note = await app.add_note("still works")
        assert note.synced is True
        await app.close()


# ---------------------------------------------------------------------------
# Notes and sync
# ---------------------------------------------------------------------------


class TestNotes:
    @pytest.mark.asyncio
    async def test_add_note_online_is_synced(self, app, test_client):
        note = await app.add_note("  hello  ")

        assert note.text == "hello"
        assert note.synced is True
        assert [n.client_id for n in app.state.notes] == [note.client_id]
        assert "Nota guardada y sincronizada" in _messages(app, NoticeLevel.SUCCESS)
        assert await _remote_client_ids(test_client) == [note.client_id]

    @pytest.mark.asyncio
    async def test_blank_note_is_rejected(self, app):
        assert await app.add_note("   ") is None

        assert _messages(app, NoticeLevel.WARNING) == ["Escribe algo para guardar"]
        assert await app.store.get_all_notes() == []

    @pytest.mark.asyncio
    async def test_buy_milk_offline_then_reconnect(self, app, site_with_api, test_client):
        site_with_api.online = False
        await app.set_online(False)

        note = await app.add_note("buy milk")

        assert note.synced is False
        assert "Guardado offline - Se sincronizará cuando haya internet" in _messages(app, NoticeLevel.INFO)
        assert "Sin conexión - Modo offline activado" in _messages(app, NoticeLevel.WARNING)

        site_with_api.online = True
        await app.set_online(True)

        assert app.state.online is True
        assert "Conexión restaurada" in _messages(app, NoticeLevel.SUCCESS)
        assert "1 nota(s) sincronizada(s) con el servidor" in _messages(app, NoticeLevel.SUCCESS)
        assert app.state.notes[0].synced is True
        assert await _remote_client_ids(test_client) == [note.client_id]

    @pytest.mark.asyncio
    async def test_sync_failure_is_reported(self, app, site_with_api):
        await app.set_online(False)
        await app.add_note("pending")
        site_with_api.online = False

        await app.set_online(True)

        assert "Error al sincronizar con el servidor" in _messages(app, NoticeLevel.ERROR)
        assert len(await app.store.get_unsynced_notes()) == 1

    @pytest.mark.asyncio
    async def test_sync_data_offline_does_nothing(self, app):
        await app.set_online(False)

        assert await app.sync_data() is None

    @pytest.mark.asyncio
    async def test_delete_note(self, app):
        note = await app.add_note("gone")

        assert await app.delete_note(note.id) is True
        assert app.state.notes == []


# ---------------------------------------------------------------------------
# Worker messages and notification history
# ---------------------------------------------------------------------------


class TestWorkerMessages:
    @pytest.mark.asyncio
    async def test_push_is_recorded_in_history(self, app):
        worker = app.registration.active

        await worker.handle_push(json.dumps({"title": "Hola", "body": "Mundo", "data": {"k": 1}}))
        handled = await app.pump_messages()

        assert handled == 1
        assert [(n.title, n.body, n.data) for n in app.state.notifications] == [("Hola", "Mundo", {"k": 1})]
        assert app.state.notifications[0].read is False

    @pytest.mark.asyncio
    async def test_sync_complete_reloads_data(self, app):
        await app.store.add_note("written elsewhere")

        await app.registration.active.handle_sync(SYNC_TAG)
        await app.pump_messages()

        assert [n.text for n in app.state.notes] == ["written elsewhere"]

    @pytest.mark.asyncio
    async def test_unknown_message_is_ignored(self, app):
        await app.handle_worker_message(WorkerMessage("SOMETHING_ELSE", {}))

        assert app.state.notifications == []

    @pytest.mark.asyncio
    async def test_post_to_worker(self, app):
        assert app.post_to_worker(WorkerMessage(MessageType.CACHE_URLS, {"urls": ["/styles.css"]})) is True
        await app.registration.active.wait_idle()

    @pytest.mark.asyncio
    async def test_post_to_worker_without_controller(self, tmp_path, site):
        app = _make_app(tmp_path, site)

        assert app.post_to_worker(WorkerMessage(MessageType.SKIP_WAITING)) is False
        await app.close()

    @pytest.mark.asyncio
    async def test_apply_update_promotes_waiting_worker(self, app, site_with_api):
        current = app.registration.active
        newer = ServiceWorker(
            caches=app.caches,
            network=site_with_api,
            clients=app.clients,
            notifications=app.notification_tray,
            origin=ORIGIN,
            static_cache_name="notiapp-v2",
            static_assets=list(site_with_api.files),
            skip_waiting_on_install=False,
        )
        await app.registration.register(newer)
        assert app.registration.waiting is newer
        app.state.update_available = True

        assert await app.apply_update() is True

        assert app.registration.active is newer
        assert app.registration.waiting is None
        assert app.page.controller is newer
        assert app.state.update_available is False
        assert current.state == WorkerState.REDUNDANT

    @pytest.mark.asyncio
    async def test_apply_update_without_waiting_worker(self, app):
        assert await app.apply_update() is False

    @pytest.mark.asyncio
    async def test_acknowledge_and_clear_history(self, app):
        record = await app.store.add_notification("t", "b")

        assert await app.acknowledge_notification(record.id) is True
        assert app.state.notifications[0].read is True

        await app.clear_history()
        assert app.state.notifications == []
        assert "Historial limpiado" in _messages(app, NoticeLevel.SUCCESS)


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class TestPush:
    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, app, test_client):
        assert await app.subscribe("  Ana  ", ["news"]) is True

        assert app.state.push.subscribed is True
        assert app.state.push.user_name == "Ana"
        assert "¡Notificaciones activadas!" in _messages(app, NoticeLevel.SUCCESS)

        assert await app.unsubscribe() is True

        assert app.state.push.subscribed is False
        assert (await test_client.get("/api/push/subscriptions")).json()["total"] == 0
        assert "Notificaciones desactivadas" in _messages(app, NoticeLevel.INFO)

    @pytest.mark.asyncio
    async def test_subscribe_denied(self, tmp_path, site_with_api):
        async def deny() -> bool:
            return False

        app = _make_app(tmp_path, site_with_api)
        app.registration.push_manager = LocalPushPlatform(prompt=deny)
        await app.init()

        assert await app.subscribe("Ana") is False

        assert app.state.push.permission == PermissionState.DENIED
        assert any(m.startswith("Error al activar notificaciones") for m in _messages(app, NoticeLevel.ERROR))
        await app.close()

    @pytest.mark.asyncio
    async def test_send_test_notification(self, app):
        await app.subscribe("Ana")

        with patch("notiapp.services.push_sender._send") as mock_send:
            assert await app.send_test_notification() is True

        mock_send.assert_called_once()
        assert "Notificación enviada" in _messages(app, NoticeLevel.SUCCESS)

    @pytest.mark.asyncio
    async def test_expired_subscription_warns(self, app):
        await app.subscribe("Ana")
        expired = WebPushException("gone", response=MagicMock(status_code=410))

        with patch("notiapp.services.push_sender._send", side_effect=expired):
            assert await app.send_test_notification("t", "b") is False

        assert "La suscripción ha expirado. Vuelve a suscribirte." in _messages(app, NoticeLevel.WARNING)
        assert app.state.push.subscribed is False
        assert await app.store.get_subscription() is None

    @pytest.mark.asyncio
    async def test_send_without_subscription_falls_back_to_local(self, app):
        assert await app.send_test_notification("Local", "only") is False

        assert "Notificación mostrada localmente" in _messages(app, NoticeLevel.INFO)
        assert [n.title for n in await app.notification_tray.get_notifications()] == ["Local"]
        assert [n.title for n in app.state.notifications] == ["Local"]
