# @TASK P1-T1.4 - Sync engine tests
# @TEST tests/test_sync_engine.py

"""Tests for the write-path and reconnect-path note sync.

The remote is an ``httpx.MockTransport`` recording every request, so the
tests can assert exactly which calls the engine made.
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest
import pytest_asyncio

from notiapp.client.api_client import NotiApiClient
from notiapp.client.connectivity import Connectivity
from notiapp.client.sync_engine import SyncEngine, SyncError
from notiapp.constants import Collection, NoteSyncState


class FakeRemote:
    """Minimal remote data API keeping notes by clientId."""

    def __init__(self) -> None:
        self.notes: dict[str, str] = {}
        self.calls: list[tuple[str, dict]] = []
        self.fail_with: int | None = None
        self.portal_page = False
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("down", request=request)
        body = json.loads(request.content or b"{}")
        self.calls.append((request.url.path, body))
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"detail": "boom"})
        if self.portal_page:
            return httpx.Response(200, headers={"content-type": "text/html"}, text="<html>Sign in to Wi-Fi</html>")

        if request.url.path == "/api/data/save":
            self.notes.setdefault(body["clientId"], body["text"])
            return httpx.Response(200, json={"success": True, "id": body["clientId"]})

        if request.url.path == "/api/data/sync":
            results = []
            for item in body["items"]:
                if item["clientId"] in self.notes:
                    results.append({"clientId": item["clientId"], "status": "already_exists"})
                else:
                    self.notes[item["clientId"]] = item["text"]
                    results.append({"clientId": item["clientId"], "status": "synced"})
            synced = sum(1 for r in results if r["status"] == "synced")
            return httpx.Response(200, json={"success": True, "synced": synced, "results": results})

        return httpx.Response(404)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest_asyncio.fixture
async def api(remote):
    client = NotiApiClient("http://notiapp.test", transport=httpx.MockTransport(remote.handler))
    yield client
    await client.close()


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


class TestWritePath:
    @pytest.mark.asyncio
    async def test_online_save_marks_synced(self, local_store, api, remote):
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        note = await engine.save_note("hello")

        assert note.synced is True
        assert remote.notes == {note.client_id: "hello"}
        assert engine.state_of(note.client_id) == NoteSyncState.SYNCED

    @pytest.mark.asyncio
    async def test_offline_save_makes_no_request(self, local_store, api, remote):
        engine = SyncEngine(local_store, api, Connectivity(online=False))

        note = await engine.save_note("later")

        assert note.synced is False
        assert remote.calls == []
        assert engine.state_of(note.client_id) == NoteSyncState.CREATED

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_note_unsynced(self, local_store, api, remote):
        remote.fail_with = 500
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        note = await engine.save_note("x")

        assert note.synced is False
        assert [n.client_id for n in await local_store.get_unsynced_notes()] == [note.client_id]
        assert engine.state_of(note.client_id) == NoteSyncState.UNSYNCED
        assert len(remote.calls) == 1  # no retry

    @pytest.mark.asyncio
    async def test_html_body_leaves_note_unsynced(self, local_store, api, remote):
        remote.portal_page = True
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        note = await engine.save_note("buy milk")

        assert note.synced is False
        assert engine.state_of(note.client_id) == NoteSyncState.UNSYNCED
        assert [n.client_id for n in await local_store.get_unsynced_notes()] == [note.client_id]

    @pytest.mark.asyncio
    async def test_unreachable_remote_is_not_raised(self, local_store, api, remote):
        remote.unreachable = True
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        note = await engine.save_note("x")

        assert note.synced is False


# ---------------------------------------------------------------------------
# Reconnect path
# ---------------------------------------------------------------------------


class TestReconnectPath:
    @pytest.mark.asyncio
    async def test_buy_milk_offline_then_online(self, local_store, api, remote):
        connectivity = Connectivity(online=False)
        engine = SyncEngine(local_store, api, connectivity)

        note = await engine.save_note("buy milk")
        stored = await local_store.get_all_notes()
        assert len(stored) == 1 and stored[0].synced is False

        await connectivity.set_online(True)
        result = await engine.sync_pending()

        assert [path for path, _ in remote.calls] == ["/api/data/sync"]
        sent = remote.calls[0][1]["items"]
        assert [item["clientId"] for item in sent] == [note.client_id]
        assert sent[0]["timestamp"] == note.created_at
        assert result.synced == 1
        assert (await local_store.get_all_notes())[0].synced is True

    @pytest.mark.asyncio
    async def test_nothing_pending_makes_no_request(self, local_store, api, remote):
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        result = await engine.sync_pending()

        assert result.attempted == 0
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_already_exists_is_marked_synced(self, local_store, api, remote):
        """A note whose acknowledgment was lost is reconciled as already_exists."""
        note = await local_store.add_note("lost ack")
        remote.notes[note.client_id] = "lost ack"
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        result = await engine.sync_pending()

        assert result.already_existed == 1
        assert result.marked == 1
        assert await local_store.get_unsynced_notes() == []

    @pytest.mark.asyncio
    async def test_repeated_sync_keeps_one_remote_record(self, local_store, api, remote):
        note = await local_store.add_note("once")
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        await engine.sync_pending()
        note.synced = False
        await local_store.update(Collection.NOTES, note)
        second = await engine.sync_pending()

        assert list(remote.notes) == [note.client_id]
        assert second.already_existed == 1

    @pytest.mark.asyncio
    async def test_batch_failure_raises_sync_error(self, local_store, api, remote):
        await local_store.add_note("a")
        await local_store.add_note("b")
        remote.fail_with = 503
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        with pytest.raises(SyncError) as exc_info:
            await engine.sync_pending()

        assert exc_info.value.pending == 2
        assert len(await local_store.get_unsynced_notes()) == 2

    @pytest.mark.asyncio
    async def test_unknown_result_ids_are_ignored(self, local_store, remote):
        note = await local_store.add_note("mine")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"success": True, "synced": 1, "results": [{"clientId": "someone-else", "status": "synced"}]},
            )

        async with NotiApiClient("http://notiapp.test", transport=httpx.MockTransport(handler)) as api:
            result = await SyncEngine(local_store, api, Connectivity()).sync_pending()

        assert result.unmatched == 1
        assert [n.client_id for n in await local_store.get_unsynced_notes()] == [note.client_id]

    @pytest.mark.asyncio
    async def test_html_body_raises_sync_error(self, local_store, api, remote):
        await local_store.add_note("buy milk")
        remote.portal_page = True
        engine = SyncEngine(local_store, api, Connectivity(online=True))

        with pytest.raises(SyncError) as exc_info:
            await engine.sync_pending()

        assert exc_info.value.pending == 1
        assert len(await local_store.get_unsynced_notes()) == 1

    @pytest.mark.asyncio
    async def test_logs_carry_component_prefix(self, local_store, api, caplog):
        connectivity = Connectivity(online=False)
        engine = SyncEngine(local_store, api, connectivity)

        with caplog.at_level(logging.INFO, logger="notiapp"):
            await engine.save_note("later")
            await connectivity.set_online(True)
            await engine.sync_pending()

        watched = ("notiapp.client.sync_engine", "notiapp.client.connectivity")
        messages = [r.getMessage() for r in caplog.records if r.name in watched]
        assert messages
        assert all(m.startswith(("[Sync]", "[Connectivity]")) for m in messages)
