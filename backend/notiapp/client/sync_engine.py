# @TASK P1-T1.4 - Local notes -> remote store sync engine
# @TEST tests/test_sync_engine.py

"""Reconciliation of unsynced local notes with the remote store.

Per-note state machine::

    CREATED(unsynced) -> SYNC_ATTEMPTED -> SYNCED | UNSYNCED

Two independent triggers move a note forward:

1. **Write path** -- right after a note is persisted locally, and only
   while the page believes it is online, one ``POST /api/data/save`` is
   attempted.  Success marks the note synced; any failure leaves it
   unsynced with no retry scheduled.
2. **Reconnect path** -- on the offline -> online transition every note
   with ``synced=False`` is sent in one ``POST /api/data/sync`` batch.
   Results reported as ``synced`` *or* ``already_exists`` mark the
   matching note synced.  ``already_exists`` covers a note that reached
   the remote while its acknowledgment was lost.

Both paths may run concurrently for the same note; the remote dedups by
``client_id`` so the duplicate attempt is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from notiapp.client.api_client import ApiError, NotiApiClient
from notiapp.client.connectivity import Connectivity
from notiapp.client.local_models import LocalNote
from notiapp.client.local_store import LocalStore
from notiapp.constants import NoteSyncState, RemoteSyncStatus
from notiapp.schemas import SyncItem

logger = logging.getLogger(__name__)

_ACCEPTED_STATUSES: frozenset[str] = frozenset({RemoteSyncStatus.SYNCED, RemoteSyncStatus.ALREADY_EXISTS})


class SyncError(Exception):
    """Raised when a batch sync request fails as a whole.

    Attributes:
        pending: Number of notes that remain unsynced.
        message: A human-readable description.
    """

    def __init__(self, pending: int, message: str) -> None:
        self.pending = pending
        self.message = message
        super().__init__(message)


@dataclass
class SyncResult:
    """Summary of a reconnect-path sync run."""

    attempted: int = 0
    synced: int = 0
    already_existed: int = 0
    unmatched: int = 0
    synced_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def marked(self) -> int:
        """Notes flipped to ``synced=True`` locally."""
        return self.synced + self.already_existed


class SyncEngine:
    """Write-path and reconnect-path synchronisation of local notes.

    Args:
        store: The opened durable local store.
        api: Client for the remote data endpoints.
        connectivity: Believed network state of the page.
    """

    def __init__(self, store: LocalStore, api: NotiApiClient, connectivity: Connectivity) -> None:
        self._store = store
        self._api = api
        self._connectivity = connectivity
        self._states: dict[str, NoteSyncState] = {}

    def state_of(self, client_id: str) -> NoteSyncState | None:
        """Last known sync-state transition for *client_id* in this session."""
        return self._states.get(client_id)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def save_note(self, text: str) -> LocalNote:
        """Persist *text* locally, then push it once if online.

        Local persistence errors propagate; remote errors never do.
        """
        note = await self._store.add_note(text)
        self._states[note.client_id] = NoteSyncState.CREATED

        if not self._connectivity.is_online:
            logger.info("[Sync] Offline: note %s stored locally only", note.client_id)
            return note

        self._states[note.client_id] = NoteSyncState.SYNC_ATTEMPTED
        try:
            await self._api.save_note(note.client_id, note.text)
        except ApiError as exc:
            self._states[note.client_id] = NoteSyncState.UNSYNCED
            logger.info("[Sync] Write-path sync failed for %s: %s", note.client_id, exc.message)
            return note

        synced = await self._store.mark_note_synced(note.id)
        self._states[note.client_id] = NoteSyncState.SYNCED
        return synced or note

    # ------------------------------------------------------------------
    # Reconnect path
    # ------------------------------------------------------------------

    async def sync_pending(self) -> SyncResult:
        """Send every unsynced note in one batch and apply the results.

        Returns:
            A :class:`SyncResult`; ``attempted == 0`` when nothing was pending.

        Raises:
            SyncError: The batch request failed as a whole.
        """
        pending = await self._store.get_unsynced_notes()
        result = SyncResult(attempted=len(pending))
        if not pending:
            logger.info("[Sync] No pending notes to sync")
            return result

        for note in pending:
            self._states[note.client_id] = NoteSyncState.SYNC_ATTEMPTED

        items = [SyncItem(client_id=n.client_id, text=n.text, timestamp=n.created_at) for n in pending]
        logger.info("[Sync] Syncing %d note(s) with the remote store", len(items))
        try:
            response = await self._api.sync_notes(items)
        except ApiError as exc:
            for note in pending:
                self._states[note.client_id] = NoteSyncState.UNSYNCED
            raise SyncError(len(pending), f"Batch sync failed: {exc.message}") from exc

        pending_ids = {n.client_id for n in pending}
        for item in response.results:
            if item.status not in _ACCEPTED_STATUSES or item.client_id not in pending_ids:
                result.unmatched += 1
                continue
            await self._store.mark_note_synced_by_client_id(item.client_id)
            self._states[item.client_id] = NoteSyncState.SYNCED
            if item.status == RemoteSyncStatus.SYNCED:
                result.synced += 1
            else:
                result.already_existed += 1

        for client_id in pending_ids:
            if self._states.get(client_id) != NoteSyncState.SYNCED:
                self._states[client_id] = NoteSyncState.UNSYNCED

        logger.info(
            "[Sync] Sync complete: attempted=%d synced=%d already_existed=%d unmatched=%d",
            result.attempted,
            result.synced,
            result.already_existed,
            result.unmatched,
        )
        return result
