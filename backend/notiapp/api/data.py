# @TASK P4-T4.2 - Note data endpoints
# @TEST tests/test_api_data.py

"""Remote note endpoints.

Provides:
- ``POST /data/save`` -- single-note upsert keyed by ``clientId``
- ``POST /data/sync`` -- batch upsert with per-item dedup status
- ``GET  /data/list`` -- most recent remote notes
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from notiapp.constants import NoteSource, RemoteSyncStatus
from notiapp.database import get_db
from notiapp.schemas import (
    NoteListResponse,
    RemoteNoteItem,
    SaveNoteRequest,
    SaveNoteResponse,
    SyncItemResult,
    SyncRequest,
    SyncResponse,
)
from notiapp.services.remote_store import SqlNoteRepository
from notiapp.utils.datetime_utils import datetime_to_iso, ms_to_datetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data", tags=["data"])


def get_note_repository(db: AsyncSession = Depends(get_db)) -> SqlNoteRepository:  # noqa: B008
    return SqlNoteRepository(db)


@router.post("/save", response_model=SaveNoteResponse)
async def save_note(
    body: SaveNoteRequest,
    repo: SqlNoteRepository = Depends(get_note_repository),  # noqa: B008
) -> SaveNoteResponse:
    client_id = body.client_id or f"online_{uuid.uuid4().hex}"
    status = await repo.save_once(client_id, body.text, source=NoteSource.ONLINE)
    logger.info("[Save] client_id=%s status=%s", client_id, status)
    return SaveNoteResponse(success=True, id=client_id)


@router.post("/sync", response_model=SyncResponse)
async def sync_notes(
    body: SyncRequest,
    repo: SqlNoteRepository = Depends(get_note_repository),  # noqa: B008
) -> SyncResponse:
    results: list[SyncItemResult] = []
    for item in body.items:
        status = await repo.save_once(
            item.client_id,
            item.text,
            created_at=ms_to_datetime(item.timestamp),
            source=NoteSource.OFFLINE_SYNC,
        )
        results.append(SyncItemResult(client_id=item.client_id, status=status))

    synced = sum(1 for r in results if r.status == RemoteSyncStatus.SYNCED)
    logger.info("[Sync] %d item(s) received, %d new", len(results), synced)
    return SyncResponse(success=True, synced=synced, results=results)


@router.get("/list", response_model=NoteListResponse)
async def list_notes(
    limit: int = 100,
    repo: SqlNoteRepository = Depends(get_note_repository),  # noqa: B008
) -> NoteListResponse:
    notes = await repo.list_recent(limit)
    return NoteListResponse(
        success=True,
        total=len(notes),
        items=[
            RemoteNoteItem(
                client_id=n.client_id,
                text=n.text,
                created_at=datetime_to_iso(n.created_at),
                source=n.source,
            )
            for n in notes
        ],
    )
