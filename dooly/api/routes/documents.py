"""Read-only access to canonical song documents."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException

from dooly.config import NAME_MAX_LENGTH
from dooly.models.song import SongDocument
from dooly.realtime.hub import get_sync_hub

router = APIRouter()


@router.get("/documents", response_model=list[str])
async def list_documents() -> list[str]:
    """Ids of every document referenced since process start."""
    return get_sync_hub().documents.store.ids()


@router.get("/documents/{document_id}", response_model=SongDocument, response_model_by_alias=True)
async def get_document(document_id: str) -> SongDocument:
    """
    Canonical document snapshot.

    Like ``doc.join``, a first reference creates the default song.
    """
    if len(document_id) > NAME_MAX_LENGTH:
        raise HTTPException(status_code=404, detail="Unknown document")
    return get_sync_hub().documents.snapshot(document_id)
