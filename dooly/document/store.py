"""
In-Memory Song Document Store.

Holds the canonical ``SongDocument`` for every document id that has been
referenced since process start.

Key design:
    - One SongDocument per id, created lazily on first reference
    - Documents are replaced wholesale, never mutated in place, so a batch
      that fails half-way leaves the stored document untouched
    - Only the sync hub (single writer) calls ``replace()``
"""

from __future__ import annotations

import logging

from dooly.models.song import SongDocument, new_song_document

logger = logging.getLogger(__name__)


class DocumentStore:
    """
    In-memory store for song documents keyed by id.

    Thread-safety is not required: the store is owned by the hub task and
    every handler runs to completion on one event loop.
    """

    def __init__(self) -> None:
        self._documents: dict[str, SongDocument] = {}

    def get(self, document_id: str) -> SongDocument | None:
        """Get a document by id. Returns None if it was never referenced."""
        return self._documents.get(document_id)

    def get_or_create(self, document_id: str) -> SongDocument:
        """Get a document, creating the default song on first reference."""
        document = self._documents.get(document_id)
        if document is None:
            document = new_song_document(document_id)
            self._documents[document_id] = document
            logger.info(f"Created song document '{document_id}'")
        return document

    def replace(self, document: SongDocument) -> None:
        """Install ``document`` as the canonical version for its id."""
        self._documents[document.id] = document

    def ids(self) -> list[str]:
        return sorted(self._documents)

    def clear(self) -> None:
        """Clear all documents (for testing)."""
        self._documents.clear()

    @property
    def count(self) -> int:
        """Total number of documents."""
        return len(self._documents)


# Singleton instance
_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
    """Get the singleton DocumentStore instance."""
    global _store
    if _store is None:
        _store = DocumentStore()
    return _store


def reset_document_store() -> None:
    """Reset the singleton (for testing)."""
    global _store
    if _store is not None:
        _store.clear()
    _store = None
