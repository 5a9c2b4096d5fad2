"""
FileVault Retrieval Service — Content fetch, listing, visibility.

Access rules:
- A non-public entry is visible only to its owner
- Anything not visible is reported exactly like a missing entry
- Folders have no content
- Size variants are served from <content_ref>_<width>; a variant that has
  not been derived yet is not found
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Any, List, Optional, Sequence

from filevault.engine.errors import (
    VaultNotFoundError,
    VaultSessionError,
    VaultValidationError,
)
from filevault.engine.logging import (
    AsyncLogQueue,
    LogEntry,
    log_access_denied,
    log_session_rejected,
    log_visibility_changed,
)
from filevault.engine.security import SessionValidator
from filevault.files.catalog import Catalog
from filevault.files.models import (
    ROOT_PARENT_ID,
    Entry,
    FetchedContent,
    is_valid_entry_id,
    normalize_parent_id,
    variant_ref,
)
from filevault.storage.content_store import LocalContentStore

logger = logging.getLogger("filevault.files.retrieval")

DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_PAGE_SIZE = 20


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from filename."""
    mime, _ = mimetypes.guess_type(filename)
    return mime or DEFAULT_MIME_TYPE


class RetrievalService:
    """
    Read-side operations over the catalog and content store.

    Usage:
        retrieval = RetrievalService(catalog, store, sessions)
        content = retrieval.fetch(token, entry_id, size=250)
        page = retrieval.list_entries(owner_id, parent_id, page=0)
    """

    def __init__(
        self,
        catalog: Catalog,
        store: LocalContentStore,
        sessions: SessionValidator,
        widths: Sequence[int] = (500, 250, 100),
        page_size: int = MAX_PAGE_SIZE,
        event_log: Optional[AsyncLogQueue] = None,
    ):
        self._catalog = catalog
        self._store = store
        self._sessions = sessions
        self._widths = tuple(widths)
        self._page_size = page_size
        self._events = event_log

    def _emit(self, entry: LogEntry) -> None:
        if self._events is not None:
            self._events.push(entry)

    def _find(self, entry_id: Any, **filter: Any) -> Optional[Entry]:
        if not is_valid_entry_id(entry_id):
            return None
        return self._catalog.find_one({"id": entry_id, **filter})

    def authenticate(self, token: Optional[str]) -> str:
        """Resolve a bearer token to its owner id for owner-scoped calls."""
        try:
            return self._sessions.authenticate(token)
        except VaultSessionError:
            self._emit(log_session_rejected("missing token" if not token else "unknown token"))
            raise

    # -------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------

    def parse_size(self, size: Any) -> Optional[int]:
        """Map a size selector (int or decimal string) to a canonical width."""
        if size is None:
            return None
        if isinstance(size, bool):
            raise VaultValidationError("Invalid size", field="size")
        if isinstance(size, str):
            if not size.isdigit():
                raise VaultValidationError("Invalid size", field="size")
            size = int(size)
        if not isinstance(size, int) or size not in self._widths:
            raise VaultValidationError("Invalid size", field="size")
        return size

    def fetch(self, token: Optional[str], entry_id: Any, size: Any = None) -> FetchedContent:
        """
        Return the bytes and MIME type of an entry's content.

        Raises:
            VaultNotFoundError: missing, not visible, or blob absent
            VaultValidationError: folder, or size not a canonical width
        """
        entry = self._find(entry_id)
        if entry is None:
            raise VaultNotFoundError(entry_id=str(entry_id), operation="fetch")

        if not entry.is_public:
            requester_id = self._sessions.validate(token)
            if requester_id is None or requester_id != entry.owner_id:
                self._emit(log_access_denied(entry.id, requester_id, "fetch"))
                raise VaultNotFoundError(entry_id=entry.id, operation="fetch")

        if entry.is_folder:
            raise VaultValidationError("A folder doesn't have content", entry_id=entry.id)

        width = self.parse_size(size)
        ref = variant_ref(entry.content_ref, width) if width is not None else entry.content_ref

        data = self._store.read(ref)
        return FetchedContent(data=data, mime_type=detect_mime_type(entry.name))

    # -------------------------------------------------------------------
    # Catalog views
    # -------------------------------------------------------------------

    def get(self, owner_id: str, entry_id: Any) -> Entry:
        """Owner-scoped lookup of a single entry."""
        entry = self._find(entry_id, owner_id=str(owner_id))
        if entry is None:
            raise VaultNotFoundError(entry_id=str(entry_id), operation="get")
        return entry

    def list_entries(
        self,
        owner_id: str,
        parent_id: Any = ROOT_PARENT_ID,
        page: int = 0,
        page_size: Optional[int] = None,
    ) -> List[Entry]:
        """
        One page of owner_id's entries directly under parent_id.

        A malformed parent id matches nothing; listing never fails on a bad
        filter.
        """
        parent = normalize_parent_id(parent_id)
        if parent != ROOT_PARENT_ID and not is_valid_entry_id(parent):
            return []

        limit = min(page_size or self._page_size, self._page_size)
        if limit <= 0:
            return []
        try:
            page = max(int(page), 0)
        except (TypeError, ValueError):
            page = 0

        return self._catalog.find_many(
            {"owner_id": str(owner_id), "parent_id": parent},
            skip=page * limit,
            limit=limit,
        )

    # -------------------------------------------------------------------
    # Visibility
    # -------------------------------------------------------------------

    def set_visibility(self, owner_id: str, entry_id: Any, public: bool) -> Entry:
        """Atomically set is_public on an entry owned by owner_id."""
        entry = None
        if is_valid_entry_id(entry_id):
            entry = self._catalog.update_one(
                {"id": entry_id, "owner_id": str(owner_id)},
                {"is_public": bool(public)},
            )
        if entry is None:
            raise VaultNotFoundError(entry_id=str(entry_id), operation="set_visibility")

        logger.info(f"Entry {entry.id} is now {'public' if entry.is_public else 'private'}")
        self._emit(log_visibility_changed(entry.id, entry.owner_id, entry.is_public))
        return entry

    def publish(self, owner_id: str, entry_id: Any) -> Entry:
        return self.set_visibility(owner_id, entry_id, True)

    def unpublish(self, owner_id: str, entry_id: Any) -> Entry:
        return self.set_visibility(owner_id, entry_id, False)
