"""
FileVault Ingest Service — Entry creation.

Handles:
- Request validation (name, kind, data, parent), first failure wins
- Hierarchy rules: a non-root parent must be an existing folder
- Blob write before catalog write, so no entry ever points at a missing blob
- Derivation job enqueue for images (best effort)

Physical storage:
    {storage.folder_path}/{content_ref}
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any, Optional, Union

from filevault.derivation.queue import DerivationQueue
from filevault.engine.errors import VaultError, VaultValidationError
from filevault.engine.logging import (
    AsyncLogQueue,
    LogEntry,
    log_enqueue_failure,
    log_entry_created,
)
from filevault.files.catalog import Catalog
from filevault.files.models import (
    ROOT_PARENT_ID,
    DerivationJob,
    Entry,
    EntryKind,
    is_valid_entry_id,
    normalize_parent_id,
)
from filevault.storage.content_store import LocalContentStore

logger = logging.getLogger("filevault.files.ingest")

MAX_NAME_LENGTH = 255


class IngestService:
    """
    Creates catalog entries and persists their content.

    Enqueue failures after a successful catalog write are logged and do not
    roll back the entry: the image simply has no variants until a job for it
    is enqueued again.
    """

    def __init__(
        self,
        catalog: Catalog,
        store: LocalContentStore,
        queue: Optional[DerivationQueue] = None,
        event_log: Optional[AsyncLogQueue] = None,
    ):
        self._catalog = catalog
        self._store = store
        self._queue = queue
        self._events = event_log

    def _emit(self, entry: LogEntry) -> None:
        if self._events is not None:
            self._events.push(entry)

    # -------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------

    def validate(
        self,
        name: Any,
        kind: Any,
        parent_id: Any = ROOT_PARENT_ID,
        content: Optional[Union[str, bytes]] = None,
    ) -> tuple:
        """
        Validate a creation request without writing anything.

        Returns (kind, parent_id, payload_bytes_or_None).
        Raises VaultValidationError on the first failing rule.
        """
        if not name or not isinstance(name, str) or not name.strip():
            raise VaultValidationError("Missing name", field="name")
        if len(name) > MAX_NAME_LENGTH:
            raise VaultValidationError("Name too long", field="name")

        entry_kind = EntryKind.parse(kind)
        if entry_kind is None:
            raise VaultValidationError("Missing type", field="kind")

        if entry_kind.has_content and not content:
            raise VaultValidationError("Missing data", field="data")

        payload = self._decode(content) if entry_kind.has_content else None

        parent = normalize_parent_id(parent_id)
        if parent != ROOT_PARENT_ID:
            parent_entry = (
                self._catalog.find_one({"id": parent}) if is_valid_entry_id(parent) else None
            )
            if parent_entry is None:
                raise VaultValidationError("Parent not found", field="parent_id")
            if not parent_entry.is_folder:
                raise VaultValidationError("Parent is not a folder", field="parent_id")

        return entry_kind, parent, payload

    @staticmethod
    def _decode(content: Any) -> bytes:
        if isinstance(content, (bytes, bytearray)):
            return bytes(content)
        if not isinstance(content, str):
            raise VaultValidationError("Invalid data", field="data")
        try:
            return base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise VaultValidationError("Invalid data", field="data") from e

    # -------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------

    def create(
        self,
        owner_id: str,
        name: Any,
        kind: Any,
        parent_id: Any = ROOT_PARENT_ID,
        is_public: bool = False,
        content: Optional[Union[str, bytes]] = None,
    ) -> Entry:
        """
        Create a folder, file or image entry.

        1. Validate (no writes on failure)
        2. file/image: write the decoded payload under a fresh reference
        3. Insert the catalog entry
        4. image: enqueue a derivation job

        Raises:
            VaultValidationError: invalid request
            VaultStorageError: blob write failed (catalog untouched)
            VaultUpstreamError: catalog write failed
        """
        started = time.monotonic()
        entry_kind, parent, payload = self.validate(name, kind, parent_id, content)

        fields = {
            "owner_id": str(owner_id),
            "name": name,
            "kind": entry_kind.value,
            "is_public": bool(is_public),
            "parent_id": parent,
        }

        if payload is not None:
            content_ref = self._store.new_ref()
            self._store.write(content_ref, payload)
            fields["content_ref"] = content_ref
            try:
                entry_id = self._catalog.insert(fields)
            except VaultError:
                self._discard_blob(content_ref)
                raise
        else:
            entry_id = self._catalog.insert(fields)

        entry = Entry(id=entry_id, **fields)
        logger.info(f"Created {entry.kind.value} entry {entry.id} for user {entry.owner_id}")
        self._emit(log_entry_created(
            entry.id, entry.owner_id, entry.kind.value, entry.parent_id,
            size_bytes=len(payload) if payload is not None else None,
            duration_ms=(time.monotonic() - started) * 1000,
        ))

        if entry.kind is EntryKind.IMAGE:
            self.request_derivation(entry)

        return entry

    def request_derivation(self, entry: Entry) -> bool:
        """
        Enqueue a derivation job for entry. Returns False (after logging)
        when no queue is configured or the broker rejected the job.
        """
        if self._queue is None:
            logger.warning(f"No derivation queue configured; entry {entry.id} gets no variants")
            return False
        try:
            self._queue.enqueue(DerivationJob(entry_id=entry.id, owner_id=entry.owner_id))
        except VaultError as e:
            logger.error(f"Derivation enqueue failed for entry {entry.id}: {e.message}")
            self._emit(log_enqueue_failure(entry.id, entry.owner_id, e.message))
            return False
        return True

    def _discard_blob(self, content_ref: str) -> None:
        try:
            self._store.delete(content_ref)
        except VaultError as e:
            logger.error(f"Could not remove orphaned blob {content_ref}: {e.message}")
