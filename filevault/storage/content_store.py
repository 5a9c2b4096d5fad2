"""
FileVault Content Store — Raw blobs on the local filesystem.

Blobs live directly under the storage folder, named by an opaque reference
(a uuid4 for canonical blobs, ``<ref>_<width>`` for variants). The store has
no catalog knowledge.

Physical storage:
    {folder_path}/{ref}
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import uuid
from pathlib import Path

from filevault.engine.errors import VaultNotFoundError, VaultStorageError, VaultValidationError

logger = logging.getLogger("filevault.storage.content_store")

_REF_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-]{0,63}$")


class LocalContentStore:
    """
    Filesystem-backed blob store.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace(), so readers never observe a partially written blob and
    rewriting a variant replaces it atomically.
    """

    def __init__(self, folder_path: str):
        self._root = Path(folder_path)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> Path:
        """Create the storage folder if it doesn't exist."""
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    @staticmethod
    def new_ref() -> str:
        """Generate a fresh opaque reference for a canonical blob."""
        return str(uuid.uuid4())

    def _path(self, ref: str) -> Path:
        if not isinstance(ref, str) or not _REF_RE.match(ref):
            raise VaultValidationError("Invalid content reference", field="content_ref")
        return self._root / ref

    def write(self, ref: str, data: bytes) -> int:
        """Write data under ref, replacing any previous blob. Returns bytes written."""
        path = self._path(ref)
        tmp_name = None
        try:
            self.ensure_root()
            fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=".tmp_")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            logger.error(f"Blob write failed for {ref}: {e}")
            raise VaultStorageError("Unable to save file", operation="write") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug(f"Wrote blob {ref} ({len(data)} bytes)")
        return len(data)

    def read(self, ref: str) -> bytes:
        """Read the blob stored under ref. Raises VaultNotFoundError if absent."""
        path = self._path(ref)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise VaultNotFoundError() from e
        except OSError as e:
            logger.error(f"Blob read failed for {ref}: {e}")
            raise VaultStorageError("Unable to read file", operation="read") from e

    def exists(self, ref: str) -> bool:
        try:
            return self._path(ref).is_file()
        except VaultValidationError:
            return False

    def delete(self, ref: str) -> bool:
        """Remove a blob. Returns False when it was already absent."""
        path = self._path(ref)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Blob delete failed for {ref}: {e}")
            raise VaultStorageError("Unable to delete file", operation="delete") from e

    def health_check(self) -> bool:
        """Storage folder exists (or can be created) and is writable."""
        try:
            self.ensure_root()
        except OSError:
            return False
        return os.access(self._root, os.W_OK)

    def __repr__(self) -> str:
        return f"<LocalContentStore root='{self._root}'>"
