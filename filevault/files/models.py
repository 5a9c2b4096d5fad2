"""
FileVault Entry models — Pydantic definitions shared by the services.

Entry: catalog record for a folder, file or image.
DerivationJob: unit of work for the thumbnail worker.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# parent_id of top-level entries
ROOT_PARENT_ID = "0"

_ENTRY_ID_RE = re.compile(r"^[0-9a-f]{32}$")


class EntryKind(str, Enum):
    FOLDER = "folder"
    FILE = "file"
    IMAGE = "image"

    @classmethod
    def parse(cls, value: Any) -> Optional["EntryKind"]:
        """Return the matching kind, or None when value is not one."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def has_content(self) -> bool:
        return self is not EntryKind.FOLDER


def is_valid_entry_id(value: Any) -> bool:
    """Syntactic check for catalog-assigned ids (32 lowercase hex chars)."""
    return isinstance(value, str) and bool(_ENTRY_ID_RE.match(value))


def normalize_parent_id(value: Any) -> str:
    """Map the accepted spellings of the root sentinel (0, "0", None) to "0"."""
    if value is None or value == 0 or value == ROOT_PARENT_ID:
        return ROOT_PARENT_ID
    return str(value)


def variant_ref(content_ref: str, width: int) -> str:
    """Content Store reference of the variant of content_ref at width."""
    return f"{content_ref}_{width}"


class Entry(BaseModel):
    """
    Catalog record. Folders never carry a content_ref; files and images
    always do once created.
    """

    id: str = Field(description="Catalog-assigned opaque id")
    owner_id: str = Field(description="Owning principal")
    name: str = Field(min_length=1, max_length=255)
    kind: EntryKind
    is_public: bool = False
    parent_id: str = ROOT_PARENT_ID
    content_ref: Optional[str] = Field(default=None, description="Canonical blob reference")

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER

    def is_visible_to(self, requester_id: Optional[str]) -> bool:
        return self.is_public or (requester_id is not None and requester_id == self.owner_id)

    def to_public_dict(self) -> Dict[str, Any]:
        """Caller-facing projection; never includes the content reference."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "kind": self.kind.value,
            "is_public": self.is_public,
            "parent_id": self.parent_id,
        }


class DerivationJob(BaseModel):
    """Regenerate every size variant of one entry."""

    entry_id: Optional[str] = None
    owner_id: Optional[str] = None
    attempt: int = 1

    @classmethod
    def from_payload(cls, payload: Any) -> "DerivationJob":
        """Lenient parse: unusable payloads become a job with missing ids."""
        if not isinstance(payload, dict):
            return cls()
        entry_id = payload.get("entry_id")
        owner_id = payload.get("owner_id")
        attempt = payload.get("attempt", 1)
        return cls(
            entry_id=str(entry_id) if entry_id else None,
            owner_id=str(owner_id) if owner_id else None,
            attempt=attempt if isinstance(attempt, int) and attempt > 0 else 1,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {"entry_id": self.entry_id, "owner_id": self.owner_id, "attempt": self.attempt}

    def next_attempt(self) -> "DerivationJob":
        return self.model_copy(update={"attempt": self.attempt + 1})


class FetchedContent(BaseModel):
    data: bytes
    mime_type: str
