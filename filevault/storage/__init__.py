"""FileVault Storage — Blob persistence."""

from filevault.storage.content_store import LocalContentStore  # noqa: F401

__all__ = ["LocalContentStore"]
