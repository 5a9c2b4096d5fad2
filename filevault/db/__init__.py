"""FileVault Database — Catalog schema and session management."""

from filevault.db.base import AuditMixin, Base  # noqa: F401
from filevault.db.models import EntryRecord  # noqa: F401
from filevault.db.session import CatalogDatabase, init_catalog_db  # noqa: F401

__all__ = ["AuditMixin", "Base", "EntryRecord", "CatalogDatabase", "init_catalog_db"]
