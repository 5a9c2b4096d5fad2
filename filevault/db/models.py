"""
FileVault catalog table.

One row per file or folder. ``parent_id`` holds either the root sentinel
``"0"`` or the id of a folder row; it is a plain column rather than a
foreign key so the root sentinel needs no placeholder row.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String

from filevault.db.base import AuditMixin, Base


class EntryRecord(AuditMixin, Base):
    """Catalog entry (folder | file | image)."""
    __tablename__ = "entries"

    # Insertion sequence; listing order follows it.
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    owner_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    kind = Column(String(10), nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    parent_id = Column(String(32), nullable=False, default="0")
    content_ref = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_entries_owner_parent", "owner_id", "parent_id"),
    )

    def __repr__(self) -> str:
        return f"<EntryRecord id={self.id} kind={self.kind} name='{self.name}'>"
