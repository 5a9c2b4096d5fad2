"""
FileVault Catalog — Document-style access to the entries table.

The services talk to the catalog through four operations that take plain
field filters, the way a document store would be used:

    insert(entry_fields) -> id
    find_one(filter) -> Entry | None
    find_many(filter, skip, limit) -> [Entry]
    update_one(filter, patch) -> Entry | None   (post-update document)

Filters are equality matches on entry fields; unknown fields are rejected.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from filevault.db.models import EntryRecord
from filevault.db.session import CatalogDatabase
from filevault.engine.errors import VaultUpstreamError
from filevault.files.models import Entry

logger = logging.getLogger("filevault.files.catalog")

_FIELDS = ("id", "owner_id", "name", "kind", "is_public", "parent_id", "content_ref")
_IMMUTABLE = ("id", "owner_id", "kind", "parent_id", "content_ref")


def _to_entry(record: EntryRecord) -> Entry:
    return Entry(
        id=record.id,
        owner_id=record.owner_id,
        name=record.name,
        kind=record.kind,
        is_public=record.is_public,
        parent_id=record.parent_id,
        content_ref=record.content_ref,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class Catalog:
    """Entries table behind a find/insert/update interface."""

    def __init__(self, db: CatalogDatabase):
        self._db = db

    @staticmethod
    def _conditions(filter: Mapping[str, Any]) -> list:
        conditions = []
        for field, value in filter.items():
            if field not in _FIELDS:
                raise ValueError(f"Unknown catalog field '{field}'")
            conditions.append(getattr(EntryRecord, field) == value)
        return conditions

    def insert(self, fields: Mapping[str, Any]) -> str:
        """Insert a new entry and return its freshly assigned id."""
        data = {k: v for k, v in fields.items() if k in _FIELDS and k != "id"}
        entry_id = uuid.uuid4().hex
        try:
            with self._db.session_scope() as session:
                session.add(EntryRecord(id=entry_id, **data))
        except SQLAlchemyError as e:
            logger.error(f"Catalog insert failed: {e}")
            raise VaultUpstreamError("Unable to save entry", upstream="catalog", operation="insert") from e
        return entry_id

    def find_one(self, filter: Mapping[str, Any]) -> Optional[Entry]:
        try:
            with self._db.session_scope() as session:
                record = session.execute(
                    select(EntryRecord).where(*self._conditions(filter)).limit(1)
                ).scalar_one_or_none()
                return _to_entry(record) if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Catalog lookup failed: {e}")
            raise VaultUpstreamError("Catalog unavailable", upstream="catalog", operation="find_one") from e

    def find_many(self, filter: Mapping[str, Any], skip: int = 0, limit: int = 20) -> List[Entry]:
        try:
            with self._db.session_scope() as session:
                records = session.execute(
                    select(EntryRecord)
                    .where(*self._conditions(filter))
                    .order_by(EntryRecord.seq)
                    .offset(skip)
                    .limit(limit)
                ).scalars().all()
                return [_to_entry(r) for r in records]
        except SQLAlchemyError as e:
            logger.error(f"Catalog listing failed: {e}")
            raise VaultUpstreamError("Catalog unavailable", upstream="catalog", operation="find_many") from e

    def update_one(self, filter: Mapping[str, Any], patch: Mapping[str, Any]) -> Optional[Entry]:
        """
        Apply patch to the single entry matching filter in one UPDATE
        statement. Returns the updated entry, or None when nothing matched.
        """
        values: Dict[str, Any] = dict(patch)
        for field in values:
            if field not in _FIELDS:
                raise ValueError(f"Unknown catalog field '{field}'")
            if field in _IMMUTABLE:
                raise ValueError(f"Catalog field '{field}' is immutable")

        conditions = self._conditions(filter)
        try:
            with self._db.session_scope() as session:
                result = session.execute(
                    update(EntryRecord)
                    .where(*conditions)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None
                record = session.execute(
                    select(EntryRecord).where(*conditions).limit(1)
                ).scalar_one_or_none()
                return _to_entry(record) if record is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Catalog update failed: {e}")
            raise VaultUpstreamError("Catalog unavailable", upstream="catalog", operation="update_one") from e
