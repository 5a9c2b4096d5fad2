"""
FileVault Database Session Management.

CatalogDatabase owns one engine and its session factory. It is built by the
runtime and handed to the Catalog; nothing here is module-global.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from filevault.db.base import Base, build_engine
from filevault.engine.config import DatabaseConfig

logger = logging.getLogger("filevault.db.session")


class CatalogDatabase:
    """
    Engine + session factory for the catalog.

    Usage:
        db = CatalogDatabase("sqlite:///filevault.db")
        db.create_tables()
        with db.session_scope() as session:
            ...
        db.dispose()
    """

    def __init__(self, url: str, **engine_kwargs):
        self._url = url
        self._engine = build_engine(url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "CatalogDatabase":
        return cls(
            config.url,
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
            pool_pre_ping=config.pool_pre_ping,
        )

    @property
    def engine(self):
        return self._engine

    def create_tables(self) -> None:
        """Create missing tables (idempotent)."""
        Base.metadata.create_all(self._engine)
        logger.info("Catalog tables ensured")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for catalog sessions with auto-commit/rollback.

        Usage:
            with db.session_scope() as session:
                session.add(record)
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def health_check(self) -> bool:
        """Check if the engine can connect."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Catalog health check failed: {e}")
            return False

    def dispose(self) -> None:
        """Close the connection pool."""
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"<CatalogDatabase url='{self._engine.url.render_as_string(hide_password=True)}'>"


def init_catalog_db(url: str, create_tables: bool = True, **engine_kwargs) -> CatalogDatabase:
    """Build a CatalogDatabase and optionally create its tables."""
    db = CatalogDatabase(url, **engine_kwargs)
    if create_tables:
        db.create_tables()
    logger.info(f"Catalog database initialized: {db!r}")
    return db
