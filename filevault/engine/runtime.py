"""
FileVault Runtime — Builds and owns every collaborator of the core services.

Ties together:
- CatalogDatabase + Catalog (SQLAlchemy)
- LocalContentStore (filesystem)
- SessionValidator (Redis)
- DerivationQueue (Celery/kombu broker)
- AsyncLogQueue (structured event log)

and exposes the services built on them:
- runtime.ingest     — IngestService
- runtime.retrieval  — RetrievalService
- runtime.worker()   — a DerivationWorker bound to the same catalog and store

Lifecycle:
    runtime = FileVaultRuntime(load_config())
    runtime.startup()
    ...
    runtime.shutdown()

Any collaborator can be passed in pre-built (tests, embedding); whatever the
runtime builds itself it also closes on shutdown.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from filevault.db.session import CatalogDatabase
from filevault.derivation.queue import DerivationQueue
from filevault.derivation.worker import DerivationWorker
from filevault.engine.cache import RedisCache, create_session_store
from filevault.engine.config import VaultConfig
from filevault.engine.health import HealthCheckService
from filevault.engine.logging import (
    AsyncLogQueue,
    create_event_log,
    log_system_event,
)
from filevault.engine.security import SessionValidator
from filevault.files.catalog import Catalog
from filevault.files.ingest import IngestService
from filevault.files.retrieval import RetrievalService
from filevault.storage.content_store import LocalContentStore

logger = logging.getLogger("filevault.engine.runtime")


class FileVaultRuntime:
    """Explicitly constructed dependency container with startup/shutdown."""

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        database: Optional[CatalogDatabase] = None,
        store: Optional[LocalContentStore] = None,
        session_store: Optional[RedisCache] = None,
        queue: Optional[DerivationQueue] = None,
        event_log: Optional[AsyncLogQueue] = None,
        create_tables: bool = True,
    ):
        self.config = config or VaultConfig()
        self._create_tables = create_tables

        self.database = database
        self.store = store
        self.session_store = session_store
        self.queue = queue
        self.event_log = event_log
        self._owned: Dict[str, bool] = {
            "database": database is None,
            "session_store": session_store is None,
            "queue": queue is None,
            "event_log": event_log is None,
        }

        # Built in startup()
        self.catalog: Optional[Catalog] = None
        self.sessions: Optional[SessionValidator] = None
        self.ingest: Optional[IngestService] = None
        self.retrieval: Optional[RetrievalService] = None
        self.health: Optional[HealthCheckService] = None

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def startup(self) -> "FileVaultRuntime":
        """Initialize all subsystems."""
        if self._started:
            logger.warning("Runtime already started")
            return self

        cfg = self.config
        logger.info(f"Starting {cfg.name} ({cfg.environment})...")

        # 1. Event log
        if self.event_log is None:
            self.event_log = create_event_log(
                log_dir=cfg.logging.directory,
                flush_interval_ms=cfg.logging.async_queue.flush_interval_ms,
                flush_batch_size=cfg.logging.async_queue.flush_batch_size,
                max_queue_size=cfg.logging.async_queue.max_queue_size,
            )
        self.event_log.start()

        # 2. Catalog
        if self.database is None:
            self.database = CatalogDatabase.from_config(cfg.database)
        if self._create_tables:
            self.database.create_tables()
        self.catalog = Catalog(self.database)

        # 3. Content store
        if self.store is None:
            self.store = LocalContentStore(cfg.storage.folder_path)
        self.store.ensure_root()

        # 4. Sessions
        if self.session_store is None:
            self.session_store = create_session_store(
                cfg.redis.url,
                prefix=cfg.redis.session_prefix,
                ttl=cfg.redis.session_ttl,
                db=cfg.redis.session_db,
            )
        self.sessions = SessionValidator(self.session_store, ttl=cfg.redis.session_ttl)

        # 5. Derivation queue (producer side). Opened lazily on first enqueue
        #    so an unreachable broker doesn't block startup.
        if self.queue is None:
            self.queue = DerivationQueue(
                broker_url=cfg.queue.broker_url,
                name=cfg.queue.name,
                visibility_timeout=cfg.queue.visibility_timeout,
            )

        # 6. Services
        self.ingest = IngestService(self.catalog, self.store, self.queue, event_log=self.event_log)
        self.retrieval = RetrievalService(
            self.catalog,
            self.store,
            self.sessions,
            widths=cfg.thumbnails.widths,
            page_size=cfg.listing.page_size,
            event_log=self.event_log,
        )

        # 7. Health
        self.health = HealthCheckService()
        self.health.register_check("catalog", self.database.health_check)
        self.health.register_check("content_store", self.store.health_check)
        self.health.register_check("session_store", self.sessions.ping)
        self.health.register_check("queue", self.queue.health_check, critical=False)

        self._started = True
        self.event_log.push(log_system_event("runtime_started", details=self._subsystem_status()))
        logger.info("FileVault runtime started")
        return self

    def shutdown(self) -> None:
        """Flush queues, close connections."""
        if not self._started:
            return

        logger.info("Shutting down FileVault runtime...")

        if self._owned["queue"] and self.queue is not None:
            self.queue.close()
        if self._owned["session_store"] and self.session_store is not None:
            self.session_store.close()
        if self._owned["database"] and self.database is not None:
            self.database.dispose()

        if self.event_log is not None:
            self.event_log.push(log_system_event("runtime_shutdown"))
            if self._owned["event_log"]:
                self.event_log.stop()

        self._started = False
        logger.info("FileVault runtime shut down")

    def __enter__(self) -> "FileVaultRuntime":
        return self.startup()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # -----------------------------------------------------------------------
    # Worker
    # -----------------------------------------------------------------------

    def worker(self) -> DerivationWorker:
        """Build a derivation worker sharing this runtime's catalog and store."""
        if not self._started:
            raise RuntimeError("FileVault runtime not started. Call startup() first.")
        return DerivationWorker(
            self.catalog,
            self.store,
            widths=self.config.thumbnails.widths,
            max_attempts=self.config.queue.max_attempts,
            event_log=self.event_log,
        )

    def consumer_queue(self) -> DerivationQueue:
        """A separate queue handle for a consumer thread/process."""
        return DerivationQueue(
            broker_url=self.config.queue.broker_url,
            name=self.config.queue.name,
            visibility_timeout=self.config.queue.visibility_timeout,
        )

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _subsystem_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "database": repr(self.database),
            "store": repr(self.store),
            "queue": self.queue.name if self.queue else None,
            "session_store": self.session_store.is_available if self.session_store else False,
            "thumbnail_widths": list(self.config.thumbnails.widths),
        }
        if self.event_log:
            status["event_log"] = {
                "pending": self.event_log.pending_count,
                "dropped": self.event_log.dropped_count,
            }
        return status
