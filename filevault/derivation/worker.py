"""
FileVault Derivation Worker — Regenerates image variants from queued jobs.

For each job:
1. Reject jobs missing entry_id or owner_id (non-retryable, dropped)
2. Load the entry by (id, owner_id); missing entry is non-retryable
3. Regenerate every configured width from the canonical blob and write it
   to <content_ref>_<width>, overwriting earlier variants
4. Any width failing fails the whole job; a retry regenerates all widths

Jobs are idempotent, so redelivery and concurrent workers on the same entry
only rewrite the same references with equivalent bytes.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from queue import Empty
from typing import Dict, Optional, Sequence

from filevault.derivation.queue import DerivationDelivery, DerivationQueue
from filevault.derivation.thumbnails import InvalidImageError, generate_thumbnail
from filevault.engine.errors import (
    VaultError,
    VaultNotFoundError,
    VaultValidationError,
)
from filevault.engine.logging import (
    AsyncLogQueue,
    LogEntry,
    log_derivation_job,
    log_derivation_performance,
    log_system_event,
)
from filevault.files.catalog import Catalog
from filevault.files.models import DerivationJob, EntryKind, variant_ref
from filevault.storage.content_store import LocalContentStore

logger = logging.getLogger("filevault.derivation.worker")

DEFAULT_WIDTHS = (500, 250, 100)


@dataclass
class DerivationResult:
    """Variants written for one entry."""
    entry_id: str
    variants: Dict[int, str] = field(default_factory=dict)
    duration_ms: float = 0.0


@dataclass
class WorkerStats:
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dropped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "retried": self.retried,
            "dropped": self.dropped,
        }


class DerivationWorker:
    """
    Consumes derivation jobs.

    Usage:
        worker = DerivationWorker(catalog, store)
        worker.process(DerivationJob(entry_id=..., owner_id=...))
        worker.run(queue)   # blocking consumer loop
    """

    def __init__(
        self,
        catalog: Catalog,
        store: LocalContentStore,
        widths: Sequence[int] = DEFAULT_WIDTHS,
        max_attempts: int = 3,
        event_log: Optional[AsyncLogQueue] = None,
    ):
        self._catalog = catalog
        self._store = store
        self._widths = tuple(widths)
        self._max_attempts = max_attempts
        self._events = event_log
        self.stats = WorkerStats()

    @property
    def widths(self) -> tuple:
        return self._widths

    def _emit(self, entry: LogEntry) -> None:
        if self._events is not None:
            self._events.push(entry)

    # -------------------------------------------------------------------
    # Single job
    # -------------------------------------------------------------------

    def process(self, job: DerivationJob) -> DerivationResult:
        """
        Regenerate all variants for job's entry.

        Raises:
            VaultValidationError: missing ids or undecodable source (drop)
            VaultNotFoundError: entry gone or owned by someone else (drop)
            VaultStorageError: a blob read/write failed (retry)
        """
        if not job.entry_id:
            raise VaultValidationError("Missing fileId", field="entry_id", operation="derive")
        if not job.owner_id:
            raise VaultValidationError("Missing userId", field="owner_id", operation="derive")

        started = time.monotonic()
        entry = self._catalog.find_one({"id": job.entry_id, "owner_id": job.owner_id})
        if entry is None:
            raise VaultNotFoundError("File not found", entry_id=job.entry_id, operation="derive")
        if entry.kind is not EntryKind.IMAGE or not entry.content_ref:
            raise VaultValidationError("Entry has no image content", entry_id=entry.id, operation="derive")

        source = self._store.read(entry.content_ref)

        result = DerivationResult(entry_id=entry.id)
        for width in self._widths:
            width_started = time.monotonic()
            try:
                thumbnail = generate_thumbnail(source, width)
            except InvalidImageError as e:
                raise VaultValidationError(
                    "Source is not a decodable image", entry_id=entry.id, operation="derive",
                ) from e
            ref = variant_ref(entry.content_ref, width)
            self._store.write(ref, thumbnail)
            result.variants[width] = ref
            self._emit(log_derivation_performance(
                entry.id, width, (time.monotonic() - width_started) * 1000, len(thumbnail),
            ))

        result.duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Derived {len(result.variants)} variants for entry {entry.id} "
            f"in {result.duration_ms:.1f}ms"
        )
        return result

    # -------------------------------------------------------------------
    # Queue consumption
    # -------------------------------------------------------------------

    def handle(self, delivery: DerivationDelivery, queue: DerivationQueue) -> str:
        """
        Process one delivery and settle it with the broker.

        Returns the outcome: "succeeded", "retried" or "dropped".
        """
        job = delivery.job
        self.stats.processed += 1
        try:
            result = self.process(job)
        except VaultError as e:
            return self._settle_failure(delivery, queue, job, e)

        delivery.ack()
        self.stats.succeeded += 1
        self._emit(log_derivation_job(
            job.entry_id, job.owner_id, True,
            widths=sorted(result.variants, reverse=True),
            duration_ms=result.duration_ms,
            attempt=job.attempt,
        ))
        return "succeeded"

    def _settle_failure(
        self,
        delivery: DerivationDelivery,
        queue: DerivationQueue,
        job: DerivationJob,
        error: VaultError,
    ) -> str:
        if not error.retryable or job.attempt >= self._max_attempts:
            reason = "non-retryable" if not error.retryable else f"gave up after {job.attempt} attempts"
            logger.error(f"Dropping derivation job for entry {job.entry_id} ({reason}): {error.message}")
            delivery.ack()
            self.stats.dropped += 1
            self._emit(log_derivation_job(
                job.entry_id, job.owner_id, False,
                attempt=job.attempt, retryable=error.retryable, error=error.message,
            ))
            return "dropped"

        logger.warning(
            f"Derivation job for entry {job.entry_id} failed "
            f"(attempt {job.attempt}/{self._max_attempts}): {error.message}"
        )
        try:
            queue.enqueue(job.next_attempt())
        except VaultError as enqueue_error:
            # Keep the original message on the broker instead.
            logger.error(f"Re-enqueue failed, requeueing original job: {enqueue_error.message}")
            delivery.requeue()
        else:
            delivery.ack()
        self.stats.retried += 1
        self._emit(log_derivation_job(
            job.entry_id, job.owner_id, False,
            attempt=job.attempt, retryable=True, error=error.message,
        ))
        return "retried"

    def run(
        self,
        queue: DerivationQueue,
        max_jobs: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        poll_timeout: Optional[float] = None,
    ) -> WorkerStats:
        """
        Consume jobs until max_jobs have been handled or stop_event is set.

        With neither given the loop runs forever, blocking on the queue. A
        poll_timeout makes the loop wake up periodically to check stop_event.
        """
        if stop_event is not None and poll_timeout is None:
            poll_timeout = 1.0

        self._emit(log_system_event("worker_started", details={"queue": queue.name, "widths": list(self._widths)}))
        logger.info(f"Derivation worker consuming '{queue.name}' (widths={list(self._widths)})")

        handled = 0
        while max_jobs is None or handled < max_jobs:
            if stop_event is not None and stop_event.is_set():
                break
            try:
                delivery = queue.dequeue(timeout=poll_timeout)
            except Empty:
                continue
            self.handle(delivery, queue)
            handled += 1

        self._emit(log_system_event("worker_stopped", details=self.stats.to_dict()))
        logger.info(f"Derivation worker stopped: {self.stats.to_dict()}")
        return self.stats
