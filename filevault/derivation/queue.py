"""
FileVault Derivation Queue — Durable at-least-once job channel.

Built on the Celery app's broker connection (kombu). Messages are published
persistent to a durable queue and stay on the broker until the consumer
acknowledges them. A consumer that dies holding an unacknowledged message
gets it redelivered when its channel closes, or once the visibility timeout
expires if the process never got to close it (Redis).

Usage:
    with DerivationQueue("redis://localhost:6379/0") as queue:
        queue.enqueue(DerivationJob(entry_id=..., owner_id=...))

    delivery = queue.dequeue()        # blocks until a job is available
    ... process delivery.job ...
    delivery.ack()
"""

from __future__ import annotations

import logging
import threading
from queue import Empty
from typing import Any, Optional, Tuple, Type

from celery import Celery
from kombu.exceptions import ContentDisallowed, DecodeError, KombuError

from filevault.engine.errors import VaultUpstreamError
from filevault.files.models import DerivationJob

logger = logging.getLogger("filevault.derivation.queue")

_PUBLISH_RETRY_POLICY = {
    "max_retries": 3,
    "interval_start": 0,
    "interval_step": 0.5,
    "interval_max": 2,
}


class DerivationDelivery:
    """One dequeued job plus its acknowledgement handle."""

    def __init__(self, message: Any):
        self._message = message
        try:
            payload = message.payload
        except (DecodeError, ContentDisallowed) as e:
            logger.warning(f"Undecodable derivation payload: {e}")
            payload = None
        self.job = DerivationJob.from_payload(payload)

    @property
    def redelivered(self) -> bool:
        return bool(self._message.delivery_info.get("redelivered"))

    @property
    def acknowledged(self) -> bool:
        return self._message.acknowledged

    def ack(self) -> None:
        """Job finished (or is being dropped); remove it from the broker."""
        self._message.ack()

    def requeue(self) -> None:
        """Hand the message back to the broker unchanged."""
        self._message.requeue()

    def reject(self) -> None:
        """Discard without redelivery."""
        self._message.reject()

    def __repr__(self) -> str:
        return f"<DerivationDelivery entry_id={self.job.entry_id} attempt={self.job.attempt}>"


class DerivationQueue:
    """
    Producer/consumer handle on the derivation queue.

    One instance holds one broker connection and channel. kombu connections
    are not thread-safe, so every use of the channel (opening it included)
    happens under the instance lock: concurrent ingest requests sharing the
    runtime's handle publish one at a time over a single connection. A
    blocking dequeue holds the lock too, so consumers should use their own
    handle (FileVaultRuntime.consumer_queue).
    """

    def __init__(
        self,
        broker_url: str = "redis://localhost:6379/0",
        name: str = "filevault.derivation",
        visibility_timeout: int = 3600,
    ):
        self._name = name
        # Only the broker settings are used: the app is the connection factory.
        self._app = Celery("filevault", broker=broker_url)
        self._app.conf.broker_transport_options = {"visibility_timeout": visibility_timeout}
        self._lock = threading.RLock()
        self._connection = None
        self._queue = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def celery_app(self) -> Celery:
        return self._app

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def open(self) -> "DerivationQueue":
        with self._lock:
            if self._queue is not None:
                return self
            try:
                self._connection = self._app.connection_for_write()
                self._queue = self._connection.SimpleQueue(self._name)
                self._queue.consumer.qos(prefetch_count=1)
            except self._errors() as e:
                self._release()
                logger.error(f"Cannot open derivation queue '{self._name}': {e}")
                raise VaultUpstreamError("Job queue unavailable", upstream="queue", operation="open") from e
        logger.info(f"Derivation queue '{self._name}' opened")
        return self

    def close(self) -> None:
        with self._lock:
            if self._queue is None and self._connection is None:
                return
            self._release()
        logger.info(f"Derivation queue '{self._name}' closed")

    def _release(self) -> None:
        if self._queue is not None:
            try:
                self._queue.close()
            except self._errors() as e:
                logger.debug(f"Queue close failed: {e}")
            self._queue = None
        if self._connection is not None:
            try:
                self._connection.release()
            except self._errors() as e:
                logger.debug(f"Connection release failed: {e}")
            self._connection = None

    def __enter__(self) -> "DerivationQueue":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _errors(self) -> Tuple[Type[BaseException], ...]:
        errors: Tuple[Type[BaseException], ...] = (KombuError, OSError)
        if self._connection is not None:
            errors += tuple(self._connection.connection_errors) + tuple(self._connection.channel_errors)
        return errors

    # -------------------------------------------------------------------
    # Producer / consumer
    # -------------------------------------------------------------------

    def enqueue(self, job: DerivationJob) -> None:
        """
        Publish a job. Returns once the broker has accepted it; never waits
        on worker execution.
        """
        with self._lock:
            self.open()
            try:
                self._queue.put(
                    job.to_payload(),
                    serializer="json",
                    retry=True,
                    retry_policy=_PUBLISH_RETRY_POLICY,
                )
            except self._errors() as e:
                logger.error(f"Enqueue failed for entry {job.entry_id}: {e}")
                raise VaultUpstreamError(
                    "Job queue unavailable", upstream="queue", operation="enqueue", entry_id=job.entry_id,
                ) from e
        logger.debug(f"Enqueued derivation job for entry {job.entry_id} (attempt {job.attempt})")

    def dequeue(self, timeout: Optional[float] = None) -> DerivationDelivery:
        """
        Block until a job is available and return it unacknowledged.

        Raises:
            Empty: timeout given and no job arrived in time.
        """
        with self._lock:
            self.open()
            try:
                message = self._queue.get(block=True, timeout=timeout)
            except Empty:
                raise
            except self._errors() as e:
                logger.error(f"Dequeue failed: {e}")
                raise VaultUpstreamError("Job queue unavailable", upstream="queue", operation="dequeue") from e
        return DerivationDelivery(message)

    def pending_count(self) -> int:
        """Jobs waiting on the broker (not counting unacknowledged ones)."""
        with self._lock:
            self.open()
            try:
                return self._queue.qsize()
            except self._errors() as e:
                raise VaultUpstreamError("Job queue unavailable", upstream="queue", operation="qsize") from e

    def health_check(self) -> bool:
        try:
            with self._lock:
                self.open()
                self._connection.ensure_connection(max_retries=1)
            return True
        except (VaultUpstreamError, *self._errors()) as e:
            logger.warning(f"Queue health check failed: {e}")
            return False

    def __repr__(self) -> str:
        return f"<DerivationQueue name='{self._name}' open={self._queue is not None}>"
