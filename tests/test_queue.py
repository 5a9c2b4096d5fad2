"""Tests for filevault.derivation.queue — DerivationQueue on kombu's memory transport."""

import os
import threading
import uuid
from queue import Empty
from unittest.mock import MagicMock, PropertyMock, patch

import pytest
from kombu.exceptions import DecodeError, OperationalError

from filevault.derivation.queue import DerivationDelivery, DerivationQueue
from filevault.engine.errors import VaultUpstreamError
from filevault.files.models import DerivationJob

REDIS_URL = os.environ.get("FILEVAULT_TEST_REDIS_URL")


def _job(entry_id="a" * 32, owner_id="u1", attempt=1):
    return DerivationJob(entry_id=entry_id, owner_id=owner_id, attempt=attempt)


class TestEnqueueDequeue:
    def test_round_trip(self, derivation_queue):
        derivation_queue.enqueue(_job())
        assert derivation_queue.pending_count() == 1

        delivery = derivation_queue.dequeue(timeout=1)
        assert delivery.job == _job()
        delivery.ack()
        assert delivery.acknowledged is True
        assert derivation_queue.pending_count() == 0

    def test_attempt_travels_with_job(self, derivation_queue):
        derivation_queue.enqueue(_job(attempt=3))
        assert derivation_queue.dequeue(timeout=1).job.attempt == 3

    def test_dequeue_timeout(self, derivation_queue):
        with pytest.raises(Empty):
            derivation_queue.dequeue(timeout=0.1)

    def test_requeue_redelivers(self, derivation_queue):
        derivation_queue.enqueue(_job())
        first = derivation_queue.dequeue(timeout=1)
        first.requeue()

        second = derivation_queue.dequeue(timeout=1)
        assert second.job == first.job
        second.ack()
        assert derivation_queue.pending_count() == 0

    def test_unacked_message_not_counted_as_pending(self, derivation_queue):
        derivation_queue.enqueue(_job())
        delivery = derivation_queue.dequeue(timeout=1)
        assert derivation_queue.pending_count() == 0
        delivery.ack()

    def test_separate_handles_share_queue(self):
        name = f"test.derivation.{uuid.uuid4().hex}"
        with DerivationQueue("memory://", name=name) as producer, \
                DerivationQueue("memory://", name=name) as consumer:
            producer.enqueue(_job(entry_id="b" * 32))
            delivery = consumer.dequeue(timeout=1)
            assert delivery.job.entry_id == "b" * 32
            delivery.ack()

    def test_enqueue_opens_lazily(self):
        queue = DerivationQueue("memory://", name=f"test.derivation.{uuid.uuid4().hex}")
        assert "open=False" in repr(queue)
        queue.enqueue(_job())
        assert "open=True" in repr(queue)
        queue.close()
        assert "open=False" in repr(queue)


class TestLifecycleAndHealth:
    def test_close_is_idempotent(self, derivation_queue):
        derivation_queue.close()
        derivation_queue.close()

    def test_health_check(self, derivation_queue):
        assert derivation_queue.health_check() is True

    def test_name_and_app(self, derivation_queue):
        assert derivation_queue.name.startswith("test.derivation.")
        assert derivation_queue.celery_app.main == "filevault"


class TestBrokerFailures:
    def test_open_failure_is_upstream(self):
        queue = DerivationQueue("memory://", name="unused")
        with patch.object(queue.celery_app, "connection_for_write", side_effect=OSError("refused")):
            with pytest.raises(VaultUpstreamError) as exc_info:
                queue.open()
        assert exc_info.value.message == "Job queue unavailable"

    def test_enqueue_failure_is_upstream(self, derivation_queue):
        with patch.object(derivation_queue._queue, "put", side_effect=OperationalError("broker gone")):
            with pytest.raises(VaultUpstreamError):
                derivation_queue.enqueue(_job())

    def test_health_check_failure(self):
        queue = DerivationQueue("memory://", name="unused")
        with patch.object(queue.celery_app, "connection_for_write", side_effect=OSError("refused")):
            assert queue.health_check() is False


class TestConcurrency:
    def test_concurrent_first_enqueues_share_one_connection(self):
        queue = DerivationQueue("memory://", name=f"test.derivation.{uuid.uuid4().hex}")
        app = queue.celery_app
        barrier = threading.Barrier(8)

        def _enqueue(i):
            barrier.wait()
            queue.enqueue(_job(entry_id=f"{i:032x}"))

        with patch.object(app, "connection_for_write", wraps=app.connection_for_write) as opened:
            threads = [threading.Thread(target=_enqueue, args=(i,)) for i in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        try:
            assert opened.call_count == 1
            assert queue.pending_count() == 8
        finally:
            queue.close()


class TestRedelivery:
    def test_visibility_timeout_reaches_transport(self):
        with DerivationQueue("memory://", name=f"test.derivation.{uuid.uuid4().hex}",
                             visibility_timeout=120) as queue:
            assert queue.celery_app.conf.broker_transport_options == {"visibility_timeout": 120}
            assert queue._connection.transport_options["visibility_timeout"] == 120

    @pytest.mark.skipif(not REDIS_URL, reason="FILEVAULT_TEST_REDIS_URL not set")
    def test_unacked_job_redelivered_after_consumer_dies(self):
        name = f"test.derivation.{uuid.uuid4().hex}"
        with DerivationQueue(REDIS_URL, name=name) as producer:
            producer.enqueue(_job(entry_id="c" * 32))

        crashed = DerivationQueue(REDIS_URL, name=name).open()
        taken = crashed.dequeue(timeout=5)
        assert taken.acknowledged is False
        crashed.close()

        with DerivationQueue(REDIS_URL, name=name) as survivor:
            delivery = survivor.dequeue(timeout=5)
            assert delivery.job.entry_id == "c" * 32
            delivery.ack()
            assert survivor.pending_count() == 0


class TestDerivationDelivery:
    def _message(self, payload=None, redelivered=False):
        message = MagicMock()
        message.payload = payload
        message.delivery_info = {"redelivered": redelivered}
        return message

    def test_parses_payload(self):
        delivery = DerivationDelivery(self._message({"entry_id": "e1", "owner_id": "u1", "attempt": 2}))
        assert delivery.job == DerivationJob(entry_id="e1", owner_id="u1", attempt=2)

    def test_malformed_payload_yields_empty_job(self):
        delivery = DerivationDelivery(self._message("not a dict"))
        assert delivery.job.entry_id is None
        assert delivery.job.owner_id is None

    def test_undecodable_payload(self):
        message = MagicMock()
        type(message).payload = PropertyMock(side_effect=DecodeError("bad json"))
        delivery = DerivationDelivery(message)
        assert delivery.job.entry_id is None

    def test_settlement_passthrough(self):
        message = self._message({"entry_id": "e1", "owner_id": "u1"}, redelivered=True)
        delivery = DerivationDelivery(message)
        assert delivery.redelivered is True
        delivery.ack()
        delivery.requeue()
        delivery.reject()
        message.ack.assert_called_once()
        message.requeue.assert_called_once()
        message.reject.assert_called_once()
