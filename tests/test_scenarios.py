"""End-to-end flows: upload, derive, fetch, publish."""

import io

import pytest
from PIL import Image

from filevault.engine.errors import VaultNotFoundError, VaultValidationError
from filevault.files.models import variant_ref


class TestImageLifecycle:
    def test_folder_image_derive_fetch_publish(
        self, ingest, retrieval, worker, derivation_queue, sessions, store, png_b64, png_bytes,
    ):
        u1_token = sessions.create_session("u1")

        folder = ingest.create("u1", "A", "folder")
        image = ingest.create("u1", "B.png", "image", parent_id=folder.id, content=png_b64)
        assert [e.id for e in retrieval.list_entries("u1", folder.id)] == [image.id]

        stats = worker.run(derivation_queue, max_jobs=1, poll_timeout=1)
        assert stats.succeeded == 1

        thumb = retrieval.fetch(u1_token, image.id, 250)
        assert Image.open(io.BytesIO(thumb.data)).width == 250
        assert thumb.data == store.read(variant_ref(image.content_ref, 250))

        with pytest.raises(VaultNotFoundError):
            retrieval.fetch(None, image.id)

        retrieval.set_visibility("u1", image.id, True)
        canonical = retrieval.fetch(None, image.id)
        assert canonical.data == png_bytes
        assert canonical.mime_type == "image/png"

    def test_every_width_readable_after_derivation(self, ingest, worker, derivation_queue, store, png_b64):
        image = ingest.create("u1", "c.png", "image", content=png_b64)
        worker.run(derivation_queue, max_jobs=1, poll_timeout=1)
        for width in (500, 250, 100):
            assert store.exists(variant_ref(image.content_ref, width))

    def test_redelivered_job_is_idempotent(self, ingest, worker, derivation_queue, store, png_b64):
        image = ingest.create("u1", "c.png", "image", content=png_b64)

        delivery = derivation_queue.dequeue(timeout=1)
        worker.process(delivery.job)
        first = store.read(variant_ref(image.content_ref, 100))
        delivery.requeue()

        worker.run(derivation_queue, max_jobs=1, poll_timeout=1)
        assert store.read(variant_ref(image.content_ref, 100)) == first
        assert derivation_queue.pending_count() == 0


class TestInvalidParent:
    def test_nonexistent_parent(self, ingest, catalog, blobs):
        with pytest.raises(VaultValidationError) as exc_info:
            ingest.create("u1", "x", "file", parent_id="e" * 32, content="eA==")
        assert exc_info.value.message.lower() == "parent not found"
        assert catalog.find_many({"owner_id": "u1"}) == []
        assert blobs() == set()
