"""Unit tests for filevault.engine.logging — FileLogger, AsyncLogQueue, builders, retention."""

import gzip
import json
import time
from datetime import date, timedelta

import pytest

from filevault.engine.logging import (
    OBJECT_TYPE_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    LogRetentionManager,
    create_event_log,
    log_access_denied,
    log_derivation_job,
    log_derivation_performance,
    log_enqueue_failure,
    log_entry_created,
    log_session_rejected,
    log_system_event,
    log_visibility_changed,
)


class TestLogEntry:
    def test_to_json_compact(self):
        entry = LogEntry("entries", "execution", {"event": "x", "n": 1})
        assert entry.to_json() == '{"event":"x","n":1}'


class TestFileLogger:
    def test_creates_category_directories(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                assert (tmp_path / obj_type / cat).is_dir()

    def test_write_and_read_today(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write(log_system_event("runtime_started"))
        fl.write(log_system_event("runtime_shutdown"))

        entries = fl.read_today("system", "execution")
        assert [e["event"] for e in entries] == ["runtime_started", "runtime_shutdown"]
        assert (tmp_path / "system" / "execution" / f"{date.today().isoformat()}.jsonl").exists()

    def test_write_batch_groups_by_file(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write_batch([
            log_entry_created("e1", "u1", "folder", "0"),
            log_access_denied("e2", None, "fetch"),
            log_entry_created("e3", "u1", "file", "0"),
        ])
        assert len(fl.read_today("entries", "execution")) == 2
        assert len(fl.read_today("entries", "security")) == 1

    def test_read_today_missing_file(self, tmp_path):
        assert FileLogger(log_dir=str(tmp_path)).read_today("derivation", "performance") == []

    def test_read_today_skips_torn_lines(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        fl.write(log_system_event("before"))
        with open(fl.path_for("system", "execution"), "a", encoding="utf-8") as f:
            f.write('{"event": "tor\n')
        fl.write(log_system_event("after"))
        assert [e["event"] for e in fl.read_today("system", "execution")] == ["before", "after"]


class TestAsyncLogQueue:
    def test_push_and_drain_on_stop(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        q = AsyncLogQueue(fl, flush_interval_ms=10)
        q.start()
        for i in range(5):
            assert q.push(log_system_event(f"evt_{i}")) is True
        q.stop()
        assert len(fl.read_today("system", "execution")) == 5
        assert q.pending_count == 0

    def test_background_flush(self, tmp_path):
        fl = FileLogger(log_dir=str(tmp_path))
        q = AsyncLogQueue(fl, flush_interval_ms=10)
        q.start()
        q.push(log_system_event("flushed"))
        deadline = time.monotonic() + 2.0
        while not fl.read_today("system", "execution") and time.monotonic() < deadline:
            time.sleep(0.02)
        q.stop()
        assert fl.read_today("system", "execution")[0]["event"] == "flushed"

    def test_drops_when_full(self, tmp_path):
        q = AsyncLogQueue(FileLogger(log_dir=str(tmp_path)), max_queue_size=2)
        assert q.push(log_system_event("a")) is True
        assert q.push(log_system_event("b")) is True
        assert q.push(log_system_event("c")) is False
        assert q.dropped_count == 1
        assert q.pending_count == 2

    def test_create_event_log_not_started(self, tmp_path):
        q = create_event_log(log_dir=str(tmp_path))
        q.push(log_system_event("queued"))
        assert q.pending_count == 1
        q.stop()
        assert q.pending_count == 0


class TestBuilders:
    def test_entry_created(self):
        entry = log_entry_created("e1", "u1", "image", "0", size_bytes=42, duration_ms=1.5)
        assert (entry.object_type, entry.category) == ("entries", "execution")
        assert entry.data["event"] == "entry_created"
        assert entry.data["size_bytes"] == 42
        assert entry.data["kind"] == "image"

    def test_visibility_changed(self):
        assert log_visibility_changed("e1", "u1", True).data["event"] == "entry_published"
        assert log_visibility_changed("e1", "u1", False).data["event"] == "entry_unpublished"

    def test_access_denied_is_security(self):
        entry = log_access_denied("e1", "u2", "fetch")
        assert (entry.object_type, entry.category) == ("entries", "security")
        assert entry.data["requester_id"] == "u2"
        assert entry.data["level"] == "WARNING"

    def test_session_rejected(self):
        entry = log_session_rejected("unknown token")
        assert (entry.object_type, entry.category) == ("sessions", "security")

    def test_derivation_job_success_and_failure(self):
        ok = log_derivation_job("e1", "u1", True, widths=[500, 250], duration_ms=3.0, attempt=1)
        assert ok.data["event"] == "derivation_completed"
        assert ok.data["widths"] == [500, 250]

        failed = log_derivation_job("e1", "u1", False, attempt=2, retryable=True, error="disk full")
        assert failed.data["event"] == "derivation_failed"
        assert failed.data["level"] == "ERROR"
        assert failed.data["retryable"] is True
        assert "widths" not in failed.data

    def test_derivation_performance(self):
        entry = log_derivation_performance("e1", 250, 4.2, 1024)
        assert (entry.object_type, entry.category) == ("derivation", "performance")
        assert entry.data["width"] == 250

    def test_enqueue_failure(self):
        entry = log_enqueue_failure("e1", "u1", "Job queue unavailable")
        assert entry.data["event"] == "derivation_enqueue_failed"
        assert entry.data["level"] == "ERROR"

    def test_system_event_details(self):
        entry = log_system_event("worker_started", details={"queue": "q"})
        assert entry.data["details"] == {"queue": "q"}
        assert "details" not in log_system_event("bare").data


class TestLogRetentionManager:
    def _touch(self, directory, day: date, suffix=".jsonl"):
        path = directory / f"{day.isoformat()}{suffix}"
        path.write_text('{"event":"x"}\n', encoding="utf-8")
        return path

    def test_deletes_and_compresses(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        perf_dir = tmp_path / "derivation" / "performance"
        today = date.today()

        expired = self._touch(perf_dir, today - timedelta(days=40))
        aging = self._touch(perf_dir, today - timedelta(days=10))
        fresh = self._touch(perf_dir, today)

        result = LogRetentionManager(log_dir=str(tmp_path)).cleanup()

        assert result == {"deleted": 1, "compressed": 1}
        assert not expired.exists()
        assert not aging.exists()
        gz = aging.with_suffix(".jsonl.gz")
        assert gz.exists()
        with gzip.open(gz, "rt", encoding="utf-8") as f:
            assert json.loads(f.readline())["event"] == "x"
        assert fresh.exists()

    def test_ignores_unparseable_names(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        stray = tmp_path / "system" / "execution" / "notes.txt"
        stray.write_text("keep me", encoding="utf-8")
        assert LogRetentionManager(log_dir=str(tmp_path)).cleanup() == {"deleted": 0, "compressed": 0}
        assert stray.exists()

    def test_custom_retention(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        sec_dir = tmp_path / "entries" / "security"
        old = self._touch(sec_dir, date.today() - timedelta(days=3))
        mgr = LogRetentionManager(log_dir=str(tmp_path), retention_days={"security": 1})
        assert mgr.cleanup()["deleted"] == 1
        assert not old.exists()

    def test_override_keeps_other_defaults(self, tmp_path):
        FileLogger(log_dir=str(tmp_path))
        today = date(2026, 3, 1)
        perf = self._touch(tmp_path / "derivation" / "performance", today - timedelta(days=31))
        sec = self._touch(tmp_path / "entries" / "security", today - timedelta(days=31))

        mgr = LogRetentionManager(log_dir=str(tmp_path), retention_days={"security": 400}, compress_after_days=60)
        assert mgr.cleanup(today=today) == {"deleted": 1, "compressed": 0}
        assert not perf.exists()
        assert sec.exists()

    def test_missing_log_dir(self, tmp_path):
        assert LogRetentionManager(log_dir=str(tmp_path / "absent")).cleanup() == {"deleted": 0, "compressed": 0}
