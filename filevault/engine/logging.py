"""
FileVault Logging — Structured JSON file-based event logs with async queue.

Implements:
- FileLogger: Per-object-type, per-category log files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush (100ms / 50 entries)
- Log entry builders for catalog, access and derivation events
- LogRetentionManager: deletes/compresses files past their retention

The queue is constructed by the runtime and injected into the services that
emit events; there is no process-wide queue.
"""

from __future__ import annotations

import gzip
import json
import logging
import sys
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

logger = logging.getLogger("filevault.engine.logging")

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "entries": ["execution", "security"],
    "derivation": ["execution", "performance"],
    "sessions": ["security"],
    "system": ["execution"],
}

# Retention defaults (days)
DEFAULT_RETENTION = {
    "execution": 90,
    "performance": 30,
    "security": 365,
}


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging for CLI processes (API server, worker)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = data

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends entries to logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl.

    One lock per target file, so lines from different threads never interleave.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._locks: Dict[Path, threading.Lock] = defaultdict(threading.Lock)
        for object_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                (self._log_dir / object_type / category).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def path_for(self, object_type: str, category: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._log_dir / object_type / category / f"{day.isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Append entries, opening each target file once."""
        lines_by_path: Dict[Path, List[str]] = defaultdict(list)
        for entry in entries:
            lines_by_path[self.path_for(entry.object_type, entry.category)].append(entry.to_json())

        for path, lines in lines_by_path.items():
            with self._locks[path], open(path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")

    def read_today(self, object_type: str, category: str) -> List[Dict[str, Any]]:
        """Today's events for one object_type/category, oldest first. Torn lines are skipped."""
        path = self.path_for(object_type, category)
        if not path.exists():
            return []
        events: List[Dict[str, Any]] = []
        with open(path, encoding="utf-8") as f:
            for line in filter(None, map(str.strip, f)):
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning(f"Skipping unreadable line in {path}")
        return events


class AsyncLogQueue:
    """
    Non-blocking event sink drained into a FileLogger by a daemon thread.

    The flusher waits up to flush_interval_ms for the first pending event and
    then writes whatever is waiting, at most flush_batch_size per write.
    Events pushed while max_queue_size are already pending are dropped and
    counted.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._sink = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._pending: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="filevault-log-flush", daemon=True)
        self._thread.start()
        logger.info("Event log flusher started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flusher and write out everything still pending."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._flush(self._take(limit=None))
        logger.info(f"Event log flusher stopped ({self._dropped} events dropped)")

    def push(self, entry: LogEntry) -> bool:
        """Queue an event. False means it was dropped."""
        try:
            self._pending.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._flush(self._take(limit=self._batch_size, wait=self._interval))

    def _take(self, limit: Optional[int], wait: float = 0.0) -> List[LogEntry]:
        """Pop up to limit events (all when None), waiting at most `wait` for the first."""
        batch: List[LogEntry] = []
        try:
            batch.append(self._pending.get(timeout=wait) if wait > 0 else self._pending.get_nowait())
        except Empty:
            return batch
        while limit is None or len(batch) < limit:
            try:
                batch.append(self._pending.get_nowait())
            except Empty:
                break
        return batch

    def _flush(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self._sink.write_batch(batch)
        except OSError as e:
            logger.error(f"Event log write failed, {len(batch)} events lost: {e}")

    @property
    def pending_count(self) -> int:
        return self._pending.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    entry_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if entry_id:
        data["entry_id"] = entry_id
    if owner_id is not None:
        data["owner_id"] = owner_id
    data.update(extra)
    return data


def log_entry_created(
    entry_id: str,
    owner_id: str,
    kind: str,
    parent_id: str,
    size_bytes: Optional[int] = None,
    duration_ms: Optional[float] = None,
) -> LogEntry:
    """Build an entry-created log entry."""
    data = _base_entry(
        event="entry_created",
        level="INFO",
        entry_id=entry_id,
        owner_id=owner_id,
        kind=kind,
        parent_id=parent_id,
    )
    if size_bytes is not None:
        data["size_bytes"] = size_bytes
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    return LogEntry("entries", "execution", data)


def log_visibility_changed(entry_id: str, owner_id: str, is_public: bool) -> LogEntry:
    data = _base_entry(
        event="entry_published" if is_public else "entry_unpublished",
        level="INFO",
        entry_id=entry_id,
        owner_id=owner_id,
        is_public=is_public,
    )
    return LogEntry("entries", "execution", data)


def log_access_denied(
    entry_id: str,
    requester_id: Optional[str],
    operation: str,
) -> LogEntry:
    """Build an access-denied entry. The caller only ever sees not-found."""
    data = _base_entry(
        event="access_denied",
        level="WARNING",
        entry_id=entry_id,
        requester_id=requester_id,
        operation=operation,
    )
    return LogEntry("entries", "security", data)


def log_session_rejected(reason: str) -> LogEntry:
    data = _base_entry(event="session_rejected", level="WARNING", reason=reason)
    return LogEntry("sessions", "security", data)


def log_derivation_job(
    entry_id: Optional[str],
    owner_id: Optional[str],
    success: bool,
    widths: Optional[List[int]] = None,
    duration_ms: Optional[float] = None,
    attempt: Optional[int] = None,
    retryable: Optional[bool] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """Build a derivation job outcome entry."""
    data = _base_entry(
        event="derivation_completed" if success else "derivation_failed",
        level="INFO" if success else "ERROR",
        entry_id=entry_id,
        owner_id=owner_id,
        success=success,
    )
    if widths:
        data["widths"] = widths
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    if attempt is not None:
        data["attempt"] = attempt
    if retryable is not None:
        data["retryable"] = retryable
    if error:
        data["error"] = error
    return LogEntry("derivation", "execution", data)


def log_derivation_performance(entry_id: str, width: int, duration_ms: float, size_bytes: int) -> LogEntry:
    data = _base_entry(
        event="variant_generated",
        level="INFO",
        entry_id=entry_id,
        width=width,
        duration_ms=duration_ms,
        size_bytes=size_bytes,
    )
    return LogEntry("derivation", "performance", data)


def log_enqueue_failure(entry_id: str, owner_id: str, error: str) -> LogEntry:
    """The entry exists but will have no variants until re-enqueued."""
    data = _base_entry(
        event="derivation_enqueue_failed",
        level="ERROR",
        entry_id=entry_id,
        owner_id=owner_id,
        error=error,
    )
    return LogEntry("derivation", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event log entry (startup, shutdown, worker lifecycle)."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

def _file_day(path: Path) -> Optional[date]:
    """2026-02-12.jsonl and 2026-02-12.jsonl.gz both map to 2026-02-12."""
    try:
        return date.fromisoformat(path.name.split(".", 1)[0])
    except ValueError:
        return None


class LogRetentionManager:
    """
    Applies per-category retention to the event log tree.

    Files older than their category's retention are deleted; plain .jsonl
    files older than compress_after_days are gzipped in place.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = {**DEFAULT_RETENTION, **(retention_days or {})}
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """Returns {"deleted": N, "compressed": M}."""
        today = today or date.today()
        result = {"deleted": 0, "compressed": 0}

        for path in sorted(self._log_dir.glob("*/*/*.jsonl*")):
            day = _file_day(path)
            if day is None or not path.is_file():
                continue
            age = (today - day).days
            if age > self._retention.get(path.parent.name, DEFAULT_RETENTION["execution"]):
                path.unlink()
                result["deleted"] += 1
            elif age > self._compress_after and path.suffix == ".jsonl" and self._compress(path):
                result["compressed"] += 1

        logger.info(f"Log cleanup: {result}")
        return result

    @staticmethod
    def _compress(path: Path) -> bool:
        target = path.with_name(path.name + ".gz")
        try:
            with gzip.open(target, "wb") as out:
                out.write(path.read_bytes())
        except OSError as e:
            logger.error(f"Failed to compress {path}: {e}")
            target.unlink(missing_ok=True)
            return False
        path.unlink()
        return True


def create_event_log(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Build (but do not start) an event log queue writing under log_dir."""
    return AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
