"""
FileVault CLI — Bootstrap and operations commands.

Commands:
- filevault init         — Create catalog tables and the storage folder
- filevault worker       — Run the thumbnail derivation worker
- filevault health       — Print health checks as JSON (exit 1 if unhealthy)
- filevault config       — Print the effective configuration
- filevault rederive     — Enqueue a derivation job for an existing image
- filevault session      — Issue a session token for a user (development)
- filevault cleanup-logs — Delete or compress event logs past retention
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Optional

from filevault.engine.errors import VaultError

logger = logging.getLogger("filevault.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="filevault",
        description="FileVault — file catalog with image thumbnails",
    )
    parser.add_argument("--config", help="Path to filevault.yaml (default: auto-discover)")
    parser.add_argument("--log-level", default=None, help="Override logging.level from config")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # filevault init
    subparsers.add_parser("init", help="Create catalog tables and storage folder")

    # filevault worker
    worker_parser = subparsers.add_parser("worker", help="Run the derivation worker")
    worker_parser.add_argument(
        "--max-jobs", type=int, default=None, help="Stop after N jobs (default: run forever)"
    )

    # filevault health
    subparsers.add_parser("health", help="Check catalog, store, sessions and queue")

    # filevault config
    subparsers.add_parser("config", help="Print effective configuration")

    # filevault rederive
    rederive_parser = subparsers.add_parser("rederive", help="Enqueue thumbnails for an image")
    rederive_parser.add_argument("--owner", required=True, help="Owner user id")
    rederive_parser.add_argument("--entry", required=True, help="Image entry id")

    # filevault session
    session_parser = subparsers.add_parser("session", help="Issue a session token")
    session_parser.add_argument("owner", help="User id the token resolves to")

    # filevault cleanup-logs
    subparsers.add_parser("cleanup-logs", help="Apply event log retention")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    from filevault.engine.config import load_config
    from filevault.engine.logging import configure_logging

    try:
        config = load_config(args.config)
    except VaultError as e:
        print(f"[ERROR] {e.message}")
        return 1
    configure_logging(args.log_level or config.logging.level)

    commands = {
        "init": cmd_init,
        "worker": cmd_worker,
        "health": cmd_health,
        "config": cmd_config,
        "rederive": cmd_rederive,
        "session": cmd_session,
        "cleanup-logs": cmd_cleanup_logs,
    }
    return commands[args.command](args, config)


def cmd_init(args: argparse.Namespace, config) -> int:
    """Create catalog tables and the storage folder."""
    from sqlalchemy.exc import SQLAlchemyError

    from filevault.db.session import init_catalog_db
    from filevault.storage.content_store import LocalContentStore

    try:
        db = init_catalog_db(config.database.url)
        print("[OK] Catalog tables created")
        db.dispose()
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to create catalog tables: {e}")
        return 1

    try:
        store = LocalContentStore(config.storage.folder_path)
        store.ensure_root()
        print(f"[OK] Storage folder ready: {store.root}")
    except VaultError as e:
        print(f"[ERROR] {e.message}")
        return 1

    return 0


def cmd_worker(args: argparse.Namespace, config) -> int:
    """Run the derivation worker until interrupted or --max-jobs is reached."""
    from filevault.engine.runtime import FileVaultRuntime

    runtime = FileVaultRuntime(config)
    try:
        runtime.startup()
    except VaultError as e:
        print(f"[ERROR] {e.message}")
        return 1

    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping worker")
        stop_event.set()

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}

    worker = runtime.worker()
    try:
        with runtime.consumer_queue() as queue:
            stats = worker.run(queue, max_jobs=args.max_jobs, stop_event=stop_event)
    except VaultError as e:
        print(f"[ERROR] {e.message}")
        return 1
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        runtime.shutdown()

    print(json.dumps(stats.to_dict()))
    return 0


def cmd_health(args: argparse.Namespace, config) -> int:
    from filevault.engine.runtime import FileVaultRuntime

    runtime = FileVaultRuntime(config, create_tables=False)
    runtime.startup()
    try:
        summary = runtime.health.get_platform_health(run=True)
    finally:
        runtime.shutdown()

    print(json.dumps(summary, indent=2))
    return 1 if summary["status"] == "unhealthy" else 0


def cmd_config(args: argparse.Namespace, config) -> int:
    print(json.dumps(config.model_dump(), indent=2))
    return 0


def cmd_rederive(args: argparse.Namespace, config) -> int:
    """Re-enqueue a derivation job, e.g. after an enqueue failure at upload."""
    from filevault.engine.runtime import FileVaultRuntime
    from filevault.files.models import EntryKind

    with FileVaultRuntime(config) as runtime:
        try:
            entry = runtime.retrieval.get(args.owner, args.entry)
        except VaultError as e:
            print(f"[ERROR] {e.message}")
            return 1
        if entry.kind is not EntryKind.IMAGE:
            print(f"[ERROR] Entry {entry.id} is not an image")
            return 1
        if not runtime.ingest.request_derivation(entry):
            print(f"[ERROR] Could not enqueue derivation for {entry.id}")
            return 1

    print(f"[OK] Derivation enqueued for {entry.id}")
    return 0


def cmd_session(args: argparse.Namespace, config) -> int:
    from filevault.engine.runtime import FileVaultRuntime

    with FileVaultRuntime(config) as runtime:
        try:
            token = runtime.sessions.create_session(args.owner)
        except VaultError as e:
            print(f"[ERROR] {e.message}")
            return 1

    print(token)
    return 0


def cmd_cleanup_logs(args: argparse.Namespace, config) -> int:
    from filevault.engine.logging import LogRetentionManager

    manager = LogRetentionManager(
        log_dir=config.logging.directory,
        retention_days={
            "execution": config.logging.retention.execution_days,
            "performance": config.logging.retention.performance_days,
            "security": config.logging.retention.security_days,
        },
        compress_after_days=config.logging.compress_after_days,
    )
    print(json.dumps(manager.cleanup()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
