"""
FileVault — File catalog, content store and image thumbnail pipeline.

Packages:
    filevault.engine      config, errors, logging, sessions, health, runtime
    filevault.db          SQLAlchemy catalog schema and sessions
    filevault.storage     blob storage
    filevault.files       ingest and retrieval services
    filevault.derivation  job queue, thumbnail generation, worker
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "storage", "files", "derivation"]
