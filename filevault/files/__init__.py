"""FileVault Files — Catalog entries, ingest and retrieval."""
