"""FileVault Derivation — Thumbnail jobs, queue and worker."""
