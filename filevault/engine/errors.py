"""
FileVault Error Hierarchy — Structured exceptions returned by every core operation.

Every externally exposed operation raises exactly one of these kinds. The
message carried by an error is safe to show to a caller: storage paths,
SQL and broker details are logged, never embedded in the message.

Hierarchy:
    VaultError
    ├── VaultValidationError     — Missing/invalid field (name, kind, data, parent, size)
    ├── VaultNotFoundError       — Entry absent, or present but not visible to the caller
    ├── VaultConflictError       — Reserved for rename/move
    ├── VaultStorageError        — Blob write/read failure
    ├── VaultUpstreamError       — Catalog or queue operation failed
    ├── VaultSessionError        — Missing or invalid bearer token
    └── VaultConfigError         — Invalid filevault.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class VaultError(Exception):
    """
    Base error for all FileVault failures.
    Context kwargs are kept for logging; only message and error_type are public.
    """

    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.entry_id: Optional[str] = context.get("entry_id")
        self.owner_id: Optional[str] = context.get("owner_id")
        self.operation: Optional[str] = context.get("operation")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing representation, free of internal detail."""
        return {
            "error_type": self.error_type,
            "error": self.message,
        }

    def to_log_dict(self) -> Dict[str, Any]:
        """Full representation for structured logs."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "entry_id": self.entry_id,
            "owner_id": self.owner_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("entry_id", "owner_id", "operation")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.entry_id:
            parts.append(f"entry_id={self.entry_id}")
        return " | ".join(parts)


class VaultValidationError(VaultError):
    """
    Input validation failed. Raised before any mutation, so it never
    leaves partial state behind.
    """

    def __init__(self, message: str, **context: Any):
        self.field: Optional[str] = context.get("field")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if self.field:
            d["field"] = self.field
        return d


class VaultNotFoundError(VaultError):
    """
    Entry absent or not visible to the caller.
    The two cases are indistinguishable to the caller.
    """

    def __init__(self, message: str = "Not found", **context: Any):
        super().__init__(message, **context)


class VaultConflictError(VaultError):
    """Reserved for rename/move conflicts."""
    pass


class VaultStorageError(VaultError):
    """Content Store write or read failed."""

    retryable = True


class VaultUpstreamError(VaultError):
    """Catalog or queue operation failed transiently."""

    retryable = True

    def __init__(self, message: str, **context: Any):
        self.upstream: Optional[str] = context.get("upstream")
        super().__init__(message, **context)


class VaultSessionError(VaultError):
    """Missing or invalid session token."""

    def __init__(self, message: str = "Unauthorized", **context: Any):
        super().__init__(message, **context)


class VaultConfigError(VaultError):
    """Configuration error: invalid filevault.yaml."""
    pass
