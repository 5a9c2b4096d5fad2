"""
FileVault Health Check — Connectivity of the catalog, session store, queue
and content store.

Used by:
    - `filevault health` CLI command
    - FileVaultRuntime.health for readiness probes
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("filevault.engine.health")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckResult:
    """Result of a single health check."""
    name: str
    status: HealthStatus
    latency_ms: float = 0.0
    message: str = ""
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class _RegisteredCheck:
    name: str
    check_fn: Callable[[], bool]
    critical: bool = True


class HealthCheckService:
    """
    Runs registered checks and aggregates them into an overall status.

    A failing critical check makes the platform unhealthy; a failing
    non-critical one only degrades it (e.g. the queue: uploads still work,
    thumbnails lag).

    Usage:
        service = HealthCheckService()
        service.register_check("catalog", db.health_check)
        service.register_check("queue", queue.health_check, critical=False)
        summary = service.get_platform_health(run=True)
    """

    def __init__(self):
        self._checks: Dict[str, _RegisteredCheck] = {}
        self._results: Dict[str, HealthCheckResult] = {}

    def register_check(self, name: str, check_fn: Callable[[], bool], critical: bool = True) -> None:
        """Register a callable returning True when the subsystem is healthy."""
        self._checks[name] = _RegisteredCheck(name=name, check_fn=check_fn, critical=critical)
        self._results[name] = HealthCheckResult(name=name, status=HealthStatus.UNKNOWN)
        logger.debug(f"Registered health check: {name}")

    def check(self, name: str) -> HealthCheckResult:
        """Run a single health check by name."""
        if name not in self._checks:
            return HealthCheckResult(
                name=name,
                status=HealthStatus.UNKNOWN,
                message=f"No health check registered for '{name}'",
            )

        registered = self._checks[name]
        failed_status = HealthStatus.UNHEALTHY if registered.critical else HealthStatus.DEGRADED
        start = time.monotonic()

        try:
            healthy = bool(registered.check_fn())
            message = "OK" if healthy else "Check returned unhealthy"
        except Exception as e:  # a check must never take the probe down
            healthy = False
            message = str(e)

        result = HealthCheckResult(
            name=name,
            status=HealthStatus.HEALTHY if healthy else failed_status,
            latency_ms=(time.monotonic() - start) * 1000,
            message=message,
        )
        self._results[name] = result
        return result

    def check_all(self) -> Dict[str, HealthCheckResult]:
        for name in self._checks:
            self.check(name)
        return dict(self._results)

    def get_last_result(self, name: str) -> Optional[HealthCheckResult]:
        return self._results.get(name)

    def is_healthy(self, name: str) -> bool:
        result = self._results.get(name)
        return result is not None and result.status == HealthStatus.HEALTHY

    def get_platform_health(self, run: bool = False) -> Dict[str, Any]:
        """
        Overall health summary.

        Returns:
            Dict with overall status + individual check results.
        """
        results = self.check_all() if run else dict(self._results)
        statuses = [r.status for r in results.values()]

        if all(s == HealthStatus.HEALTHY for s in statuses):
            overall = HealthStatus.HEALTHY
        elif any(s == HealthStatus.UNHEALTHY for s in statuses):
            overall = HealthStatus.UNHEALTHY
        else:
            overall = HealthStatus.DEGRADED

        return {
            "status": overall.value,
            "checks": {name: r.to_dict() for name, r in results.items()},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @property
    def registered_checks(self) -> List[str]:
        return list(self._checks.keys())
