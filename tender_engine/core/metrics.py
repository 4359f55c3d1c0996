"""Performance metrics and timing instrumentation.

Utilities for timing operations and recording generation-provider attempts.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

from tender_engine.core.logging import get_logger

logger = get_logger(__name__)


@contextmanager
def timer(operation_name: str, run_id: Optional[str] = None, log_level: str = "info"):
    """
    Context manager for timing operations.

    Logs operation duration on completion.

    Args:
        operation_name: Name of the operation being timed
        run_id: Optional pipeline run / batch invocation id for context
        log_level: Log level ("debug", "info", "warning")

    Usage:
        with timer("Batch - load eligible jobs", run_id):
            jobs = store.list_eligible(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000

        extra: dict[str, Any] = {
            "extra_data": {"operation": operation_name, "duration_ms": round(elapsed_ms, 1)}
        }
        if run_id:
            extra["run_id"] = run_id

        log_msg = f"{operation_name} took {elapsed_ms:.1f}ms"

        if log_level == "debug":
            logger.debug(log_msg, extra=extra)
        elif log_level == "warning":
            logger.warning(log_msg, extra=extra)
        else:
            logger.info(log_msg, extra=extra)


@dataclass
class ProviderStats:
    """Aggregated attempt statistics for one provider."""

    attempts: int = 0
    successes: int = 0
    failures: int = 0
    total_latency_ms: float = 0.0
    last_error: str | None = None

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.attempts if self.attempts else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "last_error": self.last_error,
        }


class ProviderMetrics:
    """
    Process-wide recorder of provider attempts.

    The cascade itself is stateless across calls; every attempt it makes is
    reported here so success rates and latency per provider stay observable.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stats: dict[str, ProviderStats] = {}

    def record(
        self,
        provider: str,
        success: bool,
        latency_ms: float,
        error: str | None = None,
        operation: str | None = None,
    ) -> None:
        with self._lock:
            stats = self._stats.setdefault(provider, ProviderStats())
            stats.attempts += 1
            stats.total_latency_ms += latency_ms
            if success:
                stats.successes += 1
            else:
                stats.failures += 1
                stats.last_error = error

        logger.info(
            f"Provider attempt {provider}: {'ok' if success else 'failed'} in {latency_ms:.0f}ms",
            extra={
                "provider": provider,
                "extra_data": {
                    "operation": operation or "generate",
                    "success": success,
                    "latency_ms": round(latency_ms, 1),
                    **({"error": error[:200]} if error else {}),
                },
            },
        )

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in self._stats.items()}

    def reset(self) -> None:
        """Clear all stats (for testing)."""
        with self._lock:
            self._stats.clear()


provider_metrics = ProviderMetrics()
