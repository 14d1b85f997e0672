"""Request monitoring for calls made through the generation gateway.

``MetricsRegistry`` is constructed explicitly and passed to the gateway, so
tests and separate gateways never share process-wide counters.
``monitored_call`` is the timing wrapper composed around provider calls.
"""

import json
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

from scenecast.gateway.rate_limiter import PLATFORM_CALLER
from scenecast.gateway.retry_policy import RetryContext
from scenecast.schemas.generation import ErrorKind


logger = logging.getLogger(__name__)


T = TypeVar('T')


# Records kept per caller before the oldest are dropped
MAX_METRICS_PER_CALLER = 1000

# Metrics older than this are dropped by cleanup
DEFAULT_RETENTION_SECONDS = 86400.0

# Minimum seconds between cleanups triggered by record()
CLEANUP_INTERVAL_SECONDS = 3600.0

# Trailing window used for live performance indicators
INDICATOR_WINDOW_SECONDS = 60.0

# Health thresholds
MAX_HEALTHY_ERROR_RATE = 10.0
MAX_HEALTHY_LATENCY_MS = 5000.0
MAX_HEALTHY_RATE_LIMIT_HITS = 5


class RequestMetric(BaseModel):
    """One completed (or failed) provider call."""

    timestamp: float = Field(..., description="Wall-clock seconds since the epoch")
    operation: str
    latency_ms: float = Field(..., ge=0.0)
    success: bool
    error_kind: Optional[ErrorKind] = None
    retry_count: int = Field(0, ge=0)
    caller_id: Optional[str] = None


class RequestCounts(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    retried: int = 0


class LatencySummary(BaseModel):
    average: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class GenerationMetrics(BaseModel):
    """Aggregated view over a set of request metrics."""

    requests: RequestCounts = Field(default_factory=RequestCounts)
    latency: LatencySummary = Field(default_factory=LatencySummary)
    errors: Dict[str, int] = Field(default_factory=dict)
    rate_limit_hits: Dict[str, int] = Field(
        default_factory=dict,
        description="RATE_LIMITED failures per operation"
    )


class PerformanceIndicators(BaseModel):
    requests_per_second: float
    error_rate: float = Field(..., description="Percentage of failed requests")
    average_latency_ms: float
    rate_limit_hits: int


class CallerHealth(BaseModel):
    healthy: bool
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


def _percentile(sorted_values: List[float], fraction: float) -> float:
    if not sorted_values:
        return 0.0
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


def aggregate_metrics(metrics: List[RequestMetric]) -> GenerationMetrics:
    """Summarize raw request metrics into counts, latency and error tallies."""
    latencies = sorted(m.latency_ms for m in metrics)
    failed = [m for m in metrics if not m.success]

    errors = {kind.value: 0 for kind in ErrorKind}
    rate_limit_hits: Dict[str, int] = defaultdict(int)
    for metric in failed:
        kind = metric.error_kind or ErrorKind.SERVICE_ERROR
        errors[kind.value] += 1
        if kind == ErrorKind.RATE_LIMITED:
            rate_limit_hits[metric.operation] += 1

    return GenerationMetrics(
        requests=RequestCounts(
            total=len(metrics),
            successful=len(metrics) - len(failed),
            failed=len(failed),
            retried=sum(1 for m in metrics if m.retry_count > 0)
        ),
        latency=LatencySummary(
            average=sum(latencies) / len(latencies) if latencies else 0.0,
            p95=_percentile(latencies, 0.95),
            p99=_percentile(latencies, 0.99)
        ),
        errors=errors,
        rate_limit_hits=dict(rate_limit_hits)
    )


class MetricsRegistry:
    """Per-caller bounded history of request metrics.

    Args:
        max_per_caller: Records retained per caller (oldest dropped first)
        retention_seconds: Age after which metrics are dropped by ``cleanup``
        cleanup_interval_seconds: Minimum time between automatic cleanups
            run from ``record``
        clock: Wall-clock time source in seconds
    """

    def __init__(
        self,
        max_per_caller: int = MAX_METRICS_PER_CALLER,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time
    ):
        self.max_per_caller = max_per_caller
        self.retention_seconds = retention_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.clock = clock
        self._metrics: Dict[str, Deque[RequestMetric]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def record(self, metric: RequestMetric) -> None:
        key = metric.caller_id or PLATFORM_CALLER
        with self._lock:
            history = self._metrics.get(key)
            if history is None:
                history = deque(maxlen=self.max_per_caller)
                self._metrics[key] = history
            history.append(metric)
            due = self.clock() - self._last_cleanup >= self.cleanup_interval_seconds
        if due:
            self.cleanup()

    def get_metrics(
        self,
        caller_id: Optional[str] = None,
        window_seconds: Optional[float] = None
    ) -> GenerationMetrics:
        """Aggregate one caller's metrics, optionally over a trailing window."""
        return aggregate_metrics(self._recent(caller_id or PLATFORM_CALLER, window_seconds))

    def get_all_metrics(self, window_seconds: Optional[float] = None) -> Dict[str, GenerationMetrics]:
        with self._lock:
            callers = list(self._metrics)
        return {
            caller: aggregate_metrics(self._recent(caller, window_seconds))
            for caller in callers
        }

    def performance_indicators(self, caller_id: Optional[str] = None) -> PerformanceIndicators:
        """Live indicators computed over the last minute."""
        recent = self._recent(caller_id or PLATFORM_CALLER, INDICATOR_WINDOW_SECONDS)
        total = len(recent)
        failed = sum(1 for m in recent if not m.success)
        return PerformanceIndicators(
            requests_per_second=total / INDICATOR_WINDOW_SECONDS,
            error_rate=(failed / total) * 100 if total else 0.0,
            average_latency_ms=sum(m.latency_ms for m in recent) / total if total else 0.0,
            rate_limit_hits=sum(1 for m in recent if m.error_kind == ErrorKind.RATE_LIMITED)
        )

    def check_caller_health(self, caller_id: Optional[str] = None) -> CallerHealth:
        indicators = self.performance_indicators(caller_id)
        issues = []
        recommendations = []

        if indicators.error_rate > MAX_HEALTHY_ERROR_RATE:
            issues.append(f"High error rate: {indicators.error_rate:.1f}%")
            recommendations.append("Check API key validity and quota limits")

        if indicators.average_latency_ms > MAX_HEALTHY_LATENCY_MS:
            issues.append(f"High latency: {indicators.average_latency_ms:.0f}ms")
            recommendations.append("Reduce request complexity or use a closer regional endpoint")

        if indicators.rate_limit_hits > MAX_HEALTHY_RATE_LIMIT_HITS:
            issues.append(
                f"Frequent rate limiting: {indicators.rate_limit_hits} hits in last minute"
            )
            recommendations.append("Queue requests or raise the provider rate limit")

        return CallerHealth(healthy=not issues, issues=issues, recommendations=recommendations)

    def export_metrics(
        self,
        format: Literal["json", "prometheus"] = "json",
        window_seconds: float = 3600.0
    ) -> str:
        """Render the last hour of metrics for external monitoring systems."""
        all_metrics = self.get_all_metrics(window_seconds)
        if format == "prometheus":
            return self._format_prometheus(all_metrics)
        if format != "json":
            raise ValueError(f"Unsupported export format: {format}")
        return json.dumps(
            {caller: metrics.model_dump() for caller, metrics in all_metrics.items()},
            indent=2
        )

    def cleanup(self, max_age_seconds: Optional[float] = None) -> int:
        """Drop metrics older than ``max_age_seconds``; returns how many were removed.

        Defaults to the registry's retention. Callers whose history empties
        are forgotten.
        """
        if max_age_seconds is None:
            max_age_seconds = self.retention_seconds
        now = self.clock()
        cutoff = now - max_age_seconds
        removed = 0
        with self._lock:
            self._last_cleanup = now
            for caller in list(self._metrics):
                history = self._metrics[caller]
                kept = [m for m in history if m.timestamp > cutoff]
                removed += len(history) - len(kept)
                if kept:
                    self._metrics[caller] = deque(kept, maxlen=self.max_per_caller)
                else:
                    del self._metrics[caller]
        if removed:
            logger.info(f"Removed {removed} request metrics older than {max_age_seconds:g}s")
        return removed

    def _recent(self, caller: str, window_seconds: Optional[float]) -> List[RequestMetric]:
        with self._lock:
            history = list(self._metrics.get(caller, ()))
        if window_seconds is None:
            return history
        cutoff = self.clock() - window_seconds
        return [m for m in history if m.timestamp > cutoff]

    @staticmethod
    def _format_prometheus(all_metrics: Dict[str, GenerationMetrics]) -> str:
        lines = [
            "# HELP scenecast_requests_total Total number of provider requests",
            "# TYPE scenecast_requests_total counter",
        ]
        for caller, metrics in all_metrics.items():
            lines.append(
                f'scenecast_requests_total{{caller_id="{caller}",status="success"}} '
                f'{metrics.requests.successful}'
            )
            lines.append(
                f'scenecast_requests_total{{caller_id="{caller}",status="failed"}} '
                f'{metrics.requests.failed}'
            )

        lines += [
            "",
            "# HELP scenecast_request_duration_seconds Request duration in seconds",
            "# TYPE scenecast_request_duration_seconds summary",
        ]
        for caller, metrics in all_metrics.items():
            lines.append(
                f'scenecast_request_duration_seconds{{caller_id="{caller}",quantile="0.95"}} '
                f'{metrics.latency.p95 / 1000}'
            )
            lines.append(
                f'scenecast_request_duration_seconds{{caller_id="{caller}",quantile="0.99"}} '
                f'{metrics.latency.p99 / 1000}'
            )

        lines += [
            "",
            "# HELP scenecast_errors_total Total number of errors by kind",
            "# TYPE scenecast_errors_total counter",
        ]
        for caller, metrics in all_metrics.items():
            for kind, count in metrics.errors.items():
                lines.append(
                    f'scenecast_errors_total{{caller_id="{caller}",error_kind="{kind}"}} {count}'
                )

        return "\n".join(lines) + "\n"


def monitored_call(
    registry: MetricsRegistry,
    operation: str,
    func: Callable[[], T],
    caller_id: Optional[str] = None,
    retry_context: Optional[RetryContext] = None,
    clock: Callable[[], float] = time.perf_counter
) -> T:
    """Run ``func`` and record its latency and outcome in ``registry``.

    Exceptions are recorded with their ``kind`` (SERVICE_ERROR when the
    exception carries none) and re-raised unchanged.
    """
    start = clock()

    def _record(success: bool, error_kind: Optional[ErrorKind] = None) -> None:
        registry.record(RequestMetric(
            timestamp=registry.clock(),
            operation=operation,
            latency_ms=max(0.0, (clock() - start) * 1000),
            success=success,
            error_kind=error_kind,
            retry_count=retry_context.retry_count if retry_context else 0,
            caller_id=caller_id
        ))

    try:
        result = func()
    except Exception as e:
        _record(False, getattr(e, 'kind', None) or ErrorKind.SERVICE_ERROR)
        raise
    _record(True)
    return result
