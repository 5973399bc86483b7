"""Prometheus-backed metrics hooks for the pool cache, strategies and cycle loop."""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


class MetricsRecorder:
    """
    Expose engine stats via Prometheus.

    Collectors live on ``registry`` (a private CollectorRegistry by default)
    so several recorders can coexist, e.g. one per test. When disabled every
    record_* call is a no-op.
    """

    def __init__(
        self,
        enabled: bool = True,
        port: int = 9100,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.registry = registry if registry is not None else CollectorRegistry()

        if not self._enabled:
            return

        self._refresh_counter = Counter(
            "dlmm_pool_refresh_total",
            "Pool refresh attempts by outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self._refresh_summary = Summary(
            "dlmm_pool_refresh_duration_seconds",
            "Duration of pool refreshes",
            registry=self.registry,
        )
        self._cache_read_counter = Counter(
            "dlmm_cache_reads_total",
            "Pool cache reads by result (hit, refreshed, coalesced, stale, untracked)",
            labelnames=("result",),
            registry=self.registry,
        )
        self._snapshot_age_gauge = Gauge(
            "dlmm_snapshot_age_seconds",
            "Age of the cached snapshot per pool",
            labelnames=("pool",),
            registry=self.registry,
        )
        self._history_points_counter = Counter(
            "dlmm_history_points_total",
            "Historical observations recorded",
            labelnames=("granularity",),
            registry=self.registry,
        )
        self._history_pruned_counter = Counter(
            "dlmm_history_pruned_total",
            "In-memory historical points removed by retention",
            registry=self.registry,
        )
        self._history_store_errors = Counter(
            "dlmm_history_store_errors_total",
            "Durable history store failures by operation",
            labelnames=("operation",),
            registry=self.registry,
        )
        self._risk_rejections = Counter(
            "dlmm_risk_rejections_total",
            "Actions rejected by the risk filter",
            labelnames=("strategy", "reason"),
            registry=self.registry,
        )
        self._actions_counter = Counter(
            "dlmm_actions_total",
            "Risk-approved actions emitted by strategies",
            labelnames=("strategy", "action"),
            registry=self.registry,
        )
        self._executions_counter = Counter(
            "dlmm_executions_total",
            "Action executions by outcome",
            labelnames=("strategy", "action", "outcome"),
            registry=self.registry,
        )
        self._cycle_counter = Counter(
            "dlmm_cycle_total",
            "Decision cycles by status",
            labelnames=("status",),
            registry=self.registry,
        )
        self._cycle_summary = Summary(
            "dlmm_cycle_duration_seconds",
            "Duration of a full decision cycle",
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info(f"Prometheus metrics exporter listening on :{self._port}")

    def record_refresh(self, outcome: str, duration_seconds: float) -> None:
        if not self._enabled:
            return
        self._refresh_counter.labels(outcome=outcome).inc()
        if outcome != "skipped":
            self._refresh_summary.observe(max(duration_seconds, 0.0))

    def record_cache_read(self, result: str) -> None:
        if not self._enabled:
            return
        self._cache_read_counter.labels(result=result).inc()

    def record_snapshot_age(self, pool_address: str, age_seconds: float) -> None:
        if not self._enabled:
            return
        self._snapshot_age_gauge.labels(pool=pool_address).set(max(age_seconds, 0.0))

    def record_history_point(self, granularity: str) -> None:
        if not self._enabled:
            return
        self._history_points_counter.labels(granularity=granularity).inc()

    def record_history_pruned(self, count: int) -> None:
        if not self._enabled or count <= 0:
            return
        self._history_pruned_counter.inc(count)

    def record_history_store_error(self, operation: str) -> None:
        if not self._enabled:
            return
        self._history_store_errors.labels(operation=operation).inc()

    def record_risk_rejection(self, strategy: str, reason: str) -> None:
        if not self._enabled:
            return
        self._risk_rejections.labels(strategy=strategy, reason=reason).inc()

    def record_action(self, strategy: str, action_type: str) -> None:
        if not self._enabled:
            return
        self._actions_counter.labels(strategy=strategy, action=action_type).inc()

    def record_execution(self, strategy: str, action_type: str, outcome: str) -> None:
        if not self._enabled:
            return
        self._executions_counter.labels(strategy=strategy, action=action_type, outcome=outcome).inc()

    def record_cycle(self, status: str, duration_seconds: float) -> None:
        if not self._enabled:
            return
        self._cycle_counter.labels(status=status).inc()
        self._cycle_summary.observe(max(duration_seconds, 0.0))

    def sample(self, name: str, labels: Optional[dict] = None) -> Optional[float]:
        """Current value of a sample on this recorder's registry (None if absent)."""
        return self.registry.get_sample_value(name, labels or {})
