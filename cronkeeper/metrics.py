"""Prometheus instrumentation for the keeper service."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest


class KeeperMetrics:
    """Counters kept on a private registry so several services can coexist."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.evaluations = Counter(
            "keeper_evaluations_total",
            "Count of evaluate calls by outcome",
            labelnames=("outcome",),
            registry=self.registry,
        )
        self.actions = Counter(
            "keeper_actions_total",
            "Count of executed keeper actions",
            labelnames=("kind",),
            registry=self.registry,
        )
        self.rejections = Counter(
            "keeper_rejections_total",
            "Count of executions that failed",
            labelnames=("reason",),
            registry=self.registry,
        )
        self.refilled_in = Counter(
            "keeper_refill_converted_total",
            "Source asset units converted by refills",
            registry=self.registry,
        )
        self.refilled_out = Counter(
            "keeper_refill_received_total",
            "Payment token units credited by refills",
            registry=self.registry,
        )
        self.round_failures = Counter(
            "keeper_round_failures_total",
            "Count of rounds aborted by an unexpected error",
            labelnames=("error",),
            registry=self.registry,
        )
        self.operating_balance = Gauge(
            "keeper_operating_balance",
            "Last observed operating balance in payment token units",
            registry=self.registry,
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


__all__ = ["KeeperMetrics"]
