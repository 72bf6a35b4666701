"""
txcompose.metrics
=================

Prometheus metrics for compositions. Opt-in: a `Composer` only records when it
is handed a `ComposerMetrics` instance, so the engine itself keeps no global
state. Tests inject a private `CollectorRegistry`.

Exposed metrics
---------------
Counters
- txcompose_compose_total{outcome}        outcome = composed | rejected
- txcompose_reject_total{reason}          error reason (size_exceeded, ...)

Histograms
- txcompose_message_size_bytes            serialized transaction size
- txcompose_lookup_accounts               accounts loaded through tables
- txcompose_compose_seconds               wall time per composition
"""

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram

# Sizes up to and a little past the runtime ceiling.
_SIZE_BUCKETS = (200, 400, 600, 800, 1000, 1100, 1200, 1232, 1500, 2000, 4000)
_ACCOUNT_BUCKETS = (0, 1, 2, 4, 8, 16, 32, 64, 128, 256)
_LAT_BUCKETS = (0.0001, 0.00025, 0.0005, 0.001, 0.002, 0.004, 0.008, 0.016, 0.032, 0.064)


class ComposerMetrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry
        kw = {"registry": registry} if registry is not None else {}

        self.compose_total = Counter(
            "txcompose_compose_total",
            "Compositions by outcome.",
            ["outcome"],
            **kw,
        )
        self.reject_total = Counter(
            "txcompose_reject_total",
            "Rejected compositions by error reason.",
            ["reason"],
            **kw,
        )
        self.message_size_bytes = Histogram(
            "txcompose_message_size_bytes",
            "Serialized size of composed transactions, signatures included.",
            buckets=_SIZE_BUCKETS,
            **kw,
        )
        self.lookup_accounts = Histogram(
            "txcompose_lookup_accounts",
            "Accounts encoded through lookup tables per composed message.",
            buckets=_ACCOUNT_BUCKETS,
            **kw,
        )
        self.compose_seconds = Histogram(
            "txcompose_compose_seconds",
            "Wall time spent in one composition.",
            buckets=_LAT_BUCKETS,
            **kw,
        )

    def record_composed(self, *, size_bytes: int, lookup_accounts: int, seconds: float) -> None:
        self.compose_total.labels(outcome="composed").inc()
        self.message_size_bytes.observe(size_bytes)
        self.lookup_accounts.observe(lookup_accounts)
        self.compose_seconds.observe(seconds)

    def record_rejected(self, *, reason: str, seconds: float) -> None:
        self.compose_total.labels(outcome="rejected").inc()
        self.reject_total.labels(reason=reason).inc()
        self.compose_seconds.observe(seconds)


__all__ = ["ComposerMetrics"]
