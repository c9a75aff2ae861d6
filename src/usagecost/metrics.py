from typing import Sequence

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

from usagecost.models import ProviderDisplayGroup


class CostMetrics:
    """
    publishes derived cost figures and controller outcomes to a
    Prometheus registry.

     - group_effective_total_usd: deduplicated cost per display group.
     - group_requests / group_tokens: usage per display group.
     - autosave_total: autosave outcomes (saved, skipped, failed).
     - request_cache_total: request page cache decisions.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._registry: "CollectorRegistry" = registry
        labels = ["group", "api_key_ref"]
        self._group_cost: "Gauge" = Gauge(
            "usagecost_group_effective_total_usd",
            "Deduplicated effective cost in USD per provider group",
            labels,
            registry=registry,
        )
        self._group_requests: "Gauge" = Gauge(
            "usagecost_group_requests",
            "Requests per provider group",
            labels,
            registry=registry,
        )
        self._group_tokens: "Gauge" = Gauge(
            "usagecost_group_tokens",
            "Tokens per provider group",
            labels,
            registry=registry,
        )
        self._autosave: "Counter" = Counter(
            "usagecost_autosave_total",
            "Autosave outcomes",
            ["status"],
            registry=registry,
        )
        self._cache_decisions: "Counter" = Counter(
            "usagecost_request_cache_total",
            "Request page cache decisions",
            ["decision"],
            registry=registry,
        )

    @property
    def registry(self) -> "CollectorRegistry":
        return self._registry

    def update_groups(self, groups: "Sequence[ProviderDisplayGroup]") -> "None":
        """
        replaces the per-group gauges with the given aggregation pass.
        Groups with an unknown cost have no cost sample.
        """
        for gauge in (self._group_cost, self._group_requests, self._group_tokens):
            gauge.clear()
        for group in groups:
            labels = {"group": group.display_name, "api_key_ref": group.detail_label}
            self._group_requests.labels(**labels).set(group.requests)
            self._group_tokens.labels(**labels).set(group.total_tokens)
            if group.effective_total is not None:
                self._group_cost.labels(**labels).set(group.effective_total)

    def inc_autosave(self, status: "str") -> "None":
        self._autosave.labels(status=status).inc()

    def inc_cache_decision(self, decision: "str") -> "None":
        self._cache_decisions.labels(decision=decision).inc()
