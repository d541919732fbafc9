"""Prometheus metrics for one rule run.

A rule run is a short batch job, so there is nothing for Prometheus to
scrape; counters live on a per-run CollectorRegistry and are pushed to a
Pushgateway at the end of the run when the global config names one:

    metrics:
      pushgateway: pushgateway.monitoring:9091
      job: detection_rule

Grouped by rule UID so each rule's last run replaces its previous push.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, push_to_gateway

from detection.config import MetricsConfig

logger = logging.getLogger(__name__)


class RunMetrics:

    def __init__(self, rule_uid: str):
        self.rule_uid = rule_uid
        self.registry = CollectorRegistry()

        # Results remaining after each stage: query, exclude, enrich.
        self.results_total = Counter(
            "dr_rule_results_total",
            "Results remaining after each pipeline stage",
            ["rule_uid", "stage"],
            registry=self.registry,
        )
        self.excluded_total = Counter(
            "dr_rule_excluded_total",
            "Results dropped by exclusion rules",
            ["rule_uid"],
            registry=self.registry,
        )
        self.publish_total = Counter(
            "dr_rule_publish_total",
            "Publisher outcomes per run",
            ["rule_uid", "publisher", "outcome"],
            registry=self.registry,
        )

    def stage(self, stage: str, count: int) -> None:
        self.results_total.labels(rule_uid=self.rule_uid, stage=stage).inc(count)

    def excluded(self, count: int) -> None:
        self.excluded_total.labels(rule_uid=self.rule_uid).inc(count)

    def published(self, publisher: str, ok: bool) -> None:
        self.publish_total.labels(
            rule_uid=self.rule_uid,
            publisher=publisher,
            outcome="success" if ok else "failure",
        ).inc()

    def push(self, cfg: MetricsConfig) -> None:
        """Push to the configured Pushgateway; failures are only logged."""
        if not cfg.pushgateway:
            return
        try:
            push_to_gateway(
                cfg.pushgateway,
                job=cfg.job,
                registry=self.registry,
                grouping_key={"rule_uid": self.rule_uid},
            )
        except OSError as e:
            logger.warning("Failed to push metrics to %s: %s", cfg.pushgateway, e)
