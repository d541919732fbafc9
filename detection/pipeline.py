"""Pipeline orchestrator: runs one detection rule end-to-end.

    Query -> Exclude -> Enrich -> Publish

1. Query: the rule's query engine returns result rows.  Failure is fatal.
2. Exclude: drop rows matching the rule's exclusion file, if it has one.
3. Enrich: if the rule enables the LLM stage, the model's findings replace
   the rows.  Failure is fatal, nothing is published.
4. Publish: every publisher receives the same rows and shapes them itself
   (raw or signal).  One publisher failing is logged and does not stop the
   others.

An empty batch after any stage ends the run successfully.  No state
survives the run.
"""

import logging
from dataclasses import dataclass, field

from connector import Publisher, QueryRunner, Registry
from detection.config import RuleConfig
from detection.exclusion import Excluder
from detection.metrics import RunMetrics
from enrichment import LLMClient, process

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    queried: int = 0
    excluded: int = 0
    enriched: int | None = None  # None when the stage did not run
    published: dict[str, bool] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def failed_publishers(self) -> list[str]:
        return [name for name, ok in self.published.items() if not ok]


class Pipeline:

    def __init__(self, rule: RuleConfig, query_runner: QueryRunner,
                 publishers: list[tuple[str, Publisher]],
                 excluder: Excluder | None = None,
                 llm_client: LLMClient | None = None,
                 metrics: RunMetrics | None = None):
        self.rule = rule
        self.query_runner = query_runner
        self.publishers = list(publishers)
        self.excluder = excluder
        self.llm_client = llm_client
        self.metrics = metrics

    @classmethod
    def from_registry(cls, rule: RuleConfig, registry: Registry, **kwargs) -> "Pipeline":
        """Resolve the rule's query engine and publishers by name.

        Raises ConnectorNotFound for any name the registry does not hold.
        """
        query_runner = registry.query_runner(rule.query_engine)
        publishers = [(name, registry.publisher(name)) for name in rule.publishers]
        return cls(rule, query_runner, publishers, **kwargs)

    def run(self) -> RunReport:
        report = RunReport()

        results = self.query_runner.query(self.rule)
        report.queried = len(results)
        self._count("query", len(results))
        logger.info("Query returned %d result(s)", len(results))
        if not results:
            logger.info("No results to publish")
            return report

        if self.excluder is not None:
            kept = self.excluder.filter(results)
            report.excluded = len(results) - len(kept)
            results = kept
            self._count("exclude", len(results))
            if self.metrics:
                self.metrics.excluded(report.excluded)
            logger.info("After exclusions, %d result(s) remain", len(results))
            if not results:
                logger.info("No results to publish")
                return report

        if self.rule.llm_enabled:
            results = process(self.llm_client, results, self.rule)
            report.enriched = len(results)
            self._count("enrich", len(results))
            if not results:
                logger.info("No results from LLM to publish")
                return report
            logger.info("LLM processing completed successfully")

        self._publish(results, report)
        return report

    def _publish(self, results, report: RunReport) -> None:
        for name, publisher in self.publishers:
            try:
                publisher.publish(results, self.rule)
            except Exception as e:
                logger.error("Error publishing to '%s': %s", name, e)
                report.published[name] = False
                report.errors[name] = str(e)
            else:
                logger.info("Successfully published %d result(s) to '%s'",
                            len(results), name)
                report.published[name] = True
            if self.metrics:
                self.metrics.published(name, report.published[name])

    def _count(self, stage: str, count: int) -> None:
        if self.metrics:
            self.metrics.stage(stage, count)
