"""Run one detection rule: query, exclude, enrich, publish.

Meant to be invoked by a scheduler, once per rule.  Exits non-zero when
the configuration is unusable, a connector the rule names is missing, the
query fails, or LLM enrichment fails.  A failing publisher is logged and
the run still exits 0 if nothing else went wrong.

Usage:
    python -m detection.main -r rules/okta_mfa_bypass.yaml
    python -m detection.main -r rules/okta_mfa_bypass.yaml -c config/files/global_config.yaml -l debug
"""

import argparse
import logging
import sys

from connector import build_registry
from detection.config import load_global_config, load_rule_config
from detection.errors import ConfigInvalid, ConnectorNotFound, EnrichmentFailed, QueryFailed
from detection.exclusion import Excluder
from detection.metrics import RunMetrics
from detection.pipeline import Pipeline
from enrichment import new_client

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_CONFIG = "config/files/global_config.yaml"
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def setup_logging(level: str) -> None:
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a detection rule")
    parser.add_argument("-r", "--rule-config", required=True,
                        help="Path to the rule configuration file")
    parser.add_argument("-c", "--global-config", default=DEFAULT_GLOBAL_CONFIG,
                        help=f"Path to the global configuration file (default: {DEFAULT_GLOBAL_CONFIG})")
    parser.add_argument("-l", "--log-level", default="info", choices=LOG_LEVELS,
                        type=str.lower, help="Log level (default: info)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        rule = load_rule_config(args.rule_config)
        if not rule.enabled:
            logger.info("Rule '%s' is disabled, nothing to do", rule.name)
            return 0
        global_cfg = load_global_config(args.global_config)

        excluder = None
        if rule.exclusions_path:
            excluder = Excluder.load(rule.exclusions_path)
            logger.info("Loaded %d exclusion rule(s) from %s",
                        len(excluder), rule.exclusions_path)

        llm_client = new_client(global_cfg.llm) if rule.llm_enabled else None

        registry = build_registry(global_cfg)
        metrics = RunMetrics(rule.uid)
        pipeline = Pipeline.from_registry(
            rule, registry, excluder=excluder, llm_client=llm_client, metrics=metrics,
        )
    except (OSError, ConfigInvalid, ConnectorNotFound) as e:
        logger.error("Configuration error: %s", e)
        return 1

    logger.info("Running rule '%s' (%s) on %s", rule.name, rule.uid, rule.query_engine)
    try:
        report = pipeline.run()
    except QueryFailed as e:
        logger.error("Error running the query: %s", e)
        return 1
    except EnrichmentFailed as e:
        logger.error("Error processing LLM: %s", e)
        return 1
    finally:
        metrics.push(global_cfg.metrics)

    if report.failed_publishers:
        logger.warning("Publishing failed for: %s", ", ".join(report.failed_publishers))
    logger.info("Done. %d queried, %d excluded, %d publisher(s) succeeded.",
                report.queried, report.excluded,
                len(report.published) - len(report.failed_publishers))
    return 0


if __name__ == "__main__":
    sys.exit(main())
