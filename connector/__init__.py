# Connectors are the only code that talks to backends.
#
# A connector satisfies one or both capabilities below.  There is no base
# class: the OpenSearch client is both a QueryRunner and a Publisher, the
# Kafka and webhook clients are Publishers only, and the pipeline never
# needs to know which family it is talking to.  Instances are created once
# per run by connector.registry.build_registry() and looked up by their
# namespaced name ("opensearch.prod", "kafka.signals").

import logging
from typing import Protocol

from detection.config import RuleConfig
from detection.errors import OutputBuildFailed
from detection.record import Record
from detection.signal import build_output, serialize

logger = logging.getLogger(__name__)


class QueryRunner(Protocol):
    def query(self, rule: RuleConfig) -> list[Record]:
        """Run the rule's stored query; every value comes back as a string."""
        ...


class Publisher(Protocol):
    def publish(self, results: list[Record], rule: RuleConfig) -> None:
        """Deliver every result, shaped by the rule's output format.

        Raises PublishFailed if any result was not delivered.
        """
        ...


def render_outputs(results: list[Record], rule: RuleConfig) -> tuple[list[str], list[str]]:
    """Build and serialize each result for a sink.

    A result whose output cannot be built is logged and reported in the
    second list; the rest are still returned so one bad row does not hold
    back the batch.
    """
    payloads, errors = [], []
    for i, result in enumerate(results):
        try:
            payloads.append(serialize(build_output(result, rule)))
        except OutputBuildFailed as e:
            logger.error("Failed to build output for result %d: %s", i, e)
            errors.append(f"result {i}: {e}")
    return payloads, errors


from connector.registry import (  # noqa: E402
    PUBLISHER,
    QUERY_RUNNER,
    Registry,
    RegistryBuilder,
    build_registry,
)

__all__ = [
    "QueryRunner",
    "Publisher",
    "render_outputs",
    "QUERY_RUNNER",
    "PUBLISHER",
    "Registry",
    "RegistryBuilder",
    "build_registry",
]
