"""Connector registry: build every configured backend once, look up by name.

Each backend family in the global config lists named instances.  An
instance missing a required field, or one whose client cannot be built
(Kafka topic absent, broker unreachable), is skipped with a warning; the
remaining instances and families still register.  A rule naming a
skipped instance then fails at lookup with ConnectorNotFound.

Handles are registered as ``<family>.<instance>`` so ``opensearch.prod``
and ``kafka.prod`` can coexist.  The registry is read-only once built.
"""

import logging
from types import MappingProxyType

from connector.kafka import KafkaPublisher
from connector.opensearch import OpenSearchClient
from connector.webhook import WebhookPublisher
from detection.config import GlobalConfig
from detection.errors import BackendUnavailable, ConnectorNotFound

logger = logging.getLogger(__name__)

QUERY_RUNNER = "query_runner"
PUBLISHER = "publisher"


class Registry:

    def __init__(self, query_runners: dict, publishers: dict,
                 skipped: list[tuple[str, str]] | None = None):
        self._handles = {
            QUERY_RUNNER: MappingProxyType(dict(query_runners)),
            PUBLISHER: MappingProxyType(dict(publishers)),
        }
        self.skipped = tuple(skipped or ())

    def resolve(self, kind: str, name: str):
        if kind not in self._handles:
            raise ValueError(f"unknown connector kind '{kind}'")
        try:
            return self._handles[kind][name]
        except KeyError:
            label = kind.replace("_", " ")
            raise ConnectorNotFound(f"{label} '{name}' not found") from None

    def query_runner(self, name: str):
        return self.resolve(QUERY_RUNNER, name)

    def publisher(self, name: str):
        return self.resolve(PUBLISHER, name)

    def names(self, kind: str) -> list[str]:
        return sorted(self._handles[kind])


class RegistryBuilder:
    """Accumulates registered handles and skipped instances."""

    def __init__(self):
        self._query_runners = {}
        self._publishers = {}
        self._skipped = []

    def add(self, family: str, instance: str, handle, kinds: tuple[str, ...]) -> str:
        name = f"{family}.{instance}"
        if QUERY_RUNNER in kinds:
            self._query_runners[name] = handle
        if PUBLISHER in kinds:
            self._publishers[name] = handle
        logger.info("Initialized %s instance '%s' as %s", family, instance,
                    " and ".join(k.replace("_", " ") for k in kinds))
        return name

    def skip(self, family: str, instance: str, reason: str) -> None:
        logger.warning("Skipping %s instance '%s': %s", family, instance, reason)
        self._skipped.append((f"{family}.{instance}", reason))

    def register(self, family: str, instances: dict, required: tuple[tuple[str, str], ...],
                 factory, kinds: tuple[str, ...]) -> None:
        """Validate and construct every instance of one backend family.

        ``required`` pairs each config attribute with the key name used in
        the YAML, for the warning message.
        """
        if not instances:
            logger.debug("No %s instances configured", family)
            return

        for instance, cfg in instances.items():
            missing = [key for attr, key in required if not getattr(cfg, attr)]
            if missing:
                self.skip(family, instance,
                          f"missing required field(s): {', '.join(missing)}")
                continue
            try:
                handle = factory(cfg)
            except (BackendUnavailable, ValueError) as e:
                self.skip(family, instance, str(e))
                continue
            self.add(family, instance, handle, kinds)

    def build(self) -> Registry:
        return Registry(self._query_runners, self._publishers, self._skipped)


# ---------------------------------------------------------------------------
# Backend families
# ---------------------------------------------------------------------------

def _new_opensearch(cfg):
    return OpenSearchClient(cfg.url, cfg.username, cfg.password,
                            insecure_skip_verify=cfg.insecure_skip_verify)


def _new_kafka(cfg):
    return KafkaPublisher(cfg.bootstrap_servers, cfg.topic)


def _new_webhook(cfg):
    return WebhookPublisher(cfg.webhook_url)


def build_registry(cfg: GlobalConfig) -> Registry:
    builder = RegistryBuilder()
    builder.register(
        "opensearch", cfg.opensearch.instances,
        (("url", "url"), ("username", "username"), ("password", "password")),
        _new_opensearch, (QUERY_RUNNER, PUBLISHER),
    )
    builder.register(
        "kafka", cfg.kafka.instances,
        (("bootstrap_servers", "bootstrapServers"), ("topic", "topic")),
        _new_kafka, (PUBLISHER,),
    )
    builder.register(
        "webhook", cfg.webhook.instances,
        (("webhook_url", "webhookURL"),),
        _new_webhook, (PUBLISHER,),
    )
    registry = builder.build()
    if registry.skipped:
        logger.warning("%d connector instance(s) skipped", len(registry.skipped))
    return registry
