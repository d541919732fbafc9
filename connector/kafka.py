"""Kafka connector: publish each output as one message on a signals topic.

Every output is produced asynchronously with a delivery callback, then the
producer is flushed so each message is accounted for (delivered or failed)
before ``publish`` returns.  Delivery order across messages is not
guaranteed.  Messages are keyed by rule UID so one rule's signals land on
one partition.

The topic must already exist; construction checks it so a misconfigured
instance is skipped by the registry instead of failing at publish time.
"""

import logging

from confluent_kafka import KafkaException, Producer
from confluent_kafka.admin import AdminClient

from connector import render_outputs
from detection.config import RuleConfig
from detection.errors import BackendUnavailable, PublishFailed
from detection.record import Record

logger = logging.getLogger(__name__)


class KafkaPublisher:

    def __init__(self, bootstrap_servers: str, topic: str, timeout: float = 10.0,
                 producer=None, admin=None):
        self.topic = topic
        self.timeout = timeout

        admin = admin or AdminClient({"bootstrap.servers": bootstrap_servers})
        try:
            # Cluster-wide metadata; a request naming the topic can auto-create it.
            metadata = admin.list_topics(timeout=timeout)
        except KafkaException as e:
            raise BackendUnavailable(f"cannot reach {bootstrap_servers}: {e}") from e
        found = metadata.topics.get(topic)
        if found is None or found.error is not None:
            raise BackendUnavailable(f"topic {topic} doesn't exist")

        try:
            self._producer = producer or Producer({"bootstrap.servers": bootstrap_servers})
        except KafkaException as e:
            raise BackendUnavailable(f"cannot create producer: {e}") from e

    def publish(self, results: list[Record], rule: RuleConfig) -> None:
        if not results:
            return

        payloads, failed = render_outputs(results, rule)
        delivered = 0

        def on_delivery(err, msg):
            nonlocal delivered
            if err is not None:
                logger.error("Failed to deliver message: %s", err)
                failed.append(str(err))
                return
            delivered += 1
            logger.debug("Delivered message to %s [%d] @ %d",
                         msg.topic(), msg.partition(), msg.offset())

        for payload in payloads:
            try:
                self._producer.produce(
                    self.topic,
                    key=rule.uid.encode("utf-8"),
                    value=payload.encode("utf-8"),
                    on_delivery=on_delivery,
                )
            except (BufferError, KafkaException) as e:
                logger.error("Failed to enqueue message: %s", e)
                failed.append(str(e))
            self._producer.poll(0)

        remaining = self._producer.flush(self.timeout)
        if remaining:
            failed.append(f"{remaining} message(s) undelivered after flush")

        logger.info("Delivered %d of %d message(s) to '%s'",
                    delivered, len(results), self.topic)
        if failed:
            raise PublishFailed(
                f"{len(results) - delivered} of {len(results)} result(s) not "
                f"delivered to '{self.topic}': " + "; ".join(failed[:5])
            )
