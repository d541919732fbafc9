"""Webhook connector: post each output to a chat webhook (Slack-compatible).

One POST per output with a ``{"text": ...}`` body naming the rule and
carrying the output JSON in a code block.
"""

import logging

import requests

from connector import render_outputs
from detection.config import RuleConfig
from detection.errors import PublishFailed
from detection.record import Record

logger = logging.getLogger(__name__)


class WebhookPublisher:

    def __init__(self, webhook_url: str, timeout: int = 10,
                 session: requests.Session | None = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._session = session or requests.Session()

    def publish(self, results: list[Record], rule: RuleConfig) -> None:
        if not results:
            return

        payloads, failed = render_outputs(results, rule)
        for payload in payloads:
            try:
                resp = self._session.post(
                    self.webhook_url,
                    json={"text": format_message(rule, payload)},
                    timeout=self.timeout,
                )
                resp.raise_for_status()
            except requests.RequestException as e:
                logger.error("Webhook post failed: %s", e)
                failed.append(str(e))

        if failed:
            raise PublishFailed(
                f"{len(failed)} of {len(results)} result(s) not posted: "
                + "; ".join(failed[:5])
            )


def format_message(rule: RuleConfig, payload: str) -> str:
    return f"*{rule.name}* ({rule.uid})\n```{payload}```"
