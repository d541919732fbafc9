"""Enrichment stage: one model call per batch, findings replace the batch.

The model sees every surviving result at once and answers with its own
list of findings, which is what gets published.  An empty answer means the
model found nothing worth reporting, and nothing is published.
"""

import logging

from detection.config import RuleConfig
from detection.errors import ClientNotInitialized, EnrichmentFailed, ModelCallFailed
from detection.record import Record
from enrichment.client import LLMClient
from enrichment.prompt import generate_prompt
from enrichment.response import parse_response

logger = logging.getLogger(__name__)


def process(client: LLMClient | None, results: list[Record],
            rule: RuleConfig) -> list[Record]:
    if not results:
        logger.info("No results to process with LLM")
        return []

    if client is None:
        raise ClientNotInitialized("LLM client is not initialized")

    prompt = generate_prompt(rule.llm.prompt if rule.llm else "", results)
    logger.debug("LLM prompt:\n%s", prompt)

    try:
        response = client.call(prompt)
    except EnrichmentFailed:
        raise
    except Exception as e:
        raise ModelCallFailed(f"error calling LLM: {e}") from e

    findings = parse_response(response)
    if not findings:
        logger.info("LLM response is empty. No high-confidence findings.")
    else:
        logger.info("LLM returned %d finding(s) from %d result(s)",
                    len(findings), len(results))
    return findings
