# LLM enrichment: render a batch of results into the rule's prompt, make
# one model call, and replace the batch with the model's findings.

from enrichment.client import LLMClient, new_client
from enrichment.prompt import format_results, generate_prompt
from enrichment.response import parse_response
from enrichment.stage import process

__all__ = [
    "LLMClient",
    "new_client",
    "format_results",
    "generate_prompt",
    "parse_response",
    "process",
]
