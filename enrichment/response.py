"""Parse the model's reply back into records.

The model is asked for a JSON array of flat objects.  Models like to wrap
that in a ```json fence, so one fence around the whole reply is removed;
anything else (commentary before or after the array) is an error.  There
is no attempt to dig an array out of prose.
"""

import json
import logging
import re

from detection.errors import ResponseParseError
from detection.record import Record, stringify

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?[ \t]*\n(.*?)\n?```$", re.DOTALL)


def parse_response(response: str) -> list[Record]:
    text = response.strip()

    m = _FENCE.match(text)
    if m:
        text = m.group(1).strip()
        logger.debug("Extracted JSON from code fence:\n%s", text)

    if text in ("", "[]"):
        return []

    try:
        data = json.loads(text)
    except ValueError as e:
        raise ResponseParseError(f"error decoding LLM response: {e}") from e

    if not isinstance(data, list):
        raise ResponseParseError(
            f"expected a JSON array, got {type(data).__name__}"
        )

    results = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            raise ResponseParseError(
                f"item {i} is {type(item).__name__}, expected an object"
            )
        results.append({str(k): stringify(v) for k, v in item.items()})
    return results
