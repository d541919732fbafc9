"""Prompt construction for LLM enrichment of a rule's results.

The rule supplies the prompt; this module only renders the batch into it.
Every result becomes one line of ``key: value`` pairs with keys sorted, so
the same batch always produces the same prompt.  The block is substituted
at ``$formatted_results`` (``string.Template`` syntax, so JSON examples in
the prompt need no escaping; a literal dollar sign is written ``$$``):

    llm:
      enabled: true
      prompt: |
        You are reviewing sign-in anomalies.  Results:
        $formatted_results
        Reply with a JSON array of findings, or [] if none.
"""

from string import Template

from detection.errors import TemplateError
from detection.record import Record

PLACEHOLDER = "formatted_results"


def format_results(results: list[Record]) -> str:
    """One line per result, ``key: value`` pairs sorted by key."""
    lines = []
    for result in results:
        fields = ", ".join(f"{key}: {result[key]}" for key in sorted(result))
        lines.append(fields + "\n")
    return "".join(lines)


def generate_prompt(template: str, results: list[Record]) -> str:
    try:
        return Template(template).substitute({PLACEHOLDER: format_results(results)})
    except KeyError as e:
        raise TemplateError(f"unknown placeholder ${e.args[0]} in prompt template") from e
    except ValueError as e:
        raise TemplateError(f"error parsing prompt template: {e}") from e
