"""Exception taxonomy for a rule run.

Each stage raises from one family so the CLI can decide what is fatal:
configuration, query and enrichment errors end the run; output-build and
publish errors are contained by the publishers and the orchestrator.
"""


class ConfigInvalid(ValueError):
    """Rule, global or exclusion configuration failed to parse or validate."""


class ExclusionFileInvalid(ConfigInvalid):
    pass


class InvalidOperator(ConfigInvalid):
    pass


class InvalidRegex(ConfigInvalid):
    pass


class EmptyValueSet(ConfigInvalid):
    pass


class AmbiguousConditionGroup(ConfigInvalid):
    """A condition group populates both ``and`` and ``or``."""


# ---------------------------------------------------------------------------
# Connectors
# ---------------------------------------------------------------------------

class BackendUnavailable(RuntimeError):
    """A connector instance could not be constructed."""


class ConnectorNotFound(LookupError):
    pass


class QueryFailed(RuntimeError):
    pass


class PublishFailed(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

class EnrichmentFailed(RuntimeError):
    pass


class ClientNotInitialized(EnrichmentFailed):
    pass


class TemplateError(EnrichmentFailed):
    pass


class ModelCallFailed(EnrichmentFailed):
    pass


class ResponseParseError(EnrichmentFailed):
    pass


# ---------------------------------------------------------------------------
# Output construction
# ---------------------------------------------------------------------------

class OutputBuildFailed(ValueError):
    pass


class MissingSourceField(OutputBuildFailed):
    pass


class UnsupportedOutputField(OutputBuildFailed):
    pass


class FieldCountMismatch(OutputBuildFailed):
    pass


class TimestampParseError(OutputBuildFailed):
    pass
