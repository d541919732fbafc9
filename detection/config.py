"""Rule and global configuration models.

Both files are YAML decoded with ``yaml.safe_load`` and validated into
frozen pydantic models.  Unknown keys are rejected so a typo in a rule
(``exclusionPath`` for ``exclusionsPath``) fails the run instead of
silently disabling a stage.  Keys keep the camelCase spelling used in the
rule repository; Python code reads the snake_case attribute names.

The global config may reference environment variables (``${OPENSEARCH_PASSWORD}``),
expanded before decoding so secrets stay out of the file.
"""

import os
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from detection.errors import ConfigInvalid


class _Strict(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


# ---------------------------------------------------------------------------
# Rule config
# ---------------------------------------------------------------------------

class OutputFormat(str, Enum):
    RAW = "raw"
    SIGNAL = "signal"


class OutputField(_Strict):
    field: str
    source: str


class Output(_Strict):
    format: OutputFormat = OutputFormat.SIGNAL
    fields: tuple[OutputField, ...] = ()


class TTP(_Strict):
    framework: str = ""
    tactic: str = ""
    name: str = ""
    id: str = ""
    reference: str = ""


class RuleLLM(_Strict):
    enabled: bool = False
    prompt: str = ""


class RuleConfig(_Strict):
    name: str
    uid: str
    query_engine: str = Field(alias="queryEngine")
    query: str
    output: Output

    author: str = ""
    description: str = ""
    # Kept as free text: unrecognized labels degrade to "unknown" when the
    # signal is built rather than failing the rule load.
    confidence: str = "unknown"
    enabled: bool = True
    language: str = ""
    schedule: str = ""
    status: str = ""
    publishers: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    ttps: tuple[TTP, ...] = ()
    exclusions_path: str | None = Field(default=None, alias="exclusionsPath")
    llm: RuleLLM | None = None

    @property
    def llm_enabled(self) -> bool:
        return self.llm is not None and self.llm.enabled


# ---------------------------------------------------------------------------
# Global config
# ---------------------------------------------------------------------------
# Instance fields default to empty so a half-configured instance still
# parses; the connector registry decides whether it is usable.

class OpenSearchInstance(_Strict):
    url: str = ""
    username: str = ""
    password: str = ""
    insecure_skip_verify: bool = Field(default=False, alias="insecureSkipVerify")


class KafkaInstance(_Strict):
    bootstrap_servers: str = Field(default="", alias="bootstrapServers")
    topic: str = ""


class WebhookInstance(_Strict):
    webhook_url: str = Field(default="", alias="webhookURL")


class OpenSearchConnectors(_Strict):
    instances: dict[str, OpenSearchInstance] = {}


class KafkaConnectors(_Strict):
    instances: dict[str, KafkaInstance] = {}


class WebhookConnectors(_Strict):
    instances: dict[str, WebhookInstance] = {}


class LLMConfig(_Strict):
    provider: str = ""
    api_key: str = Field(default="", alias="apiKey")
    model: str = ""
    server_url: str = Field(default="", alias="serverURL")
    temperature: float = 0.0


class MetricsConfig(_Strict):
    pushgateway: str = ""
    job: str = "detection_rule"


class GlobalConfig(_Strict):
    opensearch: OpenSearchConnectors = OpenSearchConnectors()
    kafka: KafkaConnectors = KafkaConnectors()
    webhook: WebhookConnectors = WebhookConnectors()
    llm: LLMConfig = LLMConfig()
    metrics: MetricsConfig = MetricsConfig()


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def load_rule_config(path: str | Path) -> RuleConfig:
    path = Path(path)
    with open(path) as f:
        text = f.read()
    return _validate(RuleConfig, _decode(path, text), path)


def load_global_config(path: str | Path) -> GlobalConfig:
    path = Path(path)
    with open(path) as f:
        text = os.path.expandvars(f.read())
    return _validate(GlobalConfig, _decode(path, text), path)


def _decode(path: Path, text: str) -> dict:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"{path.name}: invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigInvalid(f"{path.name}: expected a mapping at the top level")
    return data


def _validate(model: type[BaseModel], data: dict, path: Path):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigInvalid(f"{path.name}: {e}") from e
