"""LLM clients for the enrichment stage.

The stage only needs ``call(prompt) -> str``; these wrap the provider SDKs
behind that.  The provider and model come from the global config's ``llm``
block:

    llm:
      provider: anthropic        # or openai
      model: claude-haiku-4-5-20251001
      apiKey: ${ANTHROPIC_API_KEY}
      temperature: 0

When ``apiKey`` is empty the key is read from a Docker secret
(``/run/secrets/<provider>_api_key``), then from the provider's usual
environment variable.
"""

import logging
import os
from typing import Protocol

import anthropic
import openai

from detection.config import LLMConfig
from detection.errors import ConfigInvalid, ModelCallFailed

logger = logging.getLogger(__name__)

_SECRETS_DIR = "/run/secrets"
_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class LLMClient(Protocol):
    def call(self, prompt: str) -> str:
        ...


class AnthropicClient:
    def __init__(self, api_key: str, model: str, temperature: float = 0.0,
                 base_url: str | None = None, max_tokens: int = 4096):
        self._client = anthropic.Anthropic(api_key=api_key, base_url=base_url)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def call(self, prompt: str) -> str:
        response = self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in response.content if block.type == "text"
        )


class OpenAIClient:
    def __init__(self, api_key: str, model: str, temperature: float = 0.0,
                 base_url: str | None = None):
        self._client = openai.OpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.temperature = temperature

    def call(self, prompt: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.choices:
            raise ModelCallFailed("no response from OpenAI API")
        return response.choices[0].message.content or ""


_PROVIDERS = {
    "anthropic": AnthropicClient,
    "openai": OpenAIClient,
}


def new_client(cfg: LLMConfig) -> LLMClient:
    """Build the client named by ``cfg.provider``."""
    factory = _PROVIDERS.get(cfg.provider)
    if factory is None:
        raise ConfigInvalid(f"unsupported LLM provider: '{cfg.provider}'")
    if not cfg.model:
        raise ConfigInvalid("llm.model is required when enrichment is enabled")

    api_key = cfg.api_key or read_api_key(cfg.provider)
    if not api_key:
        raise ConfigInvalid(
            f"no API key for '{cfg.provider}' (checked llm.apiKey, "
            f"{_SECRETS_DIR}/{cfg.provider}_api_key and ${_ENV_KEYS[cfg.provider]})"
        )

    logger.info("Using LLM provider=%s model=%s", cfg.provider, cfg.model)
    return factory(
        api_key=api_key,
        model=cfg.model,
        temperature=cfg.temperature,
        base_url=cfg.server_url or None,
    )


def read_api_key(provider: str) -> str | None:
    """Read a provider API key, preferring Docker secrets over env vars."""
    secrets_path = os.path.join(_SECRETS_DIR, f"{provider}_api_key")
    try:
        with open(secrets_path) as f:
            key = f.read().strip()
            if key:
                return key
    except FileNotFoundError:
        pass
    return os.environ.get(_ENV_KEYS.get(provider, ""))
