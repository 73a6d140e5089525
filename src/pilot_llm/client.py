"""Gateway construction from environment variables."""
from __future__ import annotations

import os

from pilot_llm.errors import ConfigurationError
from pilot_llm.gateway import ModelServiceGateway, StubGateway

PROVIDERS = ("gemini", "openai", "anthropic", "stub")

_DEFAULT_BASE_URLS = {
    "gemini": "https://generativelanguage.googleapis.com",
    "openai": "https://api.openai.com",
    "anthropic": "https://api.anthropic.com",
}


def _require_key(provider: str) -> str:
    env_var = f"{provider.upper()}_API_KEY"
    key = os.environ.get(env_var)
    if not key:
        raise ConfigurationError(
            f"{env_var} is not set; a credential is required for provider {provider!r}",
            provider=provider,
        )
    return key


def gateway_from_env(
    provider: str,
    model: str | None = None,
    *,
    timeout: float = 120.0,
) -> ModelServiceGateway:
    """Create a gateway for *provider* from environment variables.

    Reads ``<PROVIDER>_API_KEY`` and the optional ``<PROVIDER>_BASE_URL``.
    The ``stub`` provider needs no credential and always answers UNCHANGED.
    """
    provider = provider.lower()
    if provider == "stub":
        return StubGateway()
    if provider not in _DEFAULT_BASE_URLS:
        raise ConfigurationError(f"Unknown provider: {provider}", provider=provider)

    api_key = _require_key(provider)
    base_url = os.environ.get(f"{provider.upper()}_BASE_URL", _DEFAULT_BASE_URLS[provider])
    kwargs: dict = {"base_url": base_url, "timeout": timeout}
    if model:
        kwargs["model"] = model

    # Lazy import providers so the stub path never touches httpx
    if provider == "gemini":
        from pilot_llm.providers.gemini import GeminiGateway

        return GeminiGateway(api_key, **kwargs)
    if provider == "openai":
        from pilot_llm.providers.openai import OpenAIGateway

        return OpenAIGateway(api_key, org_id=os.environ.get("OPENAI_ORG_ID"), **kwargs)

    from pilot_llm.providers.anthropic import AnthropicGateway

    return AnthropicGateway(api_key, **kwargs)
