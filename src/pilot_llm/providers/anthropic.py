"""Anthropic Messages API gateway."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from pilot_llm._base64 import encode_to_base64
from pilot_llm._http import HttpClient
from pilot_llm.errors import BadRequestError, EmptyResponseError
from pilot_llm.types import ContentKind, ContentPart

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicGateway:
    """Gateway for the Anthropic Messages API."""

    ANTHROPIC_VERSION = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = "https://api.anthropic.com",
        *,
        temperature: float = 0.2,
        max_tokens: int = 8192,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._http = HttpClient(
            base_url,
            {
                "x-api-key": api_key,
                "anthropic-version": self.ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            provider="anthropic",
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model

    def _build_request_body(
        self, session_id: str, system_prompt: str, parts: Sequence[ContentPart]
    ) -> dict[str, Any]:
        """Translate content parts into a Messages API body."""
        content: list[dict[str, Any]] = []
        for part in parts:
            if part.kind == ContentKind.IMAGE and part.image is not None:
                content.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.image.media_type,
                            "data": encode_to_base64(part.image.data),
                        },
                    }
                )
            else:
                content.append({"type": "text", "text": part.text or ""})

        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": content or [{"type": "text", "text": ""}]}],
            "metadata": {"user_id": session_id},
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    def _parse_response(self, raw: dict[str, Any]) -> str:
        """Concatenate text blocks of the response."""
        if raw.get("stop_reason") == "refusal":
            raise BadRequestError("Model refused the request", provider="anthropic", raw=raw)
        text = "".join(
            block.get("text", "")
            for block in raw.get("content") or []
            if block.get("type") == "text"
        )
        if not text.strip():
            raise EmptyResponseError("Response contained no text", provider="anthropic", raw=raw)
        return text

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        """Send one Messages API request and return its text."""
        body = self._build_request_body(session_id, system_prompt, parts)
        logger.debug("anthropic send: session=%s model=%s parts=%d", session_id, self._model, len(parts))
        raw = await self._http.post_json("/v1/messages", body)
        return self._parse_response(raw)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()
