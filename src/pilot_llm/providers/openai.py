"""OpenAI Responses API gateway."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from pilot_llm._base64 import make_data_uri
from pilot_llm._http import HttpClient
from pilot_llm.errors import BadRequestError, EmptyResponseError
from pilot_llm.types import ContentKind, ContentPart

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class OpenAIGateway:
    """Gateway for the OpenAI Responses API.

    Requests are sent with ``store: false`` and the session id as ``user``,
    so the provider cannot chain them to earlier turns.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = "https://api.openai.com",
        *,
        org_id: str | None = None,
        temperature: float = 0.2,
        max_output_tokens: int = 8192,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

        headers: dict[str, str] = {
            "authorization": f"Bearer {api_key}",
            "content-type": "application/json",
        }
        if org_id:
            headers["openai-organization"] = org_id

        self._http = HttpClient(
            base_url, headers, provider="openai", timeout=timeout, transport=transport
        )

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    def _build_request_body(
        self, session_id: str, system_prompt: str, parts: Sequence[ContentPart]
    ) -> dict[str, Any]:
        """Translate content parts into a Responses API body."""
        content: list[dict[str, Any]] = []
        for part in parts:
            if part.kind == ContentKind.IMAGE and part.image is not None:
                content.append(
                    {
                        "type": "input_image",
                        "image_url": make_data_uri(part.image.data, part.image.media_type),
                    }
                )
            else:
                content.append({"type": "input_text", "text": part.text or ""})

        body: dict[str, Any] = {
            "model": self._model,
            "input": [{"type": "message", "role": "user", "content": content}],
            "temperature": self._temperature,
            "max_output_tokens": self._max_output_tokens,
            "store": False,
            "user": session_id,
        }
        if system_prompt:
            body["instructions"] = system_prompt
        return body

    def _parse_response(self, raw: dict[str, Any]) -> str:
        """Collect output_text blocks from the message items."""
        if raw.get("status") == "incomplete":
            reason = (raw.get("incomplete_details") or {}).get("reason", "")
            if reason == "content_filter":
                raise BadRequestError("Response blocked by content filter", provider="openai", raw=raw)

        chunks: list[str] = []
        for item in raw.get("output") or []:
            if item.get("type") != "message":
                continue
            for block in item.get("content") or []:
                if block.get("type") == "output_text":
                    chunks.append(block.get("text", ""))
        text = "".join(chunks)
        if not text.strip():
            raise EmptyResponseError("Response contained no text", provider="openai", raw=raw)
        return text

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        """Send one Responses API request and return its text."""
        body = self._build_request_body(session_id, system_prompt, parts)
        logger.debug("openai send: session=%s model=%s parts=%d", session_id, self._model, len(parts))
        raw = await self._http.post_json("/v1/responses", body)
        return self._parse_response(raw)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()
