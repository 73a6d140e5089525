"""Gemini native API gateway."""
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

DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiGateway:
    """Gateway for the Google Gemini generativeLanguage API.

    The generateContent endpoint is stateless, so no history is sent; the
    session id is only logged.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = "https://generativelanguage.googleapis.com",
        *,
        temperature: float = 0.2,
        max_output_tokens: int = 8192,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens
        self._http = HttpClient(
            base_url,
            {"content-type": "application/json"},
            provider="gemini",
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "gemini"

    @property
    def model(self) -> str:
        return self._model

    # ------------------------------------------------------------------
    # Request translation
    # ------------------------------------------------------------------

    def _build_request_body(
        self, system_prompt: str, parts: Sequence[ContentPart]
    ) -> dict[str, Any]:
        """Translate content parts into a Gemini generateContent body."""
        body: dict[str, Any] = {
            "contents": [
                {"role": "user", "parts": [self._translate_part(p) for p in parts] or [{"text": ""}]}
            ],
            "generationConfig": {
                "temperature": self._temperature,
                "maxOutputTokens": self._max_output_tokens,
            },
        }
        if system_prompt:
            body["system_instruction"] = {"parts": [{"text": system_prompt}]}
        return body

    @staticmethod
    def _translate_part(part: ContentPart) -> dict[str, Any]:
        if part.kind == ContentKind.IMAGE and part.image is not None:
            return {
                "inlineData": {
                    "mimeType": part.image.media_type,
                    "data": encode_to_base64(part.image.data),
                }
            }
        return {"text": part.text or ""}

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _parse_response(self, raw: dict[str, Any]) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = raw.get("candidates") or []
        if not candidates:
            block_reason = (raw.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise BadRequestError(
                    f"Prompt blocked by provider: {block_reason}", provider="gemini", raw=raw
                )
            raise EmptyResponseError("Response contained no candidates", provider="gemini", raw=raw)

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason", "")
        if finish_reason in ("SAFETY", "RECITATION", "PROHIBITED_CONTENT"):
            raise BadRequestError(
                f"Response blocked by provider: {finish_reason}", provider="gemini", raw=raw
            )

        raw_parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(rp.get("text", "") for rp in raw_parts)
        if not text.strip():
            raise EmptyResponseError("Response contained no text", provider="gemini", raw=raw)
        return text

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def send(
        self,
        session_id: str,
        system_prompt: str,
        parts: Sequence[ContentPart],
    ) -> str:
        """Send one generateContent request and return its text."""
        body = self._build_request_body(system_prompt, parts)
        logger.debug("gemini send: session=%s model=%s parts=%d", session_id, self._model, len(parts))
        raw = await self._http.post_json(
            f"/v1beta/models/{self._model}:generateContent",
            body,
            params={"key": self._api_key},
        )
        return self._parse_response(raw)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()
