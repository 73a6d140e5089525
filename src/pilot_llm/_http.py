"""Async HTTP client wrapper around httpx."""
from __future__ import annotations

from typing import Any

import httpx

from pilot_llm.errors import (
    GatewayError,
    NetworkError,
    RequestTimeoutError,
    error_from_status_code,
)


class HttpClient:
    """Thin wrapper around :class:`httpx.AsyncClient` that maps errors into pilot_llm exceptions."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str],
        *,
        provider: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider = provider
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def post_json(
        self,
        path: str,
        json: dict[str, Any],
        *,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST *json* and return the decoded response body.

        Raises a pilot_llm error on non-2xx status or transport failure.
        """
        try:
            resp = await self._client.post(path, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                f"Request timed out: {exc}", provider=self._provider, cause=exc
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Network error: {exc}", provider=self._provider, cause=exc
            ) from exc

        if resp.status_code >= 300:
            raise self._translate_error(resp)

        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError(
                f"Provider returned a non-JSON body: {resp.text[:200]}",
                provider=self._provider,
                status_code=resp.status_code,
                cause=exc,
            ) from exc

    def _translate_error(self, resp: httpx.Response) -> GatewayError:
        """Translate an HTTP error response to a pilot_llm error."""
        body: dict[str, Any] | None
        try:
            body = resp.json()
        except ValueError:
            body = None

        message = resp.text
        error_code = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error_info = body["error"]
            message = error_info.get("message", message)
            code = error_info.get("status") or error_info.get("type") or error_info.get("code")
            error_code = str(code) if code else None

        retry_after = None
        if "retry-after" in resp.headers:
            try:
                retry_after = float(resp.headers["retry-after"])
            except (ValueError, TypeError):
                pass

        return error_from_status_code(
            resp.status_code,
            message,
            provider=self._provider,
            error_code=error_code,
            raw=body if isinstance(body, dict) else None,
            retry_after=retry_after,
        )

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()
