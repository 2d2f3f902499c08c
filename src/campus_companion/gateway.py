"""
campus_companion/gateway.py

Uniform access to an OpenAI-compatible chat-completions endpoint.

Two call shapes:
  complete()     one POST, returns the first choice's text.
  open_stream()  one POST with ``stream: true``; returns an
                   :class:`UpstreamStream` once the status line has been
                   checked.  Text deltas are decoded lazily from the SSE body,
                   so nothing is buffered beyond the current line.

Every failure (non-2xx, network error, deadline) surfaces as
:class:`~campus_companion.errors.UpstreamError`.  No retries happen here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from campus_companion.errors import UpstreamError

logger = logging.getLogger("campus-companion.gateway")

_ERROR_BODY_LIMIT: int = 300


def redact(text: str, secret: str) -> str:
    """Remove ``secret`` from ``text`` so it never lands in an error or log."""
    if secret and secret in text:
        return text.replace(secret, "***")
    return text


def error_detail(body: str, secret: str) -> str:
    """Truncate and redact an upstream error body."""
    return redact(body, secret)[:_ERROR_BODY_LIMIT]


def _first_choice_text(data: dict[str, Any]) -> str:
    choices = data.get("choices") or [{}]
    message = choices[0].get("message") or {}
    content = message.get("content")
    if not isinstance(content, str):
        raise ValueError("completion carried no text content")
    return content


class UpstreamStream:
    """An open streaming completion.

    The caller owns the stream and must call :meth:`aclose` (or use it as an
    async context manager) to release the connection.
    """

    def __init__(self, response: httpx.Response, *, provider: str, model: str) -> None:
        self._response = response
        self.provider = provider
        self.model = model

    async def text_deltas(self) -> AsyncIterator[str]:
        """Yield each non-empty content delta in arrival order.

        Raises:
            UpstreamError: If the connection fails mid-stream.
        """
        try:
            async for line in self._response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("[gateway] skipping undecodable SSE line: %r", data[:80])
                    continue
                choices = event.get("choices") or [{}]
                delta = (choices[0].get("delta") or {}).get("content")
                if delta:
                    yield delta
        except httpx.HTTPError as exc:
            raise UpstreamError(self.provider, None, type(exc).__name__) from exc

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> UpstreamStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class ModelGateway:
    """Chat-completions client for one provider.

    Args:
        client: Shared ``httpx.AsyncClient``.
        base_url: Provider base URL, e.g. ``https://api.groq.com/openai/v1``.
        api_key: Bearer key.  Never logged, redacted from error bodies.
        provider: Short label used in logs and errors.
        timeout: Deadline in seconds for one call.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str,
        provider: str,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._api_key = api_key
        self.provider = provider
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _check_configured(self) -> None:
        if not self._api_key:
            raise UpstreamError(self.provider, None, "API key not configured")

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int = 400,
        temperature: float = 0.3,
    ) -> str:
        """Run one blocking completion and return its text.

        Args:
            model: Provider model identifier.
            messages: Chat messages (``content`` may be a multimodal list).
            max_tokens: Output token budget.
            temperature: Sampling temperature.

        Returns:
            The first choice's message content.

        Raises:
            UpstreamError: On non-2xx, network failure, deadline or a
                response without text content.
        """
        self._check_configured()
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": 0.9,
            "stream": False,
        }
        logger.info("[gateway] provider=%s model=%r max_tokens=%d", self.provider, model, max_tokens)
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._client.post(
                    self._url, json=payload, headers=self._headers()
                )
        except TimeoutError as exc:
            raise UpstreamError(self.provider, None, f"timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(self.provider, None, type(exc).__name__) from exc

        if response.is_error:
            detail = error_detail(response.text, self._api_key)
            logger.error(
                "[gateway] provider=%s model=%r HTTP %d: %s",
                self.provider, model, response.status_code, detail,
            )
            raise UpstreamError(self.provider, response.status_code, detail)

        try:
            text = _first_choice_text(response.json())
        except (ValueError, AttributeError, IndexError) as exc:
            raise UpstreamError(
                self.provider, response.status_code, "malformed completion body"
            ) from exc
        logger.info("[gateway] provider=%s model=%r response length=%d chars", self.provider, model, len(text))
        return text

    async def open_stream(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> UpstreamStream:
        """Open a streaming completion.

        The status line is read before returning, so a refused connection or
        a non-2xx response raises here rather than yielding an empty stream.

        Raises:
            UpstreamError: If the stream cannot be opened.
        """
        self._check_configured()
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": 0.9,
            "stream": True,
        }
        request = self._client.build_request(
            "POST",
            self._url,
            json=payload,
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout),
        )
        logger.info("[gateway] provider=%s model=%r opening stream", self.provider, model)
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._client.send(request, stream=True)
        except TimeoutError as exc:
            raise UpstreamError(self.provider, None, f"timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(self.provider, None, type(exc).__name__) from exc

        if response.is_error:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            detail = error_detail(body, self._api_key)
            logger.error(
                "[gateway] provider=%s model=%r stream HTTP %d: %s",
                self.provider, model, response.status_code, detail,
            )
            raise UpstreamError(self.provider, response.status_code, detail)

        return UpstreamStream(response, provider=self.provider, model=model)
