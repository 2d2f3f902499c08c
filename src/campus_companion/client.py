"""
campus_companion/client.py

Python consumer for ``POST /ai-chat``.

:meth:`CompanionClient.ask` streams the answer and publishes the growing
visible text as it arrives.  Fallbacks, in order:

  1. streamed request (preferred)
  2. one synchronous JSON request if the stream fails or has no trailer
  3. the fixed apology, tagged ``error_fallback``

``ask`` never raises.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx

from campus_companion.errors import StreamError
from campus_companion.orchestrator import APOLOGY_MESSAGE, ERROR_FALLBACK
from campus_companion.streaming import decode_frame, visible_text

logger = logging.getLogger("campus-companion.client")


@dataclasses.dataclass(slots=True)
class ChatReply:
    """One finished answer as seen by the client."""

    text: str
    processing_type: str
    routing: dict[str, Any] | None = None
    timestamp: str | None = None
    student_context: dict[str, Any] | None = None


def _reply_from_json(data: Any) -> ChatReply:
    if not isinstance(data, dict) or not isinstance(data.get("response"), str):
        raise ValueError("chat response carried no text")
    return ChatReply(
        text=data["response"],
        processing_type=str(data.get("processing_type", "")),
        routing=data.get("routing"),
        timestamp=data.get("timestamp"),
        student_context=data.get("student_context"),
    )


class CompanionClient:
    """Async client for the chat endpoint.

    Args:
        base_url: Server root, e.g. ``http://localhost:8300``.
        token: Optional bearer credential; without one the server answers
            as a guest.
        client: Shared ``httpx.AsyncClient``.  One is created (and closed by
            :meth:`aclose`) when omitted.
        timeout: Read timeout in seconds for a created client.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._url = base_url.rstrip("/") + "/ai-chat"
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CompanionClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def ask(
        self,
        message: str,
        context: str | None = None,
        history: list[dict[str, str]] | None = None,
        session_id: str | None = None,
        on_partial: Callable[[str], None] | None = None,
    ) -> ChatReply:
        """Ask one question.

        Args:
            message: The student's message.
            context: Optional free-text context.
            history: Prior turns as ``{"role", "content"}`` dicts.
            session_id: Opaque session identifier passed through.
            on_partial: Called with the visible text each time it grows.
                Successive values are prefixes of the final text.

        Returns:
            The final reply.  Never raises.
        """
        body: dict[str, Any] = {
            "message": message,
            "context": context,
            "session_id": session_id,
            "history": history or [],
        }
        try:
            return await self._ask_streaming({**body, "stream": True}, on_partial)
        except (StreamError, httpx.HTTPError, ValueError) as exc:
            logger.warning("[client] stream failed, retrying synchronously: %s", exc)

        try:
            return await self._ask_sync({**body, "stream": False})
        except Exception as exc:
            logger.error("[client] synchronous request failed: %s", exc)
            return ChatReply(text=APOLOGY_MESSAGE, processing_type=ERROR_FALLBACK)

    async def _ask_streaming(
        self,
        body: dict[str, Any],
        on_partial: Callable[[str], None] | None,
    ) -> ChatReply:
        async with self._client.stream(
            "POST", self._url, json=body, headers=self._headers()
        ) as response:
            if response.status_code != 200:
                raise StreamError(f"stream request returned HTTP {response.status_code}")
            if response.headers.get("content-type", "").startswith("application/json"):
                # The server answered synchronously (stream could not be opened).
                return _reply_from_json(json.loads(await response.aread()))

            accumulated = ""
            shown = ""
            async for chunk in response.aiter_text():
                accumulated += chunk
                visible = visible_text(accumulated)
                if len(visible) > len(shown):
                    shown = visible
                    if on_partial is not None:
                        on_partial(shown)

        text, meta = decode_frame(accumulated)
        if meta is None:
            raise StreamError("stream ended without its metadata trailer")
        logger.info("[client] stream complete: %d chars, %s", len(text), meta.get("processing_type"))
        return ChatReply(
            text=text,
            processing_type=str(meta.get("processing_type", "")),
            routing=meta.get("routing"),
            timestamp=meta.get("timestamp"),
            student_context=meta.get("student_context"),
        )

    async def _ask_sync(self, body: dict[str, Any]) -> ChatReply:
        response = await self._client.post(self._url, json=body, headers=self._headers())
        response.raise_for_status()
        return _reply_from_json(response.json())
