"""
campus_companion/streaming.py

Streamed chat responses and their wire format.

Wire format (``text/plain; charset=utf-8``)::

    <text chunk><text chunk>...<text chunk>\\n{"finish": true, ...}

The body is the agent's text, relayed chunk by chunk as the upstream produces
it.  The final line is one JSON object (the trailer) carrying
``finish``, ``processing_type``, ``routing``, ``timestamp`` and
``student_context``.  ``json.dumps`` never emits a raw newline, so the trailer
is always exactly the text after the last ``\\n``.

:func:`encode_trailer`, :func:`decode_frame` and :func:`visible_text` are the
only code that knows this layout; the server and the client both go through
them.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Final

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import StreamUnavailable, UpstreamError
from campus_companion.gateway import ModelGateway, UpstreamStream
from campus_companion.models import (
    ChatAgent,
    ChatRequest,
    RoutingDecision,
    StudentContext,
    now_iso,
)
from campus_companion.orchestrator import ChatOrchestrator
from campus_companion.prompts import build_prompt

logger = logging.getLogger("campus-companion.streaming")

STREAMED: Final[str] = "routed_agent_stream"
INTERRUPTED: Final[str] = "stream_interrupted"
MEDIA_TYPE: Final[str] = "text/plain; charset=utf-8"


# ---------------------------------------------------------------------------
# Frame codec
# ---------------------------------------------------------------------------


def encode_trailer(
    processing_type: str,
    routing: RoutingDecision,
    student: StudentContext,
    timestamp: str | None = None,
) -> bytes:
    """Encode the metadata line that terminates a streamed body."""
    meta: dict[str, Any] = {
        "finish": True,
        "processing_type": processing_type,
        "routing": routing.model_dump(mode="json"),
        "timestamp": timestamp or now_iso(),
        "student_context": student.model_dump(mode="json"),
    }
    return ("\n" + json.dumps(meta, ensure_ascii=False)).encode("utf-8")


def decode_frame(text: str) -> tuple[str, dict[str, Any] | None]:
    """Split a complete streamed body into ``(text, trailer)``.

    Returns:
        The body without its trailer line and the decoded trailer, or the
        untouched text and ``None`` when the last line is not a trailer.
    """
    idx = text.rfind("\n")
    if idx == -1:
        return text, None
    candidate = text[idx + 1:]
    if not candidate.startswith("{"):
        return text, None
    try:
        meta = json.loads(candidate)
    except json.JSONDecodeError:
        return text, None
    if not isinstance(meta, dict) or meta.get("finish") is not True:
        return text, None
    return text[:idx], meta


def visible_text(accumulated: str) -> str:
    """The part of a partially received body that is safe to display.

    A final line that is empty or starts with ``{`` may be the beginning of
    the trailer, so it is held back until more text proves otherwise.  The
    result is therefore always a prefix of the final body.
    """
    idx = accumulated.rfind("\n")
    if idx == -1:
        return accumulated
    tail = accumulated[idx + 1:]
    if not tail or tail.startswith("{"):
        return accumulated[:idx]
    return accumulated


# ---------------------------------------------------------------------------
# Responder
# ---------------------------------------------------------------------------


class StreamSession:
    """One open streamed answer, ready to be relayed to the client."""

    def __init__(
        self,
        upstream: UpstreamStream,
        routing: RoutingDecision,
        student: StudentContext,
    ) -> None:
        self._upstream = upstream
        self.routing = routing
        self.student = student

    async def aclose(self) -> None:
        """Release the upstream response.  Safe to call more than once."""
        await self._upstream.aclose()

    async def relay(self) -> AsyncIterator[bytes]:
        """Yield upstream text chunks in order, then the trailer.

        A mid-stream failure ends the body early; the trailer is still
        written, tagged ``stream_interrupted``.  If the consumer goes away the
        generator is closed at its current ``yield``: the upstream connection
        is released and no trailer is written.
        """
        processing_type = STREAMED
        sent = 0
        try:
            async for delta in self._upstream.text_deltas():
                sent += len(delta)
                yield delta.encode("utf-8")
        except UpstreamError as exc:
            logger.error("[stream] upstream failed after %d chars: %s", sent, exc)
            processing_type = INTERRUPTED
        except Exception as exc:
            logger.error("[stream] relay error after %d chars: %s", sent, exc, exc_info=True)
            processing_type = INTERRUPTED
        finally:
            await self._upstream.aclose()

        logger.info("[stream] complete: %d chars, %s", sent, processing_type)
        yield encode_trailer(processing_type, self.routing, self.student)


class StreamingResponder:
    """Opens streamed chat answers.

    Routing always finishes before the upstream stream is opened, since the
    chosen agent decides the prompt.
    """

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        gateway: ModelGateway,
        settings: CompanionSettings = cfg,
    ) -> None:
        self._orchestrator = orchestrator
        self._gateway = gateway
        self._settings = settings

    async def open(self, request: ChatRequest, student: StudentContext) -> StreamSession:
        """Route the request and open the upstream stream for its agent.

        Raises:
            InputValidationError: For a blank or over-length message.
            StreamUnavailable: If the upstream stream cannot be opened.  The
                exception carries the routing decision so the synchronous path
                can reuse it.
        """
        message, context = self._orchestrator.validate(request)
        routing = await self._orchestrator.router.route(message, context)
        role = ChatAgent(routing.selected_agent)
        prompt = build_prompt(role, message, context, student, self._settings)
        try:
            upstream = await self._gateway.open_stream(
                prompt.model,
                prompt.messages(self._orchestrator.recent_history(request)),
                temperature=prompt.temperature,
                max_tokens=prompt.max_tokens,
            )
        except UpstreamError as exc:
            logger.warning("[stream] could not open upstream stream: %s", exc)
            raise StreamUnavailable(routing, exc) from exc
        logger.info("[stream] opened for agent=%s", role)
        return StreamSession(upstream, routing, student)
