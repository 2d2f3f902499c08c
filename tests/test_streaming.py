"""tests/test_streaming.py

Unit tests for the streamed chat path (campus_companion/streaming.py):
the trailer codec, the relay generator and the responder.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest

from campus_companion.config import CompanionSettings
from campus_companion.errors import InputValidationError, StreamUnavailable, UpstreamError
from campus_companion.models import ChatAgent, ChatRequest, RoutingDecision, StudentContext
from campus_companion.streaming import (
    INTERRUPTED,
    STREAMED,
    StreamingResponder,
    StreamSession,
    decode_frame,
    encode_trailer,
    visible_text,
)

DECISION = RoutingDecision(
    selected_agent=ChatAgent.STUDY_HELPER, confidence=0.9, reason="Concept question"
)


class FakeStream:
    """Upstream stream double: yields chunks, then optionally fails."""

    def __init__(self, chunks: list[str], fail: Exception | None = None) -> None:
        self.chunks = chunks
        self.fail = fail
        self.closed = False

    async def text_deltas(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail is not None:
            raise self.fail

    async def aclose(self) -> None:
        self.closed = True


async def drain(session: StreamSession) -> bytes:
    return b"".join([chunk async for chunk in session.relay()])


class TestFrameCodec:
    """Test suite for encode_trailer / decode_frame / visible_text."""

    def test_trailer_round_trip(self, student: StudentContext) -> None:
        body = "Osmosis is the movement of water.\n{not a trailer"
        wire = body.encode() + encode_trailer(STREAMED, DECISION, student, "2026-01-01T00:00:00+00:00")

        text, meta = decode_frame(wire.decode())

        assert text == body
        assert meta is not None
        assert meta["finish"] is True
        assert meta["processing_type"] == STREAMED
        assert meta["routing"]["selected_agent"] == "study_helper"
        assert meta["student_context"]["name"] == "Ada"
        assert meta["timestamp"] == "2026-01-01T00:00:00+00:00"

    def test_trailer_is_single_line(self, student: StudentContext) -> None:
        tricky = StudentContext(name="Ada\nOkon")
        trailer = encode_trailer(STREAMED, DECISION, tricky).decode()
        assert trailer.count("\n") == 1
        assert trailer.startswith("\n{")

    @pytest.mark.parametrize(
        "text",
        ["no newline at all", "line\nplain last line", 'line\n{"finish": false}', "line\n{broken"],
    )
    def test_non_trailers_are_left_alone(self, text: str) -> None:
        assert decode_frame(text) == (text, None)

    @pytest.mark.parametrize(
        ("accumulated", "visible"),
        [
            ("Hello wor", "Hello wor"),
            ("Hello\nworld", "Hello\nworld"),
            ("Hello\n", "Hello"),
            ('Hello\n{"fin', "Hello"),
        ],
    )
    def test_visible_text_holds_back_possible_trailer(self, accumulated: str, visible: str) -> None:
        assert visible_text(accumulated) == visible

    def test_visible_text_is_always_a_prefix(self, student: StudentContext) -> None:
        body = "Step 1\nStep 2\n{curly line}\nDone"
        wire = body + encode_trailer(STREAMED, DECISION, student).decode()
        final, _ = decode_frame(wire)
        shown = ""
        for end in range(len(wire) + 1):
            current = visible_text(wire[:end])
            if len(current) > len(shown):
                shown = current
            assert final.startswith(shown)
        assert shown == final


class TestStreamSession:
    """Test suite for StreamSession.relay."""

    def test_relays_chunks_then_trailer(self, student: StudentContext) -> None:
        upstream = FakeStream(["Photo", "synthesis ", "uses light."])
        session = StreamSession(upstream, DECISION, student)

        wire = asyncio.run(drain(session)).decode()
        text, meta = decode_frame(wire)

        assert text == "Photosynthesis uses light."
        assert meta["processing_type"] == STREAMED
        assert upstream.closed

    def test_mid_stream_failure_still_writes_trailer(self, student: StudentContext) -> None:
        upstream = FakeStream(["Partial "], fail=UpstreamError("groq", None, "ReadError"))
        session = StreamSession(upstream, DECISION, student)

        text, meta = decode_frame(asyncio.run(drain(session)).decode())

        assert text == "Partial "
        assert meta["processing_type"] == INTERRUPTED
        assert upstream.closed

    def test_disconnect_releases_upstream_without_trailer(self, student: StudentContext) -> None:
        upstream = FakeStream(["one ", "two ", "three"])
        session = StreamSession(upstream, DECISION, student)

        async def consume_one() -> list[bytes]:
            relay = session.relay()
            first = await relay.__anext__()
            await relay.aclose()
            return [first]

        received = asyncio.run(consume_one())

        assert received == [b"one "]
        assert upstream.closed

    def test_aclose_releases_upstream_before_relay_starts(
        self, student: StudentContext
    ) -> None:
        upstream = FakeStream(["never sent"])
        session = StreamSession(upstream, DECISION, student)

        asyncio.run(session.aclose())

        assert upstream.closed


class TestStreamingResponder:
    """Test suite for StreamingResponder.open."""

    def make(self, settings: CompanionSettings, open_stream: AsyncMock):
        orchestrator = Mock()
        orchestrator.validate = Mock(return_value=("What is osmosis?", "Biology"))
        orchestrator.router.route = AsyncMock(return_value=DECISION)
        orchestrator.recent_history = Mock(return_value=[])
        gateway = Mock()
        gateway.open_stream = open_stream
        return StreamingResponder(orchestrator, gateway, settings), orchestrator

    def test_opens_stream_for_routed_agent(
        self, settings: CompanionSettings, student: StudentContext
    ) -> None:
        upstream = FakeStream(["hi"])
        responder, orchestrator = self.make(settings, AsyncMock(return_value=upstream))

        session = asyncio.run(responder.open(ChatRequest(message="What is osmosis?"), student))

        assert session.routing == DECISION
        orchestrator.router.route.assert_awaited_once_with("What is osmosis?", "Biology")
        args, kwargs = responder._gateway.open_stream.call_args
        assert args[0] == settings.model_study_helper
        assert args[1][-1] == {"role": "user", "content": "What is osmosis?"}
        assert kwargs["max_tokens"] == 1000

    def test_open_failure_carries_routing(
        self, settings: CompanionSettings, student: StudentContext
    ) -> None:
        failure = UpstreamError("groq", 503, "overloaded")
        responder, _ = self.make(settings, AsyncMock(side_effect=failure))

        with pytest.raises(StreamUnavailable) as excinfo:
            asyncio.run(responder.open(ChatRequest(message="What is osmosis?"), student))

        assert excinfo.value.routing == DECISION
        assert excinfo.value.cause is failure

    def test_validation_errors_propagate(
        self, settings: CompanionSettings, student: StudentContext
    ) -> None:
        responder, orchestrator = self.make(settings, AsyncMock())
        orchestrator.validate.side_effect = InputValidationError("Message is required")

        with pytest.raises(InputValidationError):
            asyncio.run(responder.open(ChatRequest(message=""), student))
        orchestrator.router.route.assert_not_called()


def test_trailer_is_valid_json(student: StudentContext) -> None:
    """The trailer line alone parses as a JSON object."""
    line = encode_trailer(INTERRUPTED, DECISION, student).decode().lstrip("\n")
    assert json.loads(line)["processing_type"] == INTERRUPTED
