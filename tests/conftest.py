"""tests/conftest.py

Pytest configuration and shared fixtures for the Campus Companion test suite.

Every upstream service (Groq, OpenAI, ElevenLabs, Supabase) is replaced by a
single :class:`FakeUpstream` mounted on ``httpx.MockTransport``.  Chat
completion calls are told apart by their system prompt, so a test scripts
replies per role (``router``, ``agent``, ``unifier``, ...) rather than per
call order.
"""

from __future__ import annotations

# Standard Library
import base64
import json
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

# Third-Party Libraries
import httpx
import pytest
from fastapi.testclient import TestClient

# Local
from campus_companion.api import Services, build_services, create_app
from campus_companion.config import CompanionSettings
from campus_companion.models import StudentContext

Reply = str | int | bytes | dict | list | Exception | httpx.Response | Callable[[httpx.Request], httpx.Response]

GROQ_URL = "https://groq.test/openai/v1"
OPENAI_URL = "https://openai.test/v1"
ELEVENLABS_URL = "https://elevenlabs.test/v1"
SUPABASE_URL = "https://supabase.test"
VOICE_ID = "voice-123"


def completion(text: str) -> httpx.Response:
    """An OpenAI-style chat completion carrying ``text``."""
    return httpx.Response(
        200, json={"choices": [{"message": {"role": "assistant", "content": text}}]}
    )


def sse_body(chunks: list[str]) -> bytes:
    """Encode text deltas as an OpenAI-style SSE body ending in ``[DONE]``."""
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": chunk}}]}) + "\n\n"
        for chunk in chunks
    ]
    return ("".join(lines) + "data: [DONE]\n\n").encode("utf-8")


class BrokenStream(httpx.AsyncByteStream):
    """Response body that yields some bytes, then drops the connection."""

    def __init__(self, body: bytes) -> None:
        self._body = body

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self._body
        raise httpx.ReadError("connection reset by peer")


def classify_call(payload: dict[str, Any]) -> str:
    """Name the pipeline stage a chat-completions payload belongs to."""
    system = ""
    for message in payload.get("messages", []):
        if message.get("role") == "system":
            system = message.get("content", "")
            break
    if "routing system" in system:
        return "router"
    if "Voice Response Unifier" in system:
        return "voice_unifier"
    if "Response Unifier" in system:
        return "vision_unifier"
    if "You are the Unifier" in system:
        return "unifier"
    if "Transcription Enhancer" in system:
        return "enhancer"
    if "Vision Analysis Agent" in system:
        return "vision"
    if "brief, encouraging answer" in system:
        return "fallback"
    return "agent"


class FakeUpstream:
    """Scriptable stand-in for every upstream HTTP service.

    Attributes:
        chat: Replies for chat-completion calls keyed by stage name
            (see :func:`classify_call`).  Vision calls to the OpenAI host are
            keyed ``vision_fallback``; streamed agent calls ``stream``.
        routes: Replies for other endpoints keyed by URL path suffix.
        requests: Every request received, in order.
        stages: Stage name of every chat-completion call, in order.
    """

    def __init__(self) -> None:
        self.chat: dict[str, Reply] = {}
        self.routes: dict[str, Reply] = {}
        self.requests: list[httpx.Request] = []
        self.stages: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/chat/completions"):
            payload = json.loads(request.content)
            stage = classify_call(payload)
            if stage == "vision" and request.url.host == "openai.test":
                stage = "vision_fallback"
            if payload.get("stream"):
                stage = "stream"
            self.stages.append(stage)
            if stage not in self.chat:
                return httpx.Response(500, json={"error": f"no script for {stage}"})
            return self._respond(self.chat[stage], request, streaming=stage == "stream")
        for suffix, reply in self.routes.items():
            if path.endswith(suffix):
                return self._respond(reply, request)
        return httpx.Response(404, json={"error": f"unexpected request to {path}"})

    def _respond(self, reply: Reply, request: httpx.Request, streaming: bool = False) -> httpx.Response:
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            return reply(request)
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": {"message": "upstream exploded"}})
        if isinstance(reply, bytes):
            return httpx.Response(200, content=reply)
        if streaming:
            chunks = reply if isinstance(reply, list) else [reply]
            return httpx.Response(
                200,
                content=sse_body(chunks),
                headers={"content-type": "text/event-stream"},
            )
        if isinstance(reply, (dict, list)):
            return httpx.Response(200, json=reply)
        return completion(reply)

    def calls_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def settings() -> CompanionSettings:
    """Create settings pointing every provider at a fake host.

    Returns:
        CompanionSettings with test keys and no .env lookup.
    """
    return CompanionSettings(
        _env_file=None,
        groq_base_url=GROQ_URL,
        groq_api_key="test-groq-key",
        openai_base_url=OPENAI_URL,
        openai_api_key="test-openai-key",
        elevenlabs_base_url=ELEVENLABS_URL,
        elevenlabs_api_key="test-eleven-key",
        elevenlabs_voice_id=VOICE_ID,
        supabase_url=SUPABASE_URL,
        supabase_anon_key="anon-key",
        upstream_timeout=5.0,
        router_min_confidence=0.0,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    """Create an empty upstream script.

    Returns:
        FakeUpstream with no replies configured.
    """
    return FakeUpstream()


@pytest.fixture
def services(settings: CompanionSettings, upstream: FakeUpstream) -> Services:
    """Wire the full service graph against the fake upstream.

    Returns:
        Services sharing one MockTransport-backed client.
    """
    return build_services(settings, client=upstream.client())


@pytest.fixture
def api(services: Services) -> Iterator[TestClient]:
    """Create a TestClient for an app built around ``services``.

    Yields:
        TestClient with the app lifespan running.
    """
    with TestClient(create_app(services)) as client:
        yield client


@pytest.fixture
def signed_in(upstream: FakeUpstream) -> dict[str, str]:
    """Accept one bearer token at the fake auth service.

    Returns:
        Headers carrying the accepted token.
    """
    upstream.routes["/auth/v1/user"] = {"id": "user-1", "email": "ada@uniuyo.edu.ng"}
    upstream.routes["/rest/v1/profiles"] = [
        {
            "full_name": "Ada Okon",
            "course": "Computer Science",
            "year_of_study": 2,
            "university": "University of Uyo",
        }
    ]
    return {"Authorization": "Bearer good-token"}


@pytest.fixture
def student() -> StudentContext:
    """Create a sample student profile.

    Returns:
        StudentContext for a second-year computer science student.
    """
    return StudentContext(name="Ada", course="Computer Science", year=2)


@pytest.fixture
def tiny_image() -> str:
    """Create a small base64 payload standing in for a JPEG.

    Returns:
        Base64 text.
    """
    return base64.b64encode(b"\xff\xd8\xff\xe0fake-jpeg-bytes").decode("ascii")


@pytest.fixture
def tiny_audio() -> str:
    """Create a small base64 payload standing in for a WebM clip.

    Returns:
        Base64 text.
    """
    return base64.b64encode(b"\x1aE\xdf\xa3fake-webm-bytes").decode("ascii")
