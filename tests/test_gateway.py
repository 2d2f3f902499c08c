"""tests/test_gateway.py

Unit tests for ModelGateway and UpstreamStream (campus_companion/gateway.py).
Upstream HTTP is faked with httpx.MockTransport.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from campus_companion.errors import UpstreamError
from campus_companion.gateway import ModelGateway, error_detail, redact
from conftest import BrokenStream, completion, sse_body

KEY = "sk-secret-key"


def make_gateway(handler, api_key: str = KEY, timeout: float = 5.0) -> ModelGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ModelGateway(
        client,
        base_url="https://llm.test/v1/",
        api_key=api_key,
        provider="groq",
        timeout=timeout,
    )


MESSAGES = [{"role": "user", "content": "hi"}]


class TestRedaction:
    """Credentials never survive into error text."""

    def test_redact_replaces_secret(self) -> None:
        assert redact(f"bad key {KEY}", KEY) == "bad key ***"

    def test_redact_ignores_empty_secret(self) -> None:
        assert redact("nothing here", "") == "nothing here"

    def test_error_detail_truncates(self) -> None:
        assert len(error_detail("x" * 1000, KEY)) == 300


class TestComplete:
    """Test suite for blocking completions."""

    def test_returns_first_choice_text(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return completion("Photosynthesis turns light into sugar.")

        gateway = make_gateway(handler)
        text = asyncio.run(gateway.complete("llama", MESSAGES, max_tokens=50, temperature=0.2))

        assert text == "Photosynthesis turns light into sugar."
        assert str(seen[0].url) == "https://llm.test/v1/chat/completions"
        assert seen[0].headers["Authorization"] == f"Bearer {KEY}"
        payload = json.loads(seen[0].content)
        assert payload["model"] == "llama"
        assert payload["max_tokens"] == 50
        assert payload["temperature"] == 0.2
        assert payload["stream"] is False

    def test_error_status_raises_with_redacted_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text=f"invalid api key {KEY}")

        gateway = make_gateway(handler)
        with pytest.raises(UpstreamError) as excinfo:
            asyncio.run(gateway.complete("llama", MESSAGES))

        assert excinfo.value.status == 401
        assert excinfo.value.provider == "groq"
        assert KEY not in str(excinfo.value)
        assert "***" in excinfo.value.detail

    def test_missing_key_raises_without_calling(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return completion("unreachable")

        gateway = make_gateway(handler, api_key="")
        with pytest.raises(UpstreamError, match="not configured"):
            asyncio.run(gateway.complete("llama", MESSAGES))
        assert calls == []

    def test_network_failure_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        gateway = make_gateway(handler)
        with pytest.raises(UpstreamError) as excinfo:
            asyncio.run(gateway.complete("llama", MESSAGES))
        assert excinfo.value.status is None

    def test_malformed_body_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        gateway = make_gateway(handler)
        with pytest.raises(UpstreamError, match="malformed"):
            asyncio.run(gateway.complete("llama", MESSAGES))

    def test_deadline_raises(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return completion("too late")

        gateway = make_gateway(handler, timeout=0.05)
        with pytest.raises(UpstreamError, match="timed out"):
            asyncio.run(gateway.complete("llama", MESSAGES))


class TestStreaming:
    """Test suite for streamed completions."""

    def test_deltas_arrive_in_order(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["stream"] is True
            body = b"data: not-json\n\n" + sse_body(["Plan ", "your ", "week."])
            return httpx.Response(200, content=body)

        async def collect() -> list[str]:
            gateway = make_gateway(handler)
            async with await gateway.open_stream("llama", MESSAGES) as stream:
                return [delta async for delta in stream.text_deltas()]

        assert asyncio.run(collect()) == ["Plan ", "your ", "week."]

    def test_error_status_raises_on_open(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="overloaded")

        gateway = make_gateway(handler)
        with pytest.raises(UpstreamError) as excinfo:
            asyncio.run(gateway.open_stream("llama", MESSAGES))
        assert excinfo.value.status == 503

    def test_mid_stream_drop_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            partial = sse_body(["Half an "]).replace(b"data: [DONE]\n\n", b"")
            return httpx.Response(200, stream=BrokenStream(partial))

        async def collect() -> list[str]:
            gateway = make_gateway(handler)
            received: list[str] = []
            async with await gateway.open_stream("llama", MESSAGES) as stream:
                with pytest.raises(UpstreamError):
                    async for delta in stream.text_deltas():
                        received.append(delta)
            return received

        assert asyncio.run(collect()) == ["Half an "]
