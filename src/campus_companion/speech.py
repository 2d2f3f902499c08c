"""
campus_companion/speech.py

Speech providers: OpenAI Whisper/TTS (primary) and ElevenLabs TTS (secondary).

Providers return raw bytes or text and raise
:class:`~campus_companion.errors.UpstreamError` on any failure; choosing
between them is the voice pipeline's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import httpx

from campus_companion.errors import UpstreamError
from campus_companion.gateway import error_detail

logger = logging.getLogger("campus-companion.speech")


class SpeechSynthesizer(Protocol):
    """Text-to-speech provider interface."""

    name: str

    async def synthesize(self, text: str, voice: str) -> tuple[bytes, str]:
        """Convert text into audio bytes.

        Returns:
            ``(audio_bytes, voice_label)``.
        """
        ...


class _HTTPProvider:
    name: str = "provider"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _post(self, path: str, **kwargs: object) -> httpx.Response:
        if not self.configured:
            raise UpstreamError(self.name, None, "API key not configured")
        url = f"{self._base_url}{path}"
        try:
            async with asyncio.timeout(self.timeout):
                response = await self._client.post(url, **kwargs)  # type: ignore[arg-type]
        except TimeoutError as exc:
            raise UpstreamError(self.name, None, f"timed out after {self.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(self.name, None, type(exc).__name__) from exc
        if response.is_error:
            detail = error_detail(response.text, self._api_key)
            logger.error("[%s] %s HTTP %d: %s", self.name, path, response.status_code, detail)
            raise UpstreamError(self.name, response.status_code, detail)
        return response


class OpenAISpeech(_HTTPProvider):
    """Whisper transcription and ``tts-1-hd`` synthesis."""

    name = "openai"

    async def transcribe(
        self,
        audio: bytes,
        language: str = "en",
        prompt: str | None = None,
        filename: str = "audio.webm",
    ) -> str:
        """Transcribe audio with ``whisper-1``.

        Raises:
            UpstreamError: On any provider failure or a reply without text.
        """
        data: dict[str, str] = {"model": "whisper-1", "language": language}
        if prompt:
            data["prompt"] = prompt
        logger.info("[openai] transcribe bytes=%d language=%s", len(audio), language)
        response = await self._post(
            "/audio/transcriptions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            data=data,
            files={"file": (filename, audio, "audio/webm")},
        )
        try:
            text = response.json().get("text")
        except ValueError as exc:
            raise UpstreamError(self.name, response.status_code, "malformed transcription body") from exc
        if not isinstance(text, str):
            raise UpstreamError(self.name, response.status_code, "transcription carried no text")
        return text

    async def synthesize(self, text: str, voice: str) -> tuple[bytes, str]:
        logger.info("[openai] synthesize voice=%s chars=%d", voice, len(text))
        response = await self._post(
            "/audio/speech",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": "tts-1-hd",
                "input": text,
                "voice": voice,
                "response_format": "mp3",
                "speed": 1.0,
            },
        )
        if not response.content:
            raise UpstreamError(self.name, response.status_code, "empty audio content")
        return response.content, voice


class ElevenLabsSpeech(_HTTPProvider):
    """ElevenLabs text-to-speech, used when OpenAI TTS is unavailable."""

    name = "elevenlabs"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str,
        voice_id: str,
        timeout: float = 30.0,
        output_format: str = "mp3_44100_128",
    ) -> None:
        super().__init__(client, base_url=base_url, api_key=api_key, timeout=timeout)
        self.voice_id = voice_id
        self.output_format = output_format

    async def synthesize(self, text: str, voice: str) -> tuple[bytes, str]:
        # OpenAI voice names do not exist here; the configured voice is used.
        logger.info("[elevenlabs] synthesize voice_id=%s chars=%d", self.voice_id, len(text))
        response = await self._post(
            f"/text-to-speech/{self.voice_id}",
            headers={
                "xi-api-key": self._api_key,
                "accept": "audio/mpeg",
                "content-type": "application/json",
            },
            params={"output_format": self.output_format},
            json={"text": text},
        )
        if not response.content:
            raise UpstreamError(self.name, response.status_code, "empty audio content")
        return response.content, f"{self.name}:{self.voice_id}"
