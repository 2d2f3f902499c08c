"""
campus_companion/voice.py

Voice pipeline: routed transcription and speech synthesis.

Transcription:
  route → Whisper (academic prompt for the academic transcriber)
        → academic enhancement (kept only if it stays close to the original)
        → transcription unifier ("I heard you say ...").

Synthesis:
  route → voice selection → first provider that succeeds
  (OpenAI TTS, then ElevenLabs).
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from typing import Final

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import InputValidationError, UpstreamError
from campus_companion.gateway import ModelGateway
from campus_companion.models import (
    SynthesisResult,
    TranscriptionResult,
    VoiceAgent,
    VoiceRequest,
)
from campus_companion.payloads import decode_base64_payload
from campus_companion.prompts import build_enhancement_prompt
from campus_companion.router import route_voice
from campus_companion.speech import OpenAISpeech, SpeechSynthesizer
from campus_companion.unifier import Unifier

logger = logging.getLogger("campus-companion.voice")

ACTIONS: Final[frozenset[str]] = frozenset({"transcribe", "synthesize"})
MAX_SYNTHESIS_CHARS: Final[int] = 4000
ENHANCEMENT_SIMILARITY: Final[float] = 0.7
TRANSCRIPTION_CONFIDENCE: Final[float] = 0.95

ACADEMIC_WHISPER_PROMPT: Final[str] = (
    "This is an academic question from a University of Uyo student. The audio "
    "may contain technical terms, course names, academic concepts, or "
    "study-related discussions."
)


def word_similarity(original: str, candidate: str) -> float:
    """Share of ``original``'s words that also appear in ``candidate``."""
    words1 = original.lower().split()
    words2 = candidate.lower().split()
    total = max(len(words1), len(words2))
    if total == 0:
        return 0.0
    vocabulary = set(words2)
    return sum(1 for word in words1 if word in vocabulary) / total


def select_voice(text: str) -> str:
    """Choose a TTS voice from the content when the client did not."""
    lowered = text.lower()
    if any(word in lowered for word in ("formula", "equation", "mathematics")):
        return "echo"
    if any(word in lowered for word in ("explanation", "concept")):
        return "nova"
    if any(word in lowered for word in ("encouragement", "motivation")):
        return "shimmer"
    return "alloy"


def validate_action(request: VoiceRequest) -> str:
    if request.action not in ACTIONS:
        raise InputValidationError("Action (transcribe or synthesize) is required")
    return request.action


class VoicePipeline:
    """Routed transcription and synthesis.

    Args:
        stt: Whisper transcription provider.
        synthesizers: TTS providers in preference order.
        gateway: Gateway for the academic enhancement pass.
        unifier: Produces the spoken-input acknowledgement.
        settings: Size limits and models.
    """

    def __init__(
        self,
        stt: OpenAISpeech,
        synthesizers: Sequence[SpeechSynthesizer],
        gateway: ModelGateway,
        unifier: Unifier,
        settings: CompanionSettings = cfg,
    ) -> None:
        self._stt = stt
        self._synthesizers = list(synthesizers)
        self._gateway = gateway
        self._unifier = unifier
        self._settings = settings

    async def enhance(self, text: str, context: str | None) -> str:
        """Fix academic vocabulary; keep the original unless the edit is light."""
        prompt = build_enhancement_prompt(text, context, self._settings)
        try:
            enhanced = (
                await self._gateway.complete(
                    prompt.model,
                    prompt.messages(),
                    max_tokens=prompt.max_tokens,
                    temperature=prompt.temperature,
                )
            ).strip()
        except UpstreamError as exc:
            logger.warning("[voice] enhancement failed, keeping original: %s", exc)
            return text
        similarity = word_similarity(text, enhanced)
        if similarity > ENHANCEMENT_SIMILARITY:
            return enhanced
        logger.info("[voice] enhancement rejected (similarity=%.2f)", similarity)
        return text

    async def transcribe(self, request: VoiceRequest) -> TranscriptionResult:
        """Transcribe the request's audio.

        Raises:
            InputValidationError: Missing, undecodable or oversized audio.
            UpstreamError: If Whisper fails.
        """
        audio = decode_base64_payload(
            request.audio or "", self._settings.max_audio_bytes, "Audio"
        )
        routing = route_voice(request)
        academic = routing.selected_agent == VoiceAgent.ACADEMIC_TRANSCRIBER
        language = request.language or "en"
        logger.info("[voice] transcribe agent=%s bytes=%d", routing.selected_agent, len(audio))

        text = await self._stt.transcribe(
            audio,
            language=language,
            prompt=ACADEMIC_WHISPER_PROMPT if academic else None,
        )

        if academic and len(text) > 10:
            text = await self.enhance(text, request.context)

        spoken = text
        if academic:
            spoken = await self._unifier.unify_transcription(text, request.context)

        return TranscriptionResult(
            text=spoken,
            raw_transcription=text,
            routing=routing,
            academic_enhanced=academic,
            confidence=TRANSCRIPTION_CONFIDENCE,
            language=language,
        )

    async def synthesize(self, request: VoiceRequest) -> SynthesisResult:
        """Synthesise speech, falling back across providers.

        Raises:
            InputValidationError: If no text was given.
            UpstreamError: If every provider failed.
        """
        if not request.text or not request.text.strip():
            raise InputValidationError("Text required for speech synthesis")
        text = request.text[:MAX_SYNTHESIS_CHARS]
        routing = route_voice(request)
        voice = request.voice or select_voice(text)

        failures: list[str] = []
        for provider in self._synthesizers:
            try:
                audio, voice_used = await provider.synthesize(text, voice)
            except UpstreamError as exc:
                logger.warning("[voice] %s synthesis failed: %s", provider.name, exc)
                failures.append(str(exc))
                continue
            logger.info("[voice] synthesized %d bytes with %s", len(audio), provider.name)
            return SynthesisResult(
                audio_content=base64.b64encode(audio).decode("ascii"),
                voice_used=voice_used,
                routing=routing,
                processing_info={
                    "provider": provider.name,
                    "text_length": len(request.text),
                    "voice_selection": "user_selected" if request.voice else "auto_selected",
                },
            )
        raise UpstreamError("speech", None, "; ".join(failures) or "no speech provider configured")
