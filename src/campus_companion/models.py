"""
campus_companion/models.py

Request-scoped data model shared by the chat, vision and voice pipelines.

Wire-facing shapes are pydantic models; internal hand-offs between pipeline
stages are plain dataclasses.  Nothing here outlives a single request.

Agent roles are closed ``StrEnum`` types.  Adding a role means adding the
member here and an entry in :mod:`campus_companion.prompts`; the prompt bank
refuses to import while any role is unmapped.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Agent roles
# ---------------------------------------------------------------------------


class ChatAgent(StrEnum):
    """Specialists available to the chat pipeline."""

    STUDY_HELPER = "study_helper"
    TIME_MANAGER = "time_manager"
    RESEARCHER = "researcher"
    MOTIVATOR = "motivator"


class VisionAgent(StrEnum):
    """Specialists available to the vision pipeline."""

    STUDY_HELPER = "study_helper"
    RESEARCHER = "researcher"
    TECHNICAL_ANALYZER = "technical_analyzer"
    FORMULA_EXTRACTOR = "formula_extractor"


class VoiceAgent(StrEnum):
    """Specialists available to the voice pipeline."""

    ACADEMIC_TRANSCRIBER = "academic_transcriber"
    GENERAL_TRANSCRIBER = "general_transcriber"
    SPEECH_SYNTHESIZER = "speech_synthesizer"


class RoutingDecision(BaseModel):
    """Which specialist handles a request, and why.  Immutable once made."""

    model_config = ConfigDict(frozen=True)

    selected_agent: ChatAgent | VisionAgent | VoiceAgent
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatTurn(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    """Body of ``POST /ai-chat``.

    ``message`` is validated by the orchestrator rather than by pydantic so a
    missing or over-length message gets the product's own 400 wording.
    """

    message: str = ""
    context: str | None = None
    session_id: str | None = None
    history: list[ChatTurn] = Field(default_factory=list)
    stream: bool = False


class StudentContext(BaseModel):
    """Read-only profile fields injected into agent prompts."""

    name: str = "Student"
    university: str = "University of Uyo"
    course: str | None = None
    year: int | str | None = None

    def prompt_block(self) -> str:
        """Render the context block embedded in every agent system prompt."""
        return (
            f"Student Name: {self.name}\n"
            f"University: {self.university}\n"
            f"Course: {self.course or 'Not specified'}\n"
            f"Year: {self.year or 'Not specified'}"
        )


@dataclasses.dataclass(slots=True, frozen=True)
class AgentResponse:
    """Raw output of one specialist invocation."""

    content: str
    agent_used: str
    confidence: float


@dataclasses.dataclass(slots=True, frozen=True)
class ChatResult:
    """Final outcome of one orchestrated chat request."""

    response: str
    routing: RoutingDecision
    processing_type: str


@dataclasses.dataclass(slots=True, frozen=True)
class UserIdentity:
    id: str
    email: str | None = None


# ---------------------------------------------------------------------------
# Vision
# ---------------------------------------------------------------------------


class VisionRequest(BaseModel):
    """Body of ``POST /enhanced-vision``."""

    image: str = ""
    context: str | None = None
    analysis_type: Literal[
        "academic", "technical", "mathematical", "scientific", "general"
    ] = "academic"
    detail_level: Literal["low", "high", "auto"] = "auto"
    subject: str | None = None
    enhance_ocr: bool = False
    extract_formulas: bool = False


class ExtractedData(BaseModel):
    text: str = ""
    formulas: list[str] = Field(default_factory=list)
    key_concepts: list[str] = Field(default_factory=list)
    study_suggestions: list[str] = Field(default_factory=list)
    subject: str = "General Studies"


@dataclasses.dataclass(slots=True)
class VisionResult:
    """Everything the vision endpoint reports back."""

    analysis: str
    raw_analysis: str
    routing: RoutingDecision
    extracted: ExtractedData
    model_used: str
    confidence: float


# ---------------------------------------------------------------------------
# Voice
# ---------------------------------------------------------------------------


class VoiceRequest(BaseModel):
    """Body of ``POST /enhanced-voice``."""

    action: str = ""
    audio: str | None = None
    text: str | None = None
    voice: str | None = None
    language: str | None = None
    enhance_academic: bool = False
    context: str | None = None


@dataclasses.dataclass(slots=True)
class TranscriptionResult:
    text: str
    raw_transcription: str
    routing: RoutingDecision
    academic_enhanced: bool
    confidence: float
    language: str


@dataclasses.dataclass(slots=True)
class SynthesisResult:
    audio_content: str
    voice_used: str
    routing: RoutingDecision
    processing_info: dict[str, Any] = dataclasses.field(default_factory=dict)
