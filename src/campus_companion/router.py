"""
campus_companion/router.py

Maps a request to exactly one specialist agent.

Chat routing has two layers:
  1. Classifier: one low-temperature call to the router model that must
     answer with ``{"selected_agent", "confidence", "reason"}``.
  2. Keyword fallback: deterministic matching used whenever the classifier
     fails, times out, returns malformed JSON or names an unknown agent.
     It makes no upstream calls and cannot raise.

Vision and voice routing are deterministic and driven by request flags.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Final

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import ParseError, UpstreamError
from campus_companion.gateway import ModelGateway
from campus_companion.models import (
    ChatAgent,
    RoutingDecision,
    VisionAgent,
    VisionRequest,
    VoiceAgent,
    VoiceRequest,
)
from campus_companion.prompts import build_router_prompt

logger = logging.getLogger("campus-companion.router")

_FENCE_OPEN: Final[re.Pattern[str]] = re.compile(r"^```[a-z]*\n?", re.IGNORECASE)
_FENCE_CLOSE: Final[re.Pattern[str]] = re.compile(r"\n?```$")

# Checked in order; the first table with a hit wins.
_KEYWORD_RULES: Final[tuple[tuple[ChatAgent, re.Pattern[str], str], ...]] = (
    (
        ChatAgent.TIME_MANAGER,
        re.compile(r"\b(schedul\w*|deadlines?|time|timetables?|plan\w*)\b"),
        "Keyword-based routing to time management",
    ),
    (
        ChatAgent.RESEARCHER,
        re.compile(r"\b(research\w*|sources?|citations?|cite|references?|find)\b"),
        "Keyword-based routing to research",
    ),
    (
        ChatAgent.MOTIVATOR,
        re.compile(r"\b(stress\w*|motivat\w*|overwhelm\w*|anxious|anxiety|help me focus)\b"),
        "Keyword-based routing to motivation",
    ),
)

KEYWORD_CONFIDENCE: Final[float] = 0.7
DEFAULT_CONFIDENCE: Final[float] = 0.6


def keyword_route(query: str) -> RoutingDecision:
    """Route by keyword presence.  Total and side-effect free.

    Args:
        query: The student's message.

    Returns:
        A keyword-based decision, or the default study-helper decision.
    """
    lowered = query.lower()
    for agent, pattern, reason in _KEYWORD_RULES:
        if pattern.search(lowered):
            return RoutingDecision(
                selected_agent=agent, confidence=KEYWORD_CONFIDENCE, reason=reason
            )
    return RoutingDecision(
        selected_agent=ChatAgent.STUDY_HELPER,
        confidence=DEFAULT_CONFIDENCE,
        reason="Default routing to study help",
    )


def parse_routing_reply(raw: str) -> RoutingDecision:
    """Parse the classifier's reply into a :class:`RoutingDecision`.

    Markdown code fences are stripped first.  ``reasoning`` is accepted as an
    alias for ``reason``.  Confidence is clamped into ``[0, 1]``.

    Raises:
        ParseError: If the reply is not a JSON object, names an agent outside
            :class:`ChatAgent`, or carries a non-numeric confidence.
    """
    clean = _FENCE_OPEN.sub("", raw.strip())
    clean = _FENCE_CLOSE.sub("", clean).strip()
    try:
        parsed: Any = json.loads(clean)
    except json.JSONDecodeError as exc:
        raise ParseError(f"classifier reply is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ParseError("classifier reply is not a JSON object")

    label = parsed.get("selected_agent")
    try:
        agent = ChatAgent(label)
    except ValueError as exc:
        raise ParseError(f"unknown agent label {label!r}") from exc

    confidence = parsed.get("confidence", 0.8)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ParseError(f"non-numeric confidence {confidence!r}")

    reason = parsed.get("reason") or parsed.get("reasoning") or "Classifier routing"
    return RoutingDecision(
        selected_agent=agent,
        confidence=min(1.0, max(0.0, float(confidence))),
        reason=str(reason),
    )


class QueryRouter:
    """Chat query classifier with a keyword safety net.

    Args:
        gateway: Gateway used for the classification call.
        settings: Router model and minimum-confidence configuration.
    """

    def __init__(self, gateway: ModelGateway, settings: CompanionSettings = cfg) -> None:
        self._gateway = gateway
        self._settings = settings

    async def route(self, query: str, context: str) -> RoutingDecision:
        """Classify ``query`` into one chat agent.  Never raises.

        Args:
            query: The student's message.
            context: Free-text request context.

        Returns:
            The classifier's decision, or the keyword fallback.
        """
        prompt = build_router_prompt(query, context, self._settings)
        try:
            raw = await self._gateway.complete(
                prompt.model,
                prompt.messages(),
                max_tokens=prompt.max_tokens,
                temperature=prompt.temperature,
            )
            logger.info("[router] raw=%r", raw[:300])
            decision = parse_routing_reply(raw)
        except ParseError as exc:
            logger.warning("[router] %s; using keyword routing.", exc)
            return keyword_route(query)
        except UpstreamError as exc:
            logger.error("[router] classifier unavailable: %s", exc)
            return keyword_route(query)
        except Exception as exc:
            logger.error("[router] Unexpected error: %s", exc, exc_info=True)
            return keyword_route(query)

        if decision.confidence < self._settings.router_min_confidence:
            logger.info(
                "[router] confidence %.2f below %.2f; using keyword routing.",
                decision.confidence,
                self._settings.router_min_confidence,
            )
            return keyword_route(query)

        logger.info(
            "[router] selected_agent=%s confidence=%.2f reason=%r",
            decision.selected_agent,
            decision.confidence,
            decision.reason,
        )
        return decision


# ---------------------------------------------------------------------------
# Deterministic routing for the vision and voice pipelines
# ---------------------------------------------------------------------------


def _mentions(text: str, *words: str) -> bool:
    return any(word in text for word in words)


def route_vision(request: VisionRequest) -> RoutingDecision:
    """Pick a vision agent from the analysis type, flags and context."""
    context = (request.context or "").lower()

    if (
        request.analysis_type == "mathematical"
        or request.extract_formulas
        or _mentions(context, "formula", "equation")
    ):
        return RoutingDecision(
            selected_agent=VisionAgent.FORMULA_EXTRACTOR,
            confidence=0.95,
            reason="Mathematical content detected - routing to formula extraction specialist",
        )
    if request.analysis_type == "technical" or _mentions(
        context, "diagram", "circuit", "engineering"
    ):
        return RoutingDecision(
            selected_agent=VisionAgent.TECHNICAL_ANALYZER,
            confidence=0.90,
            reason="Technical content detected - routing to technical analysis specialist",
        )
    if _mentions(context, "research", "paper", "reference"):
        return RoutingDecision(
            selected_agent=VisionAgent.RESEARCHER,
            confidence=0.88,
            reason="Research content detected - routing to research specialist",
        )
    return RoutingDecision(
        selected_agent=VisionAgent.STUDY_HELPER,
        confidence=0.85,
        reason="General academic content - routing to study helper",
    )


def route_voice(request: VoiceRequest) -> RoutingDecision:
    """Pick a voice agent from the action, flags and context."""
    if request.action == "synthesize":
        return RoutingDecision(
            selected_agent=VoiceAgent.SPEECH_SYNTHESIZER,
            confidence=1.0,
            reason="Speech synthesis requested",
        )

    context = (request.context or "").lower()
    if request.enhance_academic or _mentions(context, "study", "academic", "lecture"):
        return RoutingDecision(
            selected_agent=VoiceAgent.ACADEMIC_TRANSCRIBER,
            confidence=0.95,
            reason="Academic context detected - using enhanced academic transcription",
        )
    return RoutingDecision(
        selected_agent=VoiceAgent.GENERAL_TRANSCRIBER,
        confidence=0.85,
        reason="General transcription requested",
    )
