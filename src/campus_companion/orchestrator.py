"""
campus_companion/orchestrator.py

Chat orchestration: Router → Agent → Unifier, with fallback-on-error.

Per-request state machine::

    Validating → Routing → Executing(role) → Unifying → Done
                    │            │              │
                    └────────────┴──────────────┴──→ ErrorFallback → Done

Validation failures are raised to the caller (they become HTTP 400).  Any
other failure after validation is converted into one short degraded
completion; if that also fails the fixed apology is returned.  ``handle``
never raises anything but :class:`InputValidationError`.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Final

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import InputValidationError, UpstreamError
from campus_companion.gateway import ModelGateway
from campus_companion.models import (
    AgentResponse,
    ChatAgent,
    ChatRequest,
    ChatResult,
    ChatTurn,
    RoutingDecision,
    StudentContext,
)
from campus_companion.prompts import agent_confidence, build_fallback_prompt, build_prompt
from campus_companion.router import QueryRouter
from campus_companion.unifier import Unifier

logger = logging.getLogger("campus-companion.orchestrator")

DEFAULT_CONTEXT: Final[str] = "University of Uyo student using Campus Companion"
APOLOGY_MESSAGE: Final[str] = (
    "I'm having trouble right now, but I'm here to help you succeed! 💪 "
    "Please try again in a moment."
)
MESSAGE_REQUIRED: Final[str] = "Message is required"
MESSAGE_TOO_LONG: Final[str] = (
    "Please keep your question shorter so I can help you better! 😊"
)

ROUTED: Final[str] = "routed_agent"
FALLBACK: Final[str] = "fallback"
ERROR_FALLBACK: Final[str] = "error_fallback"

FALLBACK_ROUTING: Final[RoutingDecision] = RoutingDecision(
    selected_agent=ChatAgent.STUDY_HELPER, confidence=0.5, reason="Fallback routing"
)
ERROR_ROUTING: Final[RoutingDecision] = RoutingDecision(
    selected_agent=ChatAgent.STUDY_HELPER, confidence=0.1, reason="Error fallback"
)


class Stage(StrEnum):
    VALIDATING = "validating"
    ROUTING = "routing"
    EXECUTING = "executing"
    UNIFYING = "unifying"
    ERROR_FALLBACK = "error_fallback"
    DONE = "done"


def validate_message(message: str, max_length: int) -> str:
    """Reject empty or over-length messages and return the trimmed text.

    The length bound applies to the message as sent, before trimming.

    Raises:
        InputValidationError: If the message is blank or too long.
    """
    if not message or not message.strip():
        raise InputValidationError(MESSAGE_REQUIRED)
    if len(message) > max_length:
        raise InputValidationError(MESSAGE_TOO_LONG)
    return message.strip()


def resolve_context(context: str | None) -> str:
    return context.strip() if context and context.strip() else DEFAULT_CONTEXT


class ChatOrchestrator:
    """Runs one chat request through routing, a specialist and the unifier.

    Args:
        router: Chat query router.
        gateway: Gateway for the specialist and degraded calls.
        unifier: Post-processing pass.
        settings: Limits and model configuration.
    """

    def __init__(
        self,
        router: QueryRouter,
        gateway: ModelGateway,
        unifier: Unifier,
        settings: CompanionSettings = cfg,
    ) -> None:
        self.router = router
        self._gateway = gateway
        self._unifier = unifier
        self._settings = settings

    def validate(self, request: ChatRequest) -> tuple[str, str]:
        """Return the trimmed ``(message, context)`` pair for a request."""
        message = validate_message(request.message, self._settings.max_message_length)
        return message, resolve_context(request.context)

    def recent_history(self, request: ChatRequest) -> list[ChatTurn]:
        limit = self._settings.max_history_turns
        return request.history[-limit:] if limit > 0 else []

    async def run_agent(
        self,
        role: ChatAgent,
        message: str,
        context: str,
        student: StudentContext,
        history: list[ChatTurn],
    ) -> AgentResponse:
        """Invoke one specialist.

        Raises:
            UpstreamError: If the call fails or returns no text.
        """
        prompt = build_prompt(role, message, context, student, self._settings)
        content = await self._gateway.complete(
            prompt.model,
            prompt.messages(history),
            max_tokens=prompt.max_tokens,
            temperature=prompt.temperature,
        )
        if not content.strip():
            raise UpstreamError(self._gateway.provider, None, "empty agent response")
        return AgentResponse(
            content=content,
            agent_used=role.value,
            confidence=agent_confidence(role),
        )

    async def handle(
        self,
        request: ChatRequest,
        student: StudentContext,
        routing: RoutingDecision | None = None,
    ) -> ChatResult:
        """Answer one chat request.

        Args:
            request: The incoming request.
            student: Profile fields for personalisation.
            routing: A decision already made for this request.  When given
                the classifier is not called again.

        Returns:
            The unified answer, a degraded answer, or the apology.

        Raises:
            InputValidationError: For a blank or over-length message.
        """
        stage = Stage.VALIDATING
        message, context = self.validate(request)
        logger.info("=== New chat request (student=%s) ===", student.name)

        try:
            stage = Stage.ROUTING
            if routing is None:
                routing = await self.router.route(message, context)
            else:
                logger.info("[orchestrator] reusing routing decision: %s", routing.selected_agent)
            role = ChatAgent(routing.selected_agent)

            stage = Stage.EXECUTING
            logger.info("[orchestrator] executing agent=%s", role)
            agent_response = await self.run_agent(
                role, message, context, student, self.recent_history(request)
            )

            stage = Stage.UNIFYING
            response = await self._unifier.unify(agent_response, message, student.name)
        except Exception as exc:
            logger.error(
                "[orchestrator] failure during %s: %s", stage, exc, exc_info=True
            )
            return await self._degrade(message, student)

        stage = Stage.DONE
        logger.info("=== Chat request %s (agent=%s) ===", stage, role)
        return ChatResult(response=response, routing=routing, processing_type=ROUTED)

    async def _degrade(self, message: str, student: StudentContext) -> ChatResult:
        logger.warning("[orchestrator] entering %s", Stage.ERROR_FALLBACK)
        prompt = build_fallback_prompt(message, student.name, self._settings)
        try:
            text = await self._gateway.complete(
                prompt.model,
                prompt.messages(),
                max_tokens=prompt.max_tokens,
                temperature=prompt.temperature,
            )
        except Exception as exc:
            logger.error("[orchestrator] degraded call failed: %s", exc)
            text = ""
        if not text.strip():
            return ChatResult(
                response=APOLOGY_MESSAGE,
                routing=ERROR_ROUTING,
                processing_type=ERROR_FALLBACK,
            )
        return ChatResult(response=text, routing=FALLBACK_ROUTING, processing_type=FALLBACK)
