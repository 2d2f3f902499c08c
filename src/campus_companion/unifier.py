"""
campus_companion/unifier.py

Best-effort rewrite of specialist output into the Campus Companion voice.

Every method returns its input unchanged when the upstream call fails for any
reason.  Unification can never fail a request.
"""

from __future__ import annotations

import logging

from campus_companion.config import CompanionSettings, cfg
from campus_companion.gateway import ModelGateway
from campus_companion.models import AgentResponse
from campus_companion.prompts import (
    AgentPrompt,
    build_transcription_unifier_prompt,
    build_unifier_prompt,
    build_vision_unifier_prompt,
)

logger = logging.getLogger("campus-companion.unifier")


class Unifier:
    def __init__(self, gateway: ModelGateway, settings: CompanionSettings = cfg) -> None:
        self._gateway = gateway
        self._settings = settings

    async def _rewrite(self, prompt: AgentPrompt, original: str, label: str) -> str:
        try:
            text = await self._gateway.complete(
                prompt.model,
                prompt.messages(),
                max_tokens=prompt.max_tokens,
                temperature=prompt.temperature,
            )
        except Exception as exc:
            logger.warning("[unifier:%s] falling back to original text: %s", label, exc)
            return original
        if not text.strip():
            logger.warning("[unifier:%s] empty rewrite; keeping original text.", label)
            return original
        return text

    async def unify(
        self, agent_response: AgentResponse, original_query: str, user_name: str
    ) -> str:
        """Restate a chat agent's answer in the product voice.

        Returns:
            The unified text, or ``agent_response.content`` unchanged when the
            unifier call fails or comes back empty.
        """
        prompt = build_unifier_prompt(
            agent_response, original_query, user_name, self._settings
        )
        return await self._rewrite(prompt, agent_response.content, "chat")

    async def unify_vision(
        self,
        description: str,
        key_concepts: list[str],
        subject: str,
        extracted_text: str,
        formulas: list[str],
    ) -> str:
        prompt = build_vision_unifier_prompt(
            description, key_concepts, subject, extracted_text, formulas, self._settings
        )
        return await self._rewrite(prompt, description, "vision")

    async def unify_transcription(self, text: str, context: str | None) -> str:
        prompt = build_transcription_unifier_prompt(text, context, self._settings)
        return await self._rewrite(prompt, text, "voice")
