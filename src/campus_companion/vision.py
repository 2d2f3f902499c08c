"""
campus_companion/vision.py

Vision pipeline: route → analyse (primary, then secondary provider) →
extract structured hints → unify into a study-friendly answer.
"""

from __future__ import annotations

import logging
from typing import Any, Final

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import UpstreamError
from campus_companion.gateway import ModelGateway
from campus_companion.hints import (
    DEFAULT_STUDY_SUGGESTIONS,
    classify_subject,
    parse_vision_output,
)
from campus_companion.models import (
    ExtractedData,
    VisionAgent,
    VisionRequest,
    VisionResult,
)
from campus_companion.payloads import decode_base64_payload, strip_data_url
from campus_companion.prompts import AgentPrompt, build_vision_prompt
from campus_companion.router import route_vision
from campus_companion.unifier import Unifier

logger = logging.getLogger("campus-companion.vision")

COMPLEX_MODEL_CONFIDENCE: Final[float] = 0.95
GENERAL_MODEL_CONFIDENCE: Final[float] = 0.90
FALLBACK_SUFFIX: Final[str] = "-fallback"


def vision_messages(prompt: AgentPrompt, image_b64: str, detail_level: str) -> list[dict[str, Any]]:
    """System prompt plus one multimodal user turn carrying the image."""
    return [
        {"role": "system", "content": prompt.system_prompt},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": prompt.user_message},
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:image/jpeg;base64,{image_b64}",
                        "detail": "high" if detail_level == "high" else "auto",
                    },
                },
            ],
        },
    ]


class VisionPipeline:
    """Analyses one image for a student.

    Args:
        primary: Gateway for the routed vision model.
        secondary: Gateway used when the primary call fails.
        unifier: Rewrites the analysis in the product voice.
        settings: Models and the image size limit.
    """

    def __init__(
        self,
        primary: ModelGateway,
        secondary: ModelGateway,
        unifier: Unifier,
        settings: CompanionSettings = cfg,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._unifier = unifier
        self._settings = settings

    async def _describe(self, prompt: AgentPrompt, messages: list[dict[str, Any]]) -> tuple[str, str]:
        try:
            text = await self._primary.complete(
                prompt.model, messages,
                max_tokens=prompt.max_tokens, temperature=prompt.temperature,
            )
            if text.strip():
                return text, prompt.model
            logger.warning("[vision] primary model returned no text")
        except UpstreamError as exc:
            logger.warning("[vision] primary model failed, trying secondary: %s", exc)

        model = self._settings.model_vision_fallback
        text = await self._secondary.complete(
            model, messages,
            max_tokens=prompt.max_tokens, temperature=prompt.temperature,
        )
        if not text.strip():
            raise UpstreamError(self._secondary.provider, None, "empty vision analysis")
        return text, f"{model}{FALLBACK_SUFFIX}"

    async def analyze(self, request: VisionRequest) -> VisionResult:
        """Run the full vision pipeline for one request.

        Raises:
            InputValidationError: Missing, undecodable or oversized image.
            UpstreamError: If both providers fail.
        """
        decode_base64_payload(
            request.image,
            self._settings.max_image_bytes,
            "Image",
            noun="an image",
        )
        image_b64 = strip_data_url(request.image.strip())

        routing = route_vision(request)
        role = VisionAgent(routing.selected_agent)
        logger.info("[vision] agent=%s analysis_type=%s", role, request.analysis_type)

        prompt = build_vision_prompt(role, request, routing.reason, self._settings)
        raw, model_used = await self._describe(
            prompt, vision_messages(prompt, image_b64, request.detail_level)
        )

        hints = parse_vision_output(raw)
        subject = request.subject or hints.subject or classify_subject(hints.description)
        extracted = ExtractedData(
            text=hints.extracted_text or "",
            formulas=(hints.formulas or []) if request.extract_formulas else [],
            key_concepts=hints.key_concepts or [],
            study_suggestions=hints.study_suggestions or list(DEFAULT_STUDY_SUGGESTIONS),
            subject=subject,
        )

        analysis = await self._unifier.unify_vision(
            hints.description,
            extracted.key_concepts,
            extracted.subject,
            extracted.text,
            extracted.formulas,
        )
        confidence = (
            COMPLEX_MODEL_CONFIDENCE
            if model_used == self._settings.model_vision_complex
            else GENERAL_MODEL_CONFIDENCE
        )
        logger.info("[vision] done model=%s subject=%s", model_used, subject)
        return VisionResult(
            analysis=analysis,
            raw_analysis=hints.description,
            routing=routing,
            extracted=extracted,
            model_used=model_used,
            confidence=confidence,
        )
