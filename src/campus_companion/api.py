"""
campus_companion/api.py

FastAPI HTTP interface for the Campus Companion backend.

Endpoints:
  GET  /health            liveness probe
  POST /ai-chat           routed chat; JSON, or a streamed body when
                          ``stream`` is set
  POST /enhanced-vision   routed image analysis (bearer required)
  POST /enhanced-voice    transcription / synthesis (bearer required)
  OPTIONS /*              CORS preflight on any path
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from campus_companion import __version__
from campus_companion.auth import SupabaseAuth, SupabaseProfileStore, bearer_token
from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import (
    AuthError,
    InputValidationError,
    StreamUnavailable,
    UpstreamError,
)
from campus_companion.gateway import ModelGateway
from campus_companion.models import (
    ChatRequest,
    ChatResult,
    StudentContext,
    UserIdentity,
    VisionRequest,
    VoiceRequest,
    now_iso,
)
from campus_companion.orchestrator import (
    APOLOGY_MESSAGE,
    ERROR_FALLBACK,
    ERROR_ROUTING,
    ChatOrchestrator,
)
from campus_companion.router import QueryRouter
from campus_companion.speech import ElevenLabsSpeech, OpenAISpeech
from campus_companion.streaming import MEDIA_TYPE, StreamingResponder
from campus_companion.unifier import Unifier
from campus_companion.vision import VisionPipeline
from campus_companion.voice import VoicePipeline, validate_action

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger("campus-companion.api")

VISION_TAG = "multi_agent_vision"
VOICE_TAG = "multi_agent_voice"

VISION_UNAVAILABLE = (
    "I couldn't analyse this image right now, but I'm here to help you "
    "succeed! 💪 Please try again in a moment."
)
VOICE_UNAVAILABLE = (
    "I couldn't process your voice request right now, but I'm here to help "
    "you succeed! 💪 Please try again in a moment."
)


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


@dataclasses.dataclass(slots=True)
class Services:
    """Everything a request handler needs, built once per application."""

    http: httpx.AsyncClient
    settings: CompanionSettings
    auth: SupabaseAuth
    profiles: SupabaseProfileStore
    orchestrator: ChatOrchestrator
    responder: StreamingResponder
    vision: VisionPipeline
    voice: VoicePipeline


def build_services(
    settings: CompanionSettings = cfg,
    client: httpx.AsyncClient | None = None,
) -> Services:
    """Wire gateways, pipelines and identity clients around one HTTP client.

    Args:
        settings: Runtime configuration.
        client: Shared HTTP client.  A new one is created when omitted.
    """
    http = client or httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout))
    groq = ModelGateway(
        http,
        base_url=settings.groq_base_url,
        api_key=settings.groq_api_key,
        provider="groq",
        timeout=settings.upstream_timeout,
    )
    openai = ModelGateway(
        http,
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        provider="openai",
        timeout=settings.upstream_timeout,
    )
    unifier = Unifier(groq, settings)
    orchestrator = ChatOrchestrator(QueryRouter(groq, settings), groq, unifier, settings)
    openai_speech = OpenAISpeech(
        http,
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        timeout=settings.upstream_timeout,
    )
    elevenlabs = ElevenLabsSpeech(
        http,
        base_url=settings.elevenlabs_base_url,
        api_key=settings.elevenlabs_api_key,
        voice_id=settings.elevenlabs_voice_id,
        timeout=settings.upstream_timeout,
    )
    return Services(
        http=http,
        settings=settings,
        auth=SupabaseAuth(http, settings),
        profiles=SupabaseProfileStore(http, settings),
        orchestrator=orchestrator,
        responder=StreamingResponder(orchestrator, groq, settings),
        vision=VisionPipeline(groq, openai, unifier, settings),
        voice=VoicePipeline(openai_speech, [openai_speech, elevenlabs], groq, unifier, settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def require_user(
    services: Services = Depends(get_services),
    authorization: str | None = Header(default=None),
) -> UserIdentity:
    """Resolve the bearer credential or fail with 401."""
    return await services.auth.verify(bearer_token(authorization))


async def resolve_student(services: Services, authorization: str | None) -> StudentContext:
    """Profile of the caller, or a guest context when there is none."""
    guest = StudentContext(university=services.settings.default_university)
    token = bearer_token(authorization)
    if token is None:
        return guest
    try:
        identity = await services.auth.verify(token)
    except AuthError as exc:
        logger.info("[auth] continuing as guest: %s", exc)
        return guest
    return await services.profiles.fetch(identity.id, token) or guest


def chat_payload(result: ChatResult, student: StudentContext) -> dict[str, Any]:
    return {
        "response": result.response,
        "processing_type": result.processing_type,
        "routing": result.routing.model_dump(mode="json"),
        "timestamp": now_iso(),
        "student_context": student.model_dump(mode="json"),
    }


def degraded_payload(message: str) -> dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "response": message,
        "processing_type": ERROR_FALLBACK,
        "timestamp": now_iso(),
    }


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------


def create_app(services: Services | None = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built services (tests inject fakes here).  Defaults to
            :func:`build_services` with the module-level settings.
    """
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.services.http.aclose()

    app = FastAPI(
        title="Campus Companion",
        version=__version__,
        description=(
            "Routed study assistant: chat, image analysis and voice for "
            "university students."
        ),
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Error mapping
    # -----------------------------------------------------------------------

    @app.exception_handler(InputValidationError)
    async def _invalid_input(request: Request, exc: InputValidationError) -> JSONResponse:
        logger.info("[api] %s rejected: %s", request.url.path, exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(AuthError)
    async def _unauthorized(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=401)

    @app.exception_handler(RequestValidationError)
    async def _bad_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("[api] %s malformed body: %s", request.url.path, exc.errors())
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.options("/{path:path}", include_in_schema=False)
    async def preflight(path: str) -> Response:
        return Response(status_code=200)

    @app.get("/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok", "server": "campus-companion", "version": __version__}

    @app.post("/ai-chat", tags=["chat"])
    async def ai_chat(
        body: ChatRequest,
        services: Services = Depends(get_services),
        authorization: str | None = Header(default=None),
    ) -> Response:
        """Answer a chat message through the routed specialist agents.

        With ``stream`` set the body is streamed as plain text and ends with a
        JSON metadata line.  If the stream cannot be opened the request is
        answered as JSON instead, reusing the routing decision.
        """
        guest = StudentContext(university=services.settings.default_university)
        try:
            student = await resolve_student(services, authorization)
            routing = None
            if body.stream:
                try:
                    session = await services.responder.open(body, student)
                except StreamUnavailable as exc:
                    logger.warning("[api] stream unavailable, answering synchronously: %s", exc)
                    routing = exc.routing
                else:
                    return StreamingResponse(
                        session.relay(),
                        media_type=MEDIA_TYPE,
                        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
                        background=BackgroundTask(session.aclose),
                    )

            result = await services.orchestrator.handle(body, student, routing=routing)
        except (InputValidationError, AuthError):
            raise
        except Exception as exc:
            logger.error("[api] chat request failed: %s", exc, exc_info=True)
            result = ChatResult(
                response=APOLOGY_MESSAGE, routing=ERROR_ROUTING, processing_type=ERROR_FALLBACK
            )
            return JSONResponse(chat_payload(result, guest), status_code=500)
        status = 500 if result.processing_type == ERROR_FALLBACK else 200
        return JSONResponse(chat_payload(result, student), status_code=status)

    @app.post("/enhanced-vision", tags=["vision"])
    async def enhanced_vision(
        body: VisionRequest,
        services: Services = Depends(get_services),
        user: UserIdentity = Depends(require_user),
    ) -> JSONResponse:
        """Analyse a study image and return structured, unified results."""
        logger.info("[api] vision request from user=%s", user.id)
        try:
            result = await services.vision.analyze(body)
        except UpstreamError as exc:
            logger.error("[api] vision failed on every provider: %s", exc)
            return JSONResponse(degraded_payload(VISION_UNAVAILABLE), status_code=500)
        return JSONResponse({
            "success": True,
            "analysis": result.analysis,
            "raw_analysis": result.raw_analysis,
            "routing": result.routing.model_dump(mode="json"),
            "extracted_data": result.extracted.model_dump(mode="json"),
            "model_used": result.model_used,
            "confidence": result.confidence,
            "processing_type": VISION_TAG,
            "academic_enhancements": {
                "ocr_enabled": body.enhance_ocr,
                "formula_extraction": body.extract_formulas,
                "subject_classification": result.extracted.subject,
                "study_ready": True,
            },
            "timestamp": now_iso(),
        })

    @app.post("/enhanced-voice", tags=["voice"])
    async def enhanced_voice(
        body: VoiceRequest,
        services: Services = Depends(get_services),
        user: UserIdentity = Depends(require_user),
    ) -> JSONResponse:
        """Transcribe audio or synthesise speech, depending on ``action``."""
        action = validate_action(body)
        logger.info("[api] voice %s from user=%s", action, user.id)
        try:
            if action == "synthesize":
                synthesis = await services.voice.synthesize(body)
                payload: dict[str, Any] = {
                    "success": True,
                    "audioContent": synthesis.audio_content,
                    "voice_used": synthesis.voice_used,
                    "routing": synthesis.routing.model_dump(mode="json"),
                    "processing_info": synthesis.processing_info,
                }
            else:
                transcription = await services.voice.transcribe(body)
                payload = {
                    "success": True,
                    "text": transcription.text,
                    "raw_transcription": transcription.raw_transcription,
                    "routing": transcription.routing.model_dump(mode="json"),
                    "academic_enhanced": transcription.academic_enhanced,
                    "confidence": transcription.confidence,
                    "language": transcription.language,
                }
        except UpstreamError as exc:
            logger.error("[api] voice %s failed on every provider: %s", action, exc)
            return JSONResponse(degraded_payload(VOICE_UNAVAILABLE), status_code=500)
        payload["processing_type"] = VOICE_TAG
        payload["timestamp"] = now_iso()
        return JSONResponse(payload)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_api() -> None:
    """Start the FastAPI server via uvicorn."""
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Campus Companion API on %s:%d", cfg.api_host, cfg.api_port)
    uvicorn.run(
        "campus_companion.api:app",
        host=cfg.api_host,
        port=cfg.api_port,
        log_level=cfg.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_api()
