"""
campus_companion/config.py

Runtime configuration for the assistant backend.

Every setting is read from the environment or a ``.env`` file.  Field names
map to upper-case environment variables (``groq_api_key`` → ``GROQ_API_KEY``).
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompanionSettings(BaseSettings):
    """Runtime configuration loaded from environment variables / .env file.

    Attributes:
        groq_base_url: OpenAI-compatible Groq endpoint used for chat and
            primary vision calls.
        groq_api_key: Groq API key.
        openai_base_url: OpenAI endpoint (vision fallback, Whisper, TTS).
        openai_api_key: OpenAI API key.
        elevenlabs_base_url: ElevenLabs endpoint (secondary TTS).
        elevenlabs_api_key: ElevenLabs API key.  Empty disables the provider.
        elevenlabs_voice_id: ElevenLabs voice used for secondary synthesis.
        model_router: Fast model used for query classification.
        model_study_helper: Model for the study-helper agent and the
            degraded fallback call.
        model_time_manager: Model for the time-manager agent.
        model_researcher: Model for the researcher agent.
        model_motivator: Model for the motivator agent.
        model_unifier: Model for the chat unifier pass.
        model_light: Small model for transcription enhancement and the
            vision/voice unifiers.
        model_vision_complex: Vision model for formula/technical analysis.
        model_vision_general: Vision model for general analysis.
        model_vision_fallback: Vision model on the secondary provider.
        upstream_timeout: Deadline in seconds for one upstream call.
        max_message_length: Maximum chat message length in characters.
        max_history_turns: Prior turns forwarded to the agent call.
        max_image_bytes: Largest decoded image accepted by the vision endpoint.
        max_audio_bytes: Largest decoded audio accepted for transcription.
        router_min_confidence: Classifier decisions below this confidence use
            the keyword fallback instead.  ``0.0`` disables the check.
        supabase_url: Base URL of the auth / profile backend.
        supabase_anon_key: Public anon key sent as ``apikey`` to the backend.
        default_university: University shown when a profile omits it.
        cors_allow_origins: Origins allowed by the CORS middleware.
        api_host: Bind address for the HTTP server.
        api_port: Bind port for the HTTP server.
        log_level: Root logging level for the entry points.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    groq_base_url: str = Field(
        "https://api.groq.com/openai/v1",
        description="OpenAI-compatible Groq base URL.",
    )
    groq_api_key: str = Field("", description="Groq API key.")
    openai_base_url: str = Field(
        "https://api.openai.com/v1",
        description="OpenAI base URL.",
    )
    openai_api_key: str = Field("", description="OpenAI API key.")
    elevenlabs_base_url: str = Field(
        "https://api.elevenlabs.io/v1",
        description="ElevenLabs base URL.",
    )
    elevenlabs_api_key: str = Field(
        "",
        description="ElevenLabs API key.  Empty disables secondary synthesis.",
    )
    elevenlabs_voice_id: str = Field(
        "21m00Tcm4TlvDq8ikWAM",
        description="ElevenLabs voice used when OpenAI TTS is unavailable.",
    )

    model_router: str = Field(
        "llama-3.1-8b-instant",
        description="Small, fast model used for query classification.",
    )
    model_study_helper: str = Field(
        "llama-3.3-70b-versatile",
        description="Model for the study-helper agent and degraded fallback.",
    )
    model_time_manager: str = Field(
        "llama-3.3-70b-versatile",
        description="Model for the time-manager agent.",
    )
    model_researcher: str = Field(
        "llama-3.3-70b-versatile",
        description="Model for the researcher agent.",
    )
    model_motivator: str = Field(
        "llama-3.1-8b-instant",
        description="Model for the motivator agent.",
    )
    model_unifier: str = Field(
        "llama-3.3-70b-versatile",
        description="Model for the chat unifier pass.",
    )
    model_light: str = Field(
        "llama-3.1-8b-instant",
        description="Model for transcription enhancement and light unifiers.",
    )
    model_vision_complex: str = Field(
        "meta-llama/llama-4-maverick-17b-128e-instruct",
        description="Vision model for formula extraction and technical analysis.",
    )
    model_vision_general: str = Field(
        "meta-llama/llama-4-scout-17b-16e-instruct",
        description="Vision model for general academic analysis.",
    )
    model_vision_fallback: str = Field(
        "gpt-4o",
        description="Vision model on the secondary (OpenAI) provider.",
    )

    upstream_timeout: float = Field(
        30.0,
        description="Deadline in seconds for a single upstream call.",
    )
    max_message_length: int = Field(
        1000,
        description="Maximum chat message length in characters.",
    )
    max_history_turns: int = Field(
        10,
        description="Prior conversation turns forwarded to the agent call.",
    )
    max_image_bytes: int = Field(
        20 * 1024 * 1024,
        description="Largest decoded image accepted by the vision endpoint.",
    )
    max_audio_bytes: int = Field(
        25 * 1024 * 1024,
        description="Largest decoded audio accepted for transcription.",
    )
    router_min_confidence: float = Field(
        0.0,
        description=(
            "Classifier decisions below this confidence are replaced by the "
            "keyword fallback.  0.0 trusts every valid classifier decision."
        ),
    )

    supabase_url: str = Field(
        "",
        description="Base URL of the auth / profile backend.",
    )
    supabase_anon_key: str = Field(
        "",
        description="Public anon key sent as the apikey header.",
    )
    default_university: str = Field(
        "University of Uyo",
        description="University used when the profile does not specify one.",
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware.",
    )
    api_host: str = Field("0.0.0.0", description="HTTP bind address.")
    api_port: int = Field(8300, description="HTTP bind port.")
    log_level: str = Field("INFO", description="Root logging level.")


cfg: CompanionSettings = CompanionSettings()
