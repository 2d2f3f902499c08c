"""
campus_companion/errors.py

Exception taxonomy shared by every pipeline.

Only :class:`InputValidationError` and :class:`AuthError` ever reach a client
as an HTTP error status.  The others are absorbed at the orchestrator,
unifier, router or responder boundary.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from campus_companion.models import RoutingDecision


class CompanionError(Exception):
    """Base class for every error raised by campus_companion."""


class InputValidationError(CompanionError):
    """Bad, missing or oversized input.  Rejected before any upstream call."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(CompanionError):
    """Missing or invalid bearer credential."""


class UpstreamError(CompanionError):
    """Non-2xx response, network failure or timeout from a provider.

    Attributes:
        provider: Provider label (``"groq"``, ``"openai"``, ...).
        status: HTTP status code, or ``None`` when no response was received.
        detail: Truncated, credential-free response body or error text.
    """

    def __init__(self, provider: str, status: int | None, detail: str = "") -> None:
        self.provider = provider
        self.status = status
        self.detail = detail
        label = f"HTTP {status}" if status is not None else "request failed"
        message = f"{provider} {label}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ParseError(CompanionError):
    """Malformed classifier or tool output."""


class StreamError(CompanionError):
    """A streamed response failed or ended without its metadata trailer."""


class StreamUnavailable(StreamError):
    """The upstream stream could not be opened.

    Carries the routing decision already made for the request so the
    synchronous path can reuse it instead of classifying again.
    """

    def __init__(self, routing: RoutingDecision, cause: Exception) -> None:
        super().__init__(f"upstream stream unavailable: {cause}")
        self.routing = routing
        self.cause = cause
