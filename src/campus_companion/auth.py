"""
campus_companion/auth.py

Bearer verification and student-profile lookup against the Supabase backend.

Only two reads are made: ``GET /auth/v1/user`` to resolve the credential, and
one row of ``profiles`` through PostgREST.  Nothing is written.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from campus_companion.config import CompanionSettings, cfg
from campus_companion.errors import AuthError
from campus_companion.models import StudentContext, UserIdentity

logger = logging.getLogger("campus-companion.auth")

PROFILE_COLUMNS = "full_name,course,year_of_study,university"


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class _SupabaseClient:
    def __init__(self, client: httpx.AsyncClient, settings: CompanionSettings = cfg) -> None:
        self._client = client
        self._settings = settings
        self._base_url = settings.supabase_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self._base_url and self._settings.supabase_anon_key)

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "apikey": self._settings.supabase_anon_key,
            "Authorization": f"Bearer {token}",
        }


class SupabaseAuth(_SupabaseClient):
    """Resolves a bearer credential into a :class:`UserIdentity`."""

    async def verify(self, token: str | None) -> UserIdentity:
        """Return the identity behind ``token``.

        Raises:
            AuthError: Missing token or configuration, a rejected token, or
                an unreachable auth service.
        """
        if not token:
            raise AuthError("Authorization required")
        if not self.configured:
            raise AuthError("Authentication is not configured")
        try:
            async with asyncio.timeout(self._settings.upstream_timeout):
                response = await self._client.get(
                    f"{self._base_url}/auth/v1/user", headers=self._headers(token)
                )
        except (TimeoutError, httpx.HTTPError) as exc:
            logger.error("[auth] auth service unreachable: %s", type(exc).__name__)
            raise AuthError("Authentication service unavailable") from exc
        if response.status_code != 200:
            logger.info("[auth] credential rejected (HTTP %d)", response.status_code)
            raise AuthError("Invalid or expired credential")
        try:
            data = response.json()
            return UserIdentity(id=str(data["id"]), email=data.get("email"))
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError("Malformed auth response") from exc


class SupabaseProfileStore(_SupabaseClient):
    """Read-only access to the ``profiles`` table."""

    async def fetch(self, user_id: str, token: str) -> StudentContext | None:
        """Load the student's profile, or ``None`` if it cannot be read."""
        if not self.configured:
            return None
        try:
            async with asyncio.timeout(self._settings.upstream_timeout):
                response = await self._client.get(
                    f"{self._base_url}/rest/v1/profiles",
                    params={
                        "select": PROFILE_COLUMNS,
                        "user_id": f"eq.{user_id}",
                        "limit": "1",
                    },
                    headers=self._headers(token),
                )
            response.raise_for_status()
            rows = response.json()
        except (TimeoutError, httpx.HTTPError, ValueError) as exc:
            logger.warning("[auth] profile lookup failed for %s: %s", user_id, exc)
            return None
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        row = rows[0]
        try:
            return StudentContext(
                name=row.get("full_name") or "Student",
                university=row.get("university") or self._settings.default_university,
                course=row.get("course"),
                year=row.get("year_of_study"),
            )
        except ValidationError as exc:
            logger.warning("[auth] malformed profile for %s: %s", user_id, exc)
            return None
