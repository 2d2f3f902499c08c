"""
campus_companion/payloads.py

Decoding and size-checking of base64 media uploads.
"""

from __future__ import annotations

import base64
import binascii

from campus_companion.errors import InputValidationError


def strip_data_url(payload: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if the client sent one."""
    if payload.startswith("data:") and "," in payload:
        return payload.split(",", 1)[1]
    return payload


def decode_base64_payload(
    payload: str, limit: int, label: str, noun: str = "a file"
) -> bytes:
    """Decode a base64 upload, enforcing a decoded-size ceiling.

    The size is estimated from the encoded length before decoding, so an
    oversized upload is rejected without materialising it.

    Args:
        payload: Base64 text, optionally a data URL.
        limit: Maximum decoded size in bytes.
        label: Human name of the payload used in error messages
            (``"Image"``, ``"Audio"``).
        noun: How the size message refers to an acceptable upload.

    Raises:
        InputValidationError: 400 for missing or undecodable data, 413 when
            the payload is too large.
    """
    encoded = strip_data_url(payload.strip())
    if not encoded:
        raise InputValidationError(f"{label} data is required")
    decoded_size = len(encoded) * 3 // 4 - encoded[-2:].count("=")
    if decoded_size > limit:
        raise InputValidationError(
            f"{label} too large. Please use {noun} under {limit // (1024 * 1024)}MB.",
            status_code=413,
        )
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputValidationError(f"{label} data is not valid base64") from exc
