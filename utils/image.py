"""Helpers for base64 encoded images."""

from __future__ import annotations

import base64
import binascii
import re

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.S)


def decode_base64_image(data: str) -> bytes:
    """Return raw bytes from a base64 string or ``data:`` URI.

    Raises ``ValueError`` when the payload is empty or not valid base64.
    """
    if not data:
        raise ValueError("empty image data")
    match = _DATA_URI_RE.match(data.strip())
    payload = match.group("data") if match else data.strip()
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 image") from exc
    if not raw:
        raise ValueError("empty image data")
    return raw


def image_mime(data: str, default: str = "image/jpeg") -> str:
    """Return the MIME type declared by a data URI, or ``default``."""
    match = _DATA_URI_RE.match((data or "").strip())
    return match.group("mime") if match else default


def to_data_uri(raw: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64," + base64.b64encode(raw).decode()
