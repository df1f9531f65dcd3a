"""QR payload encoding for visitor passes."""

from __future__ import annotations

import io
import json
from dataclasses import dataclass

import qrcode
from loguru import logger
from qrcode.constants import ERROR_CORRECT_M

from core.exceptions import QrEncodingError
from utils.image import to_data_uri
from utils.time import iso_utc

logger = logger.bind(module="qr")


@dataclass(frozen=True)
class QrArtifact:
    """Encoded payload plus the rendered PNG."""

    payload: str
    png: bytes

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.png, "image/png")


def build_payload(code: str, identity: str, expires_at: float) -> str:
    """Return the compact JSON payload scanned at the gate."""
    return json.dumps(
        {"code": code, "name": identity, "expiresAt": iso_utc(expires_at)},
        separators=(",", ":"),
    )


def parse_payload(payload: str) -> dict:
    """Inverse of :func:`build_payload` for scanners and tests."""
    return json.loads(payload)


def encode(
    code: str,
    identity: str,
    expires_at: float,
    *,
    error_correction: int = ERROR_CORRECT_M,
    box_size: int = 8,
    border: int = 4,
) -> QrArtifact:
    """Encode the visitor code, identity and expiry as a PNG QR image.

    Raises :class:`QrEncodingError` if the payload cannot be encoded, for
    example when it exceeds the capacity of the error-correction level.
    """
    if not code:
        raise QrEncodingError("visitor code required for QR payload")
    payload = build_payload(code, identity, expires_at)
    try:
        qr = qrcode.QRCode(
            error_correction=error_correction, box_size=box_size, border=border
        )
        qr.add_data(payload)
        qr.make(fit=True)
        buf = io.BytesIO()
        qr.make_image(fill_color="black", back_color="white").save(buf, format="PNG")
    except Exception as exc:
        logger.error("QR encoding failed for {}: {}", code, exc)
        raise QrEncodingError(f"failed to encode QR for {code}") from exc
    return QrArtifact(payload=payload, png=buf.getvalue())
