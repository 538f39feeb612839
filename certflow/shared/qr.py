from __future__ import annotations

import base64
import binascii
import logging
from io import BytesIO
from typing import NamedTuple

import qrcode
from qrcode.constants import ERROR_CORRECT_M

logger = logging.getLogger("certflow.certs")

QR_BOX_SIZE = 10
QR_BORDER = 2
DATA_URL_PREFIX = "data:image/png;base64,"

# Smallest valid PNG (1x1 pixel); embedded when the encoder fails.
PLACEHOLDER_PNG_DATA_URL = (
    DATA_URL_PREFIX
    + "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class EncodedCode(NamedTuple):
    url: str
    data_url: str
    degraded: bool = False
    warning: str | None = None


def build_verification_url(base_url: str, token: str) -> str:
    return f"{(base_url or '').rstrip('/')}/verify?id={token}"


def make_qr(data: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr


def qr_png_bytes(data: str) -> bytes:
    img = make_qr(data).make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def encode_verification_code(token: str, base_url: str) -> EncodedCode:
    """Encode the verification URL for ``token`` as a PNG data URL.

    Encoder failures never abort the caller: the result then carries a 1x1
    placeholder image, ``degraded=True`` and the failure reason in
    ``warning``.
    """

    url = build_verification_url(base_url, token)
    try:
        png = qr_png_bytes(url)
    except Exception as exc:
        logger.warning("[CERT-QR] encoder failed token=%s error=%s", token[:8], exc)
        return EncodedCode(
            url=url,
            data_url=PLACEHOLDER_PNG_DATA_URL,
            degraded=True,
            warning=f"QR code unavailable: {exc}",
        )
    return EncodedCode(
        url=url,
        data_url=DATA_URL_PREFIX + base64.b64encode(png).decode("ascii"),
    )


def decode_data_url(data_url: str) -> bytes:
    """Return the raw image bytes of a base64 PNG data URL."""

    raw = (data_url or "").strip()
    if not raw.startswith(DATA_URL_PREFIX):
        raise ValueError("QR payload is not a base64 PNG data URL")
    try:
        return base64.b64decode(raw[len(DATA_URL_PREFIX) :], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"QR payload is not valid base64: {exc}") from exc
