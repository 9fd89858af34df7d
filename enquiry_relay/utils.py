"""
Utility functions for the relay service.
"""

import base64
import hmac
import io
import logging
from datetime import datetime, timezone
from typing import Optional

import qrcode
from qrcode.image.pil import PilImage

logger = logging.getLogger(__name__)

QR_TARGET_WIDTH = 300
QR_MARGIN = 2


def utc_now_iso() -> str:
    """Fixed-width ISO-8601 UTC timestamp; sorts lexicographically in time order."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def build_qr_target(text: Optional[str], channel_handle: Optional[str], default_channel: str) -> str:
    """Custom text wins; otherwise link to the channel (or the default one)."""
    if text:
        return text
    return f"https://t.me/{channel_handle or default_channel}"


def build_qr(data: str) -> qrcode.QRCode:
    """
    Build a QR code for data, sized so the rendered image is close to
    QR_TARGET_WIDTH pixels wide.
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        border=QR_MARGIN,
    )
    qr.add_data(data)
    qr.make(fit=True)
    qr.box_size = max(1, QR_TARGET_WIDTH // (qr.modules_count + 2 * QR_MARGIN))
    return qr


def generate_qr_data_url(data: str) -> str:
    """
    Render data as a black-on-white PNG QR code.

    Returns:
        A data URL: "data:image/png;base64,<payload>"
    """
    qr = build_qr(data)
    image = qr.make_image(image_factory=PilImage, fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    logger.debug(f"Generated QR code: {len(buffer.getvalue())} bytes")
    return f"data:image/png;base64,{encoded}"


def verify_webhook_secret(header_value: Optional[str], secret: Optional[str]) -> bool:
    """
    Check Telegram's X-Telegram-Bot-Api-Secret-Token header.

    Returns:
        True when no secret is configured or the header matches it
    """
    if not secret:
        return True
    if not header_value:
        return False
    # Use constant-time comparison to prevent timing attacks
    return hmac.compare_digest(header_value.encode("utf-8"), secret.encode("utf-8"))
