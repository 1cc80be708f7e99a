"""QR image rendering for pickup codes."""

import base64
import io
import logging

import qrcode
from qrcode.exceptions import DataOverflowError

from app.config import settings
from app.core.errors import RenderError

logger = logging.getLogger(__name__)


def render_qr_data_url(payload: str) -> str:
    """Render ``payload`` as a PNG QR code and return it as a data URL."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=settings.QR_BOX_SIZE,
        border=settings.QR_BORDER,
    )
    try:
        qr.add_data(payload)
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        # qrcode 8 reports an oversized payload as an invalid version (ValueError)
        logger.warning("QR payload too large (%d chars)", len(payload))
        raise RenderError() from exc

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"
