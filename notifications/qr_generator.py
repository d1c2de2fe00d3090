"""QR code generation for ticket check-in."""
import base64
import io
import logging

import qrcode

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = 'data:image/png;base64,'


def generate_qr_png(text: str) -> bytes:
    """
    Generate a QR code image as PNG bytes.

    Args:
        text: Payload to encode, the ticket's invoice number

    Returns:
        PNG image as bytes
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=4,
    )
    qr.add_data(text)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def generate_qr_data_url(text: str) -> str:
    """Generate a QR code as a PNG data URL."""
    png = generate_qr_png(text)
    logger.debug(f"Generated QR code ({len(png)} bytes)")
    return DATA_URL_PREFIX + base64.b64encode(png).decode('ascii')


def decode_data_url(data_url: str) -> bytes:
    """
    Recover the PNG bytes from a data URL produced by generate_qr_data_url.

    Raises:
        ValueError: If the URL is not a base64 PNG data URL
    """
    if not data_url.startswith(DATA_URL_PREFIX):
        raise ValueError('Not a base64 PNG data URL')
    return base64.b64decode(data_url[len(DATA_URL_PREFIX):], validate=True)
