"""QR challenge rendering."""

import asyncio
import base64
import io

import qrcode


def _build_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


async def render_qr_data_url(payload: str) -> str:
    """Render a QR payload to a ``data:image/png;base64,...`` URL.

    Args:
        payload: QR challenge string from the protocol engine

    Returns:
        PNG data URL suitable for an ``<img src>``
    """
    png = await asyncio.to_thread(_build_qr_png, payload)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")
