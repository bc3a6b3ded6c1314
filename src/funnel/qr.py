"""QR code rendering for tenant review links."""

from __future__ import annotations

import base64
from io import BytesIO

import qrcode
from PIL import Image


QR_SIZE_PX = 256
QR_BORDER_MODULES = 2
QR_FILL_COLOR = "black"
QR_BACK_COLOR = "white"


def generate_qr_png(url: str) -> bytes:
    """PNG bytes, 256x256, black on white with a 2-module margin."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=QR_BORDER_MODULES,
    )
    qr.add_data(url)
    qr.make(fit=True)
    img = qr.make_image(fill_color=QR_FILL_COLOR, back_color=QR_BACK_COLOR)

    raw = BytesIO()
    img.save(raw)
    raw.seek(0)
    with Image.open(raw) as decoded:
        resized = decoded.convert("RGB").resize((QR_SIZE_PX, QR_SIZE_PX), Image.NEAREST)
    out = BytesIO()
    resized.save(out, format="PNG")
    return out.getvalue()


def generate_qr_data_url(url: str) -> str:
    encoded = base64.b64encode(generate_qr_png(url)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
