import base64
import io
import logging
import textwrap
from typing import Tuple

from PIL import Image, ImageDraw, ImageFont

from ..config import OPENAI_IMAGE_MODEL
from . import llm

logger = logging.getLogger(__name__)


def img_size(orientation: str) -> str:
    a = (orientation or "square").lower()
    if a.startswith("port"): return "1024x1536"
    if a.startswith("land"): return "1536x1024"
    return "1024x1024"


def img_size_px(orientation: str) -> Tuple[int, int]:
    w, h = img_size(orientation).split("x")
    return int(w), int(h)


def placeholder_png(caption: str, w: int, h: int) -> bytes:
    """Warm gradient card with the prompt on it, used when generation fails."""
    img = Image.new("RGB", (w, h))
    top, bottom = (253, 230, 138), (252, 165, 165)
    draw = ImageDraw.Draw(img)
    for y in range(h):
        t = y / max(h - 1, 1)
        draw.line([(0, y), (w, y)], fill=tuple(int(a + (b - a) * t) for a, b in zip(top, bottom)))
    font = ImageFont.load_default()
    text = textwrap.fill((caption or "Storybook")[:120], width=40) + "\n\n(placeholder illustration)"
    box = draw.multiline_textbbox((0, 0), text, font=font, align="center")
    tw, th = box[2] - box[0], box[3] - box[1]
    draw.multiline_text(((w - tw) / 2, (h - th) / 2), text, fill=(31, 41, 55), font=font, align="center")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def generate_illustration(prompt: str, orientation: str = "portrait") -> bytes:
    w, h = img_size_px(orientation)
    try:
        if llm.client is None or not OPENAI_IMAGE_MODEL:
            raise RuntimeError("Images API not configured")
        resp = llm.client.images.generate(model=OPENAI_IMAGE_MODEL, prompt=prompt, size=img_size(orientation))
        b64 = getattr(resp.data[0], "b64_json", None)
        if not isinstance(b64, str) or not b64.strip():
            raise ValueError("No b64_json in image response")
        return base64.b64decode(b64)
    except Exception as e:
        logger.warning("⚠️ Image generation failed -> placeholder: %s", e)
        return placeholder_png(prompt, w, h)
