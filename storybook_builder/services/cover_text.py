"""
Title and by-line composited onto a generated cover illustration.

Sizing works in characters rather than measured glyphs so the result is
stable across whatever font the host has installed.
"""
import io
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from ..config import PDF_FONT_BOLD_TTF, PDF_FONT_TTF

logger = logging.getLogger(__name__)

TITLE_FONTS = [
    PDF_FONT_BOLD_TTF,
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
]
TEXT_FONTS = [
    PDF_FONT_TTF,
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
]

MIN_CHARS_PER_LINE = 12
MIN_FONT_PX = 25
MAX_FONT_PX = 70
GRADIENT_SHARE = 0.25
GRADIENT_ALPHA = 0.7


def wrap_chars(text: str, max_chars: int) -> List[str]:
    """Word wrap by character count; words longer than a line break with a hyphen."""
    lines: List[str] = []
    current = ""
    for word in text.split():
        while len(word) > max_chars:
            if current:
                lines.append(current)
                current = ""
            lines.append(word[:max_chars - 1] + "-")
            word = word[max_chars - 1:]
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def title_metrics(title: str, width: int, height: int) -> Tuple[List[str], int]:
    """Lines and pixel size for the cover title."""
    safe_w = width * 0.85
    lines = wrap_chars(title, max(int(safe_w // 45), MIN_CHARS_PER_LINE)) or [""]
    n = len(lines)
    longest = max(len(line) for line in lines) or 1
    by_lines = 40 if n > 3 else 45 if n > 2 else 50 if n > 1 else 60
    by_width = int(safe_w / longest * 1.8)
    by_height = int(height * 0.18 / (n * 1.2))
    size = min(by_lines, by_width, by_height, MAX_FONT_PX)
    return lines, max(size, MIN_FONT_PX)


def _font(candidates: List[str], size: int) -> ImageFont.ImageFont:
    for p in candidates:
        if p and Path(p).exists():
            return ImageFont.truetype(p, size)
    return ImageFont.load_default(size=size)


def _gradient(size: Tuple[int, int], from_top: bool) -> Image.Image:
    w, h = size
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    for y in range(h):
        t = y / max(h - 1, 1)
        fade = (1 - t) if from_top else t
        draw.line([(0, y), (w, y)], fill=(0, 0, 0, int(255 * GRADIENT_ALPHA * fade)))
    return layer


def _centered_with_shadow(img: Image.Image, y: float, text: str, font) -> None:
    draw = ImageDraw.Draw(img)
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (img.width - (right - left)) / 2 - left
    shadow = Image.new("RGBA", img.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text((x, y + 2), text, font=font, fill=(0, 0, 0, 204))
    img.alpha_composite(shadow.filter(ImageFilter.GaussianBlur(radius=3)))
    ImageDraw.Draw(img).text((x, y), text, font=font, fill=(255, 255, 255, 255))


def add_text_to_cover_image(image_bytes: bytes, title: str, author: Optional[str]) -> bytes:
    img = Image.open(io.BytesIO(image_bytes)).convert("RGBA")
    w, h = img.size
    band = int(h * GRADIENT_SHARE)
    img.alpha_composite(_gradient((w, band), from_top=True), (0, 0))
    img.alpha_composite(_gradient((w, band), from_top=False), (0, h - band))

    lines, size = title_metrics(title or "", w, h)
    title_font = _font(TITLE_FONTS, size)
    line_h = size * 1.2
    top = h * 0.05
    for i, line in enumerate(lines):
        # y is the line's top; +1 line mirrors a baseline-at-bottom layout
        _centered_with_shadow(img, top + (i + 1) * line_h - size, line, title_font)

    author_size = int(size * 0.4)
    author_font = _font(TEXT_FONTS, author_size)
    _centered_with_shadow(img, h * 0.92 - author_size, f"By {author or 'AI Storyteller'}", author_font)

    out = io.BytesIO()
    img.convert("RGB").save(out, format="JPEG", quality=90)
    logger.info("🎨 Cover text added title=%r lines=%d size=%dpx", title, len(lines), size)
    return out.getvalue()
