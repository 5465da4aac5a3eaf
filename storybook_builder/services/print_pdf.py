"""
Print-ready storybook PDF.

Layout per book (trim + 0.125" bleed on every edge):
  page 1        cover: full-bleed art, adaptive title inside the safe area
  page 2i       left-hand page: full-bleed illustration for story page i
  page 2i+1     right-hand page: wrapped, centered text; spine margin on the inner edge

So a book with N story pages always renders 2N + 1 PDF pages.
"""
import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from PIL import Image
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from ..config import PDF_FONT_BOLD_TTF, PDF_FONT_TTF
from . import storage
from .book_sizes import DEFAULT_TRIM, PageGeometry, Rect
from .layout import TITLE_LEADING, TextBlock, fit_title, glyph_box, layout_block, wrap_words

logger = logging.getLogger(__name__)

BODY_SIZE      = 14.0
BODY_LEADING   = BODY_SIZE * 1.5
FOLIO_SIZE     = 9.0
FOLIO_BAND     = FOLIO_SIZE * 2.0
AUTHOR_SIZE    = 14.0
TITLE_AREA     = 0.35   # share of the cover safe height reserved for the title
PRINT_DPI      = 300
DEFAULT_AUTHOR = "AI Storyteller"

SOFT_BG    = colors.Color(0.976, 0.969, 0.953)
INK        = colors.Color(0.15, 0.20, 0.28)
TITLE_INK  = colors.Color(0.12, 0.16, 0.23)
FOLIO_INK  = colors.Color(0.5, 0.5, 0.5)


class PageCountError(ValueError):
    pass


@dataclass(frozen=True)
class Fonts:
    body: str = "Helvetica"
    bold: str = "Helvetica-Bold"

    def measure(self, font: str) -> Callable[[str, float], float]:
        return lambda text, size: pdfmetrics.stringWidth(text, font, size)

    def extents(self, font: str) -> Tuple[float, float]:
        """(ascent, descent) per point of size, from the font's own metrics."""
        ascent, descent = pdfmetrics.getAscentDescent(font, 1.0)
        return ascent, -descent


def load_fonts() -> Fonts:
    """Optional TrueType overrides (PDF_FONT_TTF / PDF_FONT_BOLD_TTF); built-ins otherwise."""
    body, bold = "Helvetica", "Helvetica-Bold"
    try:
        if PDF_FONT_TTF:
            pdfmetrics.registerFont(TTFont("StoryBody", PDF_FONT_TTF))
            body = "StoryBody"
        if PDF_FONT_BOLD_TTF:
            pdfmetrics.registerFont(TTFont("StoryBold", PDF_FONT_BOLD_TTF))
            bold = "StoryBold"
    except Exception as e:
        logger.warning("⚠️ custom font registration failed, using built-ins: %s", e)
        body, bold = "Helvetica", "Helvetica-Bold"
    return Fonts(body=body, bold=bold)


# ---------- layout (pure, used by the renderer and by tests) ----------

def text_page_layout(text: str, geom: PageGeometry, fonts: Fonts = Fonts()) -> TextBlock:
    safe = geom.safe_rect("right")
    area = Rect(safe.x, safe.y + FOLIO_BAND, safe.width, safe.height - FOLIO_BAND)
    measure = fonts.measure(fonts.body)
    lines = wrap_words(text, area.width, lambda s: measure(s, BODY_SIZE))
    return layout_block(lines, area, BODY_SIZE, BODY_LEADING, measure, align="center", valign="middle",
                        extents=fonts.extents(fonts.body))


def folio_layout(number: int, geom: PageGeometry, fonts: Fonts = Fonts()) -> TextBlock:
    safe = geom.safe_rect("right")
    band = Rect(safe.x, safe.y, safe.width, FOLIO_BAND)
    return layout_block([str(number)], band, FOLIO_SIZE, FOLIO_BAND, fonts.measure(fonts.body),
                        extents=fonts.extents(fonts.body))


def cover_layout(title: str, author: Optional[str], geom: PageGeometry, fonts: Fonts = Fonts()) -> Dict[str, Any]:
    safe = geom.safe_rect("cover")
    title_h = safe.height * TITLE_AREA
    title_rect = Rect(safe.x, safe.top - title_h, safe.width, title_h)
    measure_bold = fonts.measure(fonts.bold)
    size, lines = fit_title(title or "Untitled", title_rect.width, title_rect.height, measure_bold)
    bold_extents = fonts.extents(fonts.bold)
    # a tall face gets extra leading so no glyph rises out of its slot
    leading = size * max(TITLE_LEADING, sum(bold_extents))
    title_block = layout_block(lines, title_rect, size, leading, measure_bold, valign="middle", extents=bold_extents)

    author_rect = Rect(safe.x, safe.y, safe.width, AUTHOR_SIZE * 2)
    measure = fonts.measure(fonts.body)
    byline = f"By {author or DEFAULT_AUTHOR}"
    author_lines = wrap_words(byline, author_rect.width, lambda s: measure(s, AUTHOR_SIZE))[:1]
    author_block = layout_block(author_lines, author_rect, AUTHOR_SIZE, AUTHOR_SIZE * 2, measure,
                                extents=fonts.extents(fonts.body))
    return {"title_rect": title_rect, "title": title_block, "author": author_block, "title_size": size}


# ---------- rendering ----------

def _prepare_image(data: bytes, max_px) -> ImageReader:
    img = Image.open(io.BytesIO(data))
    img.load()
    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        bg = Image.new("RGB", img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[-1])
        img = bg
    elif img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail(max_px)
    return ImageReader(img)


def _draw_block(c: canvas.Canvas, block: TextBlock, font: str, color) -> None:
    c.setFillColor(color)
    for line in block.lines:
        c.setFont(font, line.size)
        c.drawString(line.x, line.baseline, line.text)


def _fill_page(c: canvas.Canvas, page_w: float, page_h: float, color) -> None:
    c.setFillColor(color)
    c.rect(0, 0, page_w, page_h, fill=1, stroke=0)


def _draw_full_bleed(c: canvas.Canvas, img: ImageReader, page_w: float, page_h: float) -> None:
    iw, ih = img.getSize()
    scale = max(page_w / float(iw or 1), page_h / float(ih or 1))
    dw, dh = iw * scale, ih * scale
    c.drawImage(img, (page_w - dw) / 2, (page_h - dh) / 2, width=dw, height=dh)


class PrintBookRenderer:
    def __init__(self, geom: PageGeometry, fetch_image: Callable[[str], bytes], fonts: Fonts):
        self.geom = geom
        self.fetch_image = fetch_image
        self.fonts = fonts
        self.page_w, self.page_h = geom.page_size
        self.max_px = (
            int(geom.page_size[0] / 72 * PRINT_DPI),
            int(geom.page_size[1] / 72 * PRINT_DPI),
        )
        self.failed_images: List[str] = []

    def _embed(self, url: Optional[str]) -> Optional[ImageReader]:
        if not url:
            return None
        try:
            return _prepare_image(self.fetch_image(url), self.max_px)
        except Exception as e:
            logger.warning("⚠️ embed failed for %s: %s", url, e)
            self.failed_images.append(url)
            return None

    def cover(self, c: canvas.Canvas, title: str, author: Optional[str], image_url: Optional[str]) -> None:
        _fill_page(c, self.page_w, self.page_h, SOFT_BG)
        img = self._embed(image_url)
        layout = cover_layout(title, author, self.geom, self.fonts)
        if img is not None:
            _draw_full_bleed(c, img, self.page_w, self.page_h)
            band = layout["title_rect"]
            c.saveState()
            c.setFillColor(colors.white)
            c.setFillAlpha(0.78)
            c.rect(0, band.y - 6, self.page_w, self.page_h - band.y + 6, fill=1, stroke=0)
            c.restoreState()
        _draw_block(c, layout["title"], self.fonts.bold, TITLE_INK)
        _draw_block(c, layout["author"], self.fonts.body, INK)
        c.showPage()

    def image_page(self, c: canvas.Canvas, image_url: Optional[str]) -> None:
        img = self._embed(image_url)
        if img is not None:
            _draw_full_bleed(c, img, self.page_w, self.page_h)
        else:
            _fill_page(c, self.page_w, self.page_h, SOFT_BG)
        c.showPage()

    def text_page(self, c: canvas.Canvas, text: str, number: int) -> None:
        _fill_page(c, self.page_w, self.page_h, SOFT_BG)
        block = text_page_layout(text, self.geom, self.fonts)
        if block.truncated:
            logger.warning("⚠️ page %d text overflowed the safe area; dropped %d line(s)", number, block.dropped)
        _draw_block(c, block, self.fonts.body, INK)
        _draw_block(c, folio_layout(number, self.geom, self.fonts), self.fonts.body, FOLIO_INK)
        c.showPage()


def generate_print_pdf(
    storybook: Any,
    book_size: str = DEFAULT_TRIM,
    fetch_image: Callable[[str], bytes] = storage.get_bytes,
) -> bytes:
    """
    ``storybook`` is anything with ``title``, ``author``, ``pages``
    (dicts with ``text`` / ``image_url``) and ``cover_image_url``.
    """
    pages: Sequence[Dict[str, Any]] = list(getattr(storybook, "pages", None) or [])
    if not pages:
        raise PageCountError("storybook has no pages to print")

    geom = PageGeometry.for_size(book_size)
    fonts = load_fonts()
    renderer = PrintBookRenderer(geom, fetch_image, fonts)

    title = getattr(storybook, "title", None) or "Untitled"
    author = getattr(storybook, "author", None) or DEFAULT_AUTHOR

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=geom.page_size)
    c.setTitle(title)
    c.setAuthor(author)
    c.setSubject("Children's Storybook - Print Edition")
    c.setCreator("AI Storybook Builder")
    c.setKeywords(f"storybook, print, {book_size}, {PRINT_DPI}dpi")

    cover_url = getattr(storybook, "cover_image_url", None) or pages[0].get("image_url")
    renderer.cover(c, title, author, cover_url)

    for i, page in enumerate(pages, start=1):
        renderer.image_page(c, page.get("image_url"))
        renderer.text_page(c, page.get("text") or "", i)

    c.save()
    total = 2 * len(pages) + 1
    logger.info(
        "✅ Print-ready PDF generated: %d pages, %s trim, %d image(s) missing",
        total, book_size, len(renderer.failed_images),
    )
    return buf.getvalue()


__all__ = [
    "PageCountError", "Fonts", "generate_print_pdf",
    "text_page_layout", "folio_layout", "cover_layout", "glyph_box",
]
