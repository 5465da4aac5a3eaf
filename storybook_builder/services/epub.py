"""
EPUB edition: a composited cover, then one picture-and-text chapter per story page.

Images are packaged inside the book, so readers never fetch anything.
"""
import io
import logging
import mimetypes
from typing import Any, Callable, Optional, Tuple

from ebooklib import epub
from jinja2 import Template

from . import storage
from .cover_text import add_text_to_cover_image

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "AI Storyteller"

CSS = """
body { font-family: Georgia, serif; margin: 0; padding: 0; line-height: 1.6; color: #1b1510; }
.story-page { text-align: center; page-break-after: always; }
.story-page img { max-width: 100%; max-height: 70vh; }
.story-page p { font-size: 1.2em; margin: 1em 1.5em; white-space: pre-line; }
"""

PAGE_HTML = Template(
    '<div class="story-page">'
    '{% if src %}<img src="{{ src }}" alt="Illustration for page {{ number }}"/>{% endif %}'
    "<p>{{ text }}</p>"
    "</div>",
    autoescape=True,
)


def _fetch(url: Optional[str], fetch: Callable[[str], bytes]) -> Optional[bytes]:
    if not url:
        return None
    try:
        return fetch(url)
    except Exception as e:
        logger.warning("⚠️ epub image skipped %s: %s", url, e)
        return None


def _image_type(url: str) -> Tuple[str, str]:
    mt, _ = mimetypes.guess_type(url)
    mt = mt if mt in ("image/png", "image/jpeg", "image/gif", "image/webp") else "image/png"
    return mt, {"image/jpeg": "jpg"}.get(mt, mt.split("/")[1])


def _cover(book: epub.EpubBook, storybook: Any, fetch: Callable[[str], bytes]) -> bool:
    pages = getattr(storybook, "pages", None) or []
    url = getattr(storybook, "cover_image_url", None) or (pages[0].get("image_url") if pages else None)
    art = _fetch(url, fetch)
    if art is None:
        return False
    try:
        cover = add_text_to_cover_image(art, storybook.title or "Untitled", getattr(storybook, "author", None))
    except Exception as e:
        logger.warning("⚠️ epub cover compositing failed, skipping cover: %s", e)
        return False
    book.set_cover("images/cover.jpg", cover)
    return True


def generate_epub(storybook: Any, fetch_image: Callable[[str], bytes] = storage.get_bytes) -> bytes:
    title = getattr(storybook, "title", None) or "Untitled"
    book = epub.EpubBook()
    book.set_identifier(str(getattr(storybook, "id", None) or title))
    book.set_title(title)
    book.set_language("en")
    book.add_author(getattr(storybook, "author", None) or DEFAULT_AUTHOR)

    style = epub.EpubItem(uid="style", file_name="style/default.css", media_type="text/css", content=CSS.encode("utf-8"))
    book.add_item(style)

    has_cover = _cover(book, storybook, fetch_image)

    chapters = []
    for i, page in enumerate(getattr(storybook, "pages", None) or [], start=1):
        number = page.get("page_number") or i
        src = None
        url = page.get("image_url")
        data = _fetch(url, fetch_image)
        if data is not None:
            media_type, ext = _image_type(url)
            src = f"images/page_{i:03d}.{ext}"
            book.add_item(epub.EpubImage(uid=f"page-img-{i}", file_name=src, media_type=media_type, content=data))
        chapter = epub.EpubHtml(title=f"Page {number}", file_name=f"page_{i:03d}.xhtml", lang="en")
        chapter.content = PAGE_HTML.render(src=src, number=number, text=page.get("text") or "")
        chapter.add_item(style)
        book.add_item(chapter)
        chapters.append(chapter)

    book.toc = chapters
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = (["cover"] if has_cover else []) + chapters

    out = io.BytesIO()
    epub.write_epub(out, book)
    logger.info("📗 EPUB generated title=%r pages=%d cover=%s", title, len(chapters), has_cover)
    return out.getvalue()
