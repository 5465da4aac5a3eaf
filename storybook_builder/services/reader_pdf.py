"""
Digital reading edition: one A4 page per story page, picture above text.

This is the download that comes with every purchase, so it favours screen
reading over print geometry (see print_pdf for the press-ready file).
"""
import base64
import logging
import mimetypes
from typing import Any, Callable, Dict, List, Optional

from jinja2 import Template

from . import storage

logger = logging.getLogger(__name__)

TEMPLATE_HTML = Template(r"""
<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>
  @page { size: A4; margin: 0; }
  * { box-sizing: border-box; }
  body { margin:0; font-family: Georgia, 'Literata', serif; color:#1b1510; }

  .page{
    width:210mm; height:297mm; position:relative;
    display:flex; flex-direction:column; align-items:stretch;
    background:#fbf6ef; page-break-after: always;
  }
  .page:last-child{ page-break-after: auto; }

  .cover{ justify-content:center; text-align:center; padding: 18mm; }
  .cover h1{ font-size:30pt; margin:0 0 6mm 0; line-height:1.15; }
  .cover .author{ font-size:14pt; color:#4b5563; margin-top:6mm; }
  .cover img{ max-width:100%; max-height:190mm; border-radius:4mm; box-shadow:0 1mm 3mm rgba(0,0,0,.12); }

  .art{ height:60%; padding:14mm 14mm 0 14mm; text-align:center; }
  .art img{ max-width:100%; max-height:100%; object-fit:contain; border-radius:3mm; }
  .textbox{ height:40%; padding:10mm 20mm; }
  .box{
    background: rgba(255,255,255,.92); padding:8mm; border-radius:3mm;
    font-size:15pt; line-height:1.6; white-space: pre-line; text-align:center;
  }
  .folio{ position:absolute; bottom:8mm; width:100%; text-align:center; font-size:9pt; color:#888; }
</style>
</head>
<body>
  <section class="page cover">
    {% if cover_src %}<img src="{{ cover_src }}">{% endif %}
    <h1>{{ title }}</h1>
    <div class="author">By {{ author }}</div>
  </section>
  {% for p in pages %}
    <section class="page">
      <div class="art">{% if p.src %}<img src="{{ p.src }}">{% endif %}</div>
      <div class="textbox"><div class="box">{{ p.text }}</div></div>
      <div class="folio">{{ loop.index }}</div>
    </section>
  {% endfor %}
</body>
</html>
""", autoescape=True)


def _to_data_uri(url: Optional[str], fetch: Callable[[str], bytes]) -> str:
    """Inline images so WeasyPrint never needs network or filesystem access."""
    if not url:
        return ""
    try:
        mt, _ = mimetypes.guess_type(url)
        b = fetch(url)
        return f"data:{mt or 'image/png'};base64,{base64.b64encode(b).decode('ascii')}"
    except Exception as e:
        logger.warning("⚠️ embed failed for %s: %s", url, e)
        return ""


def render_reader_html(storybook: Any, fetch_image: Callable[[str], bytes] = storage.get_bytes) -> str:
    pages: List[Dict[str, Any]] = []
    for p in getattr(storybook, "pages", None) or []:
        pages.append({"text": p.get("text") or "", "src": _to_data_uri(p.get("image_url"), fetch_image)})
    return TEMPLATE_HTML.render(
        title=getattr(storybook, "title", None) or "Untitled",
        author=getattr(storybook, "author", None) or "AI Storyteller",
        cover_src=_to_data_uri(getattr(storybook, "cover_image_url", None), fetch_image),
        pages=pages,
    )


def generate_reader_pdf(storybook: Any, fetch_image: Callable[[str], bytes] = storage.get_bytes) -> bytes:
    # WeasyPrint pulls in pango/cairo; import on use so the API boots without them
    from weasyprint import HTML

    html = render_reader_html(storybook, fetch_image)
    pdf = HTML(string=html).write_pdf()
    logger.info("📘 Reader PDF generated title=%r pages=%d", getattr(storybook, "title", ""), len(storybook.pages or []))
    return pdf
