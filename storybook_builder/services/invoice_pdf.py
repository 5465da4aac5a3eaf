import io
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from ..config import SERVICE_NAME

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = letter  # 612 x 792
MARGIN = 50
NEW_PAGE_BELOW = 150
TITLE_MAX_CHARS = 50

PRIMARY   = colors.Color(0.4, 0.3, 0.8)
DARK_GRAY = colors.Color(0.2, 0.2, 0.2)
LIGHT_GRAY = colors.Color(0.5, 0.5, 0.5)

REGULAR = "Helvetica"
BOLD = "Helvetica-Bold"


@dataclass
class InvoiceItem:
    title: str
    size: str       # "digital" or a print format such as "print" / "hardcover-6x9"
    price: int      # cents


@dataclass
class InvoiceData:
    order_id: str
    order_date: str
    items: List[InvoiceItem] = field(default_factory=list)
    total_amount: Optional[int] = None

    @property
    def total(self) -> int:
        if self.total_amount is not None:
            return self.total_amount
        return sum(i.price for i in self.items)


def money(cents: int) -> str:
    return f"${cents / 100:.2f}"


def short_order_number(order_id: str) -> str:
    return order_id[-8:].upper()


def clip_title(title: str) -> str:
    return title if len(title) <= TITLE_MAX_CHARS else title[:TITLE_MAX_CHARS - 3] + "..."


def format_label(size: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in (size or "").replace("-", " ").split(" "))


class _InvoiceWriter:
    def __init__(self, buf: io.BytesIO):
        self.c = canvas.Canvas(buf, pagesize=letter)
        self.right = PAGE_W - MARGIN
        self.pages = 1

    def text(self, x: float, y: float, s: str, size: float, font: str = REGULAR, color=DARK_GRAY) -> None:
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(x, y, s)

    def text_right(self, y: float, s: str, size: float, font: str = REGULAR, color=DARK_GRAY) -> None:
        self.text(self.right - stringWidth(s, font, size) - 30, y, s, size, font, color)

    def rule(self, x0: float, x1: float, y: float, width: float = 1, color=LIGHT_GRAY) -> None:
        self.c.setStrokeColor(color)
        self.c.setLineWidth(width)
        self.c.line(x0, y, x1, y)

    def header(self, inv: InvoiceData) -> float:
        y = PAGE_H - 60
        self.text(MARGIN, y, SERVICE_NAME, 24, BOLD, PRIMARY)
        self.text(MARGIN, y - 20, "Order Invoice", 16, BOLD)
        info_x = self.right - 200
        today = date.today()
        self.text(info_x, PAGE_H - 60, f"Invoice Date: {today:%B} {today.day}, {today.year}", 10)
        self.text(info_x, PAGE_H - 75, f"Order #: {short_order_number(inv.order_id)}", 10)
        self.text(info_x, PAGE_H - 90, f"Order Date: {inv.order_date}", 10)
        y -= 100
        self.rule(MARGIN, PAGE_W - MARGIN, y)
        return y - 40

    def table_headers(self, y: float) -> float:
        self.text(MARGIN, y, "Description", 11, BOLD)
        self.text(350, y, "Format", 11, BOLD)
        self.text(self.right - 80, y, "Amount", 11, BOLD)
        self.rule(MARGIN, PAGE_W - MARGIN, y - 5)
        return y - 35

    def new_page(self) -> float:
        self.c.showPage()
        self.pages += 1
        return self.table_headers(PAGE_H - 60)

    def item(self, y: float, it: InvoiceItem) -> None:
        self.text(MARGIN, y, clip_title(it.title or "Untitled"), 10)
        self.text(350, y, format_label(it.size), 10)
        self.text_right(y, money(it.price), 10)

    def totals(self, y: float, total: int) -> None:
        self.rule(PAGE_W - 200, PAGE_W - MARGIN, y)
        y -= 25
        self.text(self.right - 180, y, "Subtotal:", 11, BOLD)
        self.text_right(y, money(total), 11, BOLD)
        y -= 15
        self.text(self.right - 280, y, "(Shipping & Tax included in item prices)", 9, color=LIGHT_GRAY)
        y -= 25
        self.rule(PAGE_W - 200, PAGE_W - MARGIN, y, width=2, color=DARK_GRAY)
        y -= 30
        self.text(self.right - 180, y, "Order Total:", 14, BOLD, PRIMARY)
        self.text_right(y, money(total), 14, BOLD, PRIMARY)

    def footer(self) -> None:
        self.text(MARGIN, 70, "Thank you for your order!", 10, color=LIGHT_GRAY)
        self.text(MARGIN, 50, f"{SERVICE_NAME} - Personalized Children's Storybooks", 8, color=LIGHT_GRAY)


def generate_invoice_pdf(inv: InvoiceData) -> bytes:
    buf = io.BytesIO()
    w = _InvoiceWriter(buf)
    w.c.setTitle(f"Invoice {short_order_number(inv.order_id)}")
    w.c.setAuthor(SERVICE_NAME)

    y = w.table_headers(w.header(inv))
    for it in inv.items:
        if y < NEW_PAGE_BELOW:
            y = w.new_page()
        w.item(y, it)
        y -= 25

    y -= 20
    # the totals block needs roughly 100pt above the footer
    if y < NEW_PAGE_BELOW:
        y = w.new_page()
    w.totals(y, inv.total)
    w.footer()
    w.c.save()
    logger.info("🧾 Invoice generated order=%s items=%d pages=%d", short_order_number(inv.order_id), len(inv.items), w.pages)
    return buf.getvalue()
