"""
Text fitting for the print layouts.

Everything here is pure: widths come from a ``measure(text, size)`` callable
so the same code drives reportlab (``pdfmetrics.stringWidth``) and the tests.
"""
import math
from dataclasses import dataclass, field
from typing import Callable, List, Tuple

from .book_sizes import Rect

Measure = Callable[[str, float], float]

TITLE_MAX_SIZE = 54.0
TITLE_MIN_SIZE = 18.0
TITLE_LEADING  = 1.2
TITLE_SIZE_BY_LINES = {1: 48.0, 2: 40.0, 3: 36.0}
TITLE_SIZE_MANY_LINES = 32.0

# default glyph extents as a fraction of the font size; real fonts pass their own
ASCENT  = 0.80
DESCENT = 0.22


@dataclass
class PlacedLine:
    text: str
    x: float
    baseline: float
    width: float
    size: float
    slot: Rect
    ascent: float = ASCENT
    descent: float = DESCENT


@dataclass
class TextBlock:
    lines: List[PlacedLine] = field(default_factory=list)
    dropped: int = 0

    @property
    def truncated(self) -> bool:
        return self.dropped > 0


def _break_word(word: str, max_width: float, width_of: Callable[[str], float]) -> List[str]:
    pieces: List[str] = []
    while word and width_of(word) > max_width:
        cut = 1
        while cut < len(word) - 1 and width_of(word[:cut + 1] + "-") <= max_width:
            cut += 1
        pieces.append(word[:cut] + "-")
        word = word[cut:]
    if word:
        pieces.append(word)
    return pieces


def wrap_words(text: str, max_width: float, width_of: Callable[[str], float]) -> List[str]:
    """Greedy word wrap; newlines start new paragraphs, over-long words are hyphenated."""
    lines: List[str] = []
    for paragraph in (text or "").replace("\r\n", "\n").split("\n"):
        words = paragraph.split()
        if not words:
            if lines:
                lines.append("")
            continue
        current = ""
        for word in words:
            *broken, word = _break_word(word, max_width, width_of)
            if broken:
                if current:
                    lines.append(current)
                lines.extend(broken)
                current = ""
            candidate = f"{current} {word}" if current else word
            if current and width_of(candidate) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        if current:
            lines.append(current)
    while lines and not lines[-1]:
        lines.pop()
    return lines


def _size_by_lines(n: int) -> float:
    return TITLE_SIZE_BY_LINES.get(n, TITLE_SIZE_MANY_LINES)


def fit_title(title: str, box_w: float, box_h: float, measure: Measure) -> Tuple[float, List[str]]:
    """
    Pick a cover title size: the smallest of three candidates (line count,
    longest line width, available height), capped at TITLE_MAX_SIZE and
    floored at TITLE_MIN_SIZE. Re-wraps at each smaller size until stable.
    """
    size = TITLE_MAX_SIZE
    lines = wrap_words(title, box_w, lambda s: measure(s, size))
    while True:
        n = max(len(lines), 1)
        longest = max((measure(line, 1.0) for line in lines), default=0.0)
        by_width = box_w / longest if longest else TITLE_MAX_SIZE
        by_height = box_h / (n * TITLE_LEADING)
        candidate = min(_size_by_lines(n), by_width, by_height, TITLE_MAX_SIZE)
        candidate = max(math.floor(candidate * 2) / 2, TITLE_MIN_SIZE)
        if candidate >= size:
            break
        size = candidate
        lines = wrap_words(title, box_w, lambda s: measure(s, size))
        if size <= TITLE_MIN_SIZE:
            break
    max_lines = int(box_h // (size * TITLE_LEADING))
    return size, lines[:max(max_lines, 0)]


def layout_block(
    lines: List[str],
    rect: Rect,
    size: float,
    leading: float,
    measure: Measure,
    align: str = "center",
    valign: str = "middle",
    extents: Tuple[float, float] = (ASCENT, DESCENT),
) -> TextBlock:
    """
    Position ``lines`` inside ``rect``. Each line gets a slot ``leading`` tall;
    lines that do not fit vertically are dropped, never drawn past the rect.
    ``extents`` is the font's (ascent, descent) per point of size.
    """
    max_lines = int(math.floor(rect.height / leading + 1e-6))
    kept = [ln for ln in lines if measure(ln, size) <= rect.width + 0.01]
    dropped = len(lines) - len(kept)
    if len(kept) > max_lines:
        dropped += len(kept) - max_lines
        kept = kept[:max_lines]

    ascent, descent = extents
    block_h = len(kept) * leading
    if valign == "middle" and block_h < rect.height:
        top = rect.top - (rect.height - block_h) / 2
    elif valign == "bottom":
        top = rect.y + block_h
    else:
        top = rect.top

    placed: List[PlacedLine] = []
    for i, text in enumerate(kept):
        width = measure(text, size)
        slot_top = top - i * leading
        slot = Rect(rect.x, slot_top - leading, rect.width, leading)
        if align == "center":
            x = rect.x + (rect.width - width) / 2
        elif align == "right":
            x = rect.right - width
        else:
            x = rect.x
        # center the glyph extent [baseline - descent, baseline + ascent] in the slot
        baseline = slot_top - leading / 2 - (ascent - descent) * size / 2
        placed.append(PlacedLine(text=text, x=x, baseline=baseline, width=width, size=size, slot=slot,
                                 ascent=ascent, descent=descent))
    return TextBlock(lines=placed, dropped=dropped)


def glyph_box(line: PlacedLine) -> Rect:
    return Rect(line.x, line.baseline - line.descent * line.size, line.width, (line.ascent + line.descent) * line.size)
