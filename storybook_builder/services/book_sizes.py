"""
Physical trim sizes and the page geometry derived from them.

All rectangles are ``(x, y, width, height)`` in PDF points (72 per inch),
origin at the bottom-left corner of the full page including bleed.
"""
from dataclasses import dataclass
from typing import Dict, NamedTuple, Tuple

POINTS_PER_INCH = 72.0

BLEED_IN        = 0.125
SAFE_MARGIN_IN  = 0.5
SPINE_MARGIN_IN = 0.75

DEFAULT_TRIM = "6x9"

# width x height in inches
TRIMS: Dict[str, Tuple[float, float]] = {
    "6x9":     (6.0, 9.0),
    "7x10":    (7.0, 10.0),
    "8x10":    (8.0, 10.0),
    "8.5x8.5": (8.5, 8.5),
    "8.5x11":  (8.5, 11.0),
}


class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def top(self) -> float:
        return self.y + self.height

    def contains(self, other: "Rect", tol: float = 0.01) -> bool:
        return (
            other.x >= self.x - tol and other.y >= self.y - tol
            and other.right <= self.right + tol and other.top <= self.top + tol
        )


def inches(v: float) -> float:
    return v * POINTS_PER_INCH


def get_trim(size_id: str) -> Tuple[float, float]:
    return TRIMS.get((size_id or "").lower(), TRIMS[DEFAULT_TRIM])


def is_supported(size_id: str) -> bool:
    return (size_id or "").lower() in TRIMS


def orientation_of(size_id: str) -> str:
    w, h = get_trim(size_id)
    if w == h:
        return "square"
    return "landscape" if w > h else "portrait"


@dataclass(frozen=True)
class PageGeometry:
    trim_w_in: float
    trim_h_in: float
    bleed_in: float = BLEED_IN
    safe_in: float = SAFE_MARGIN_IN
    spine_in: float = SPINE_MARGIN_IN

    @classmethod
    def for_size(cls, size_id: str = DEFAULT_TRIM) -> "PageGeometry":
        w, h = get_trim(size_id)
        return cls(w, h)

    @property
    def page_size(self) -> Tuple[float, float]:
        return (
            inches(self.trim_w_in + 2 * self.bleed_in),
            inches(self.trim_h_in + 2 * self.bleed_in),
        )

    @property
    def bleed(self) -> float:
        return inches(self.bleed_in)

    @property
    def trim_box(self) -> Rect:
        return Rect(self.bleed, self.bleed, inches(self.trim_w_in), inches(self.trim_h_in))

    def safe_rect(self, side: str = "right") -> Rect:
        """Area inside the trim where text is never cut off.

        The spine sits on the left edge of a right-hand (recto) page and on the
        right edge of a left-hand (verso) page. The cover uses the plain safe margin.
        """
        trim = self.trim_box
        safe, spine = inches(self.safe_in), inches(self.spine_in)
        if side == "right":
            left, right = spine, safe
        elif side == "left":
            left, right = safe, spine
        elif side == "cover":
            left, right = safe, safe
        else:
            raise ValueError(f"unknown page side: {side}")
        return Rect(
            trim.x + left,
            trim.y + safe,
            trim.width - left - right,
            trim.height - 2 * safe,
        )
