import pytest

from storybook_builder.services.book_sizes import (
    DEFAULT_TRIM, PageGeometry, Rect, TRIMS, get_trim, is_supported, orientation_of,
)
from storybook_builder.services.layout import (
    TITLE_MIN_SIZE, fit_title, glyph_box, layout_block, wrap_words,
)


def fixed_measure(text, size):
    # every glyph half an em wide
    return len(text) * size * 0.5


def test_page_geometry_6x9():
    g = PageGeometry.for_size("6x9")
    assert g.page_size == (450.0, 666.0)
    assert g.trim_box == Rect(9.0, 9.0, 432.0, 648.0)


def test_safe_rect_puts_spine_margin_on_the_inner_edge():
    g = PageGeometry.for_size("6x9")
    right = g.safe_rect("right")
    left = g.safe_rect("left")
    cover = g.safe_rect("cover")

    assert right == Rect(63.0, 45.0, 342.0, 576.0)
    assert left == Rect(45.0, 45.0, 342.0, 576.0)
    assert cover == Rect(45.0, 45.0, 360.0, 576.0)
    for r in (right, left, cover):
        assert g.trim_box.contains(r)


def test_safe_rect_unknown_side():
    with pytest.raises(ValueError):
        PageGeometry.for_size().safe_rect("spine")


def test_unknown_trim_falls_back_to_default():
    assert get_trim("12x12") == TRIMS[DEFAULT_TRIM]
    assert get_trim(None) == TRIMS[DEFAULT_TRIM]
    assert not is_supported("12x12")
    assert is_supported("8.5X11")


def test_orientation_of():
    assert orientation_of("6x9") == "portrait"
    assert orientation_of("8.5x8.5") == "square"


def test_wrap_words_respects_width():
    text = "The little fox walked all the way to the old lighthouse by the sea"
    lines = wrap_words(text, 100, lambda s: fixed_measure(s, 10))
    assert len(lines) > 1
    assert all(fixed_measure(line, 10) <= 100 for line in lines)
    assert " ".join(lines) == text


def test_wrap_words_keeps_paragraphs():
    lines = wrap_words("First line.\n\nSecond paragraph.\n", 1000, lambda s: fixed_measure(s, 10))
    assert lines == ["First line.", "", "Second paragraph."]


def test_wrap_words_hyphenates_long_words():
    lines = wrap_words("a Supercalifragilisticexpialidocious b", 60, lambda s: fixed_measure(s, 10))
    assert all(fixed_measure(line, 10) <= 60 for line in lines)
    assert any(line.endswith("-") for line in lines)
    assert lines[0] == "a"
    assert lines[1].startswith("Supercali")


def test_fit_title_short_title_uses_line_count_size():
    size, lines = fit_title("Hi", 300, 200, fixed_measure)
    assert size == 48.0
    assert lines == ["Hi"]


def test_fit_title_shrinks_for_width():
    size, lines = fit_title("Supercalifragilistic", 200, 500, fixed_measure)
    assert size < 48.0
    assert all(fixed_measure(line, size) <= 200 for line in lines)


def test_fit_title_floors_and_truncates_lines():
    title = " ".join(["adventure"] * 40)
    size, lines = fit_title(title, 300, 100, fixed_measure)
    assert size == TITLE_MIN_SIZE
    assert len(lines) <= int(100 // (TITLE_MIN_SIZE * 1.2))


def test_layout_block_centers_and_stays_inside():
    rect = Rect(50, 50, 200, 300)
    block = layout_block(["one", "two", "three"], rect, 12, 18, fixed_measure)
    assert not block.truncated
    assert len(block.lines) == 3
    for line in block.lines:
        assert rect.contains(glyph_box(line))
        assert abs((line.x - rect.x) - (rect.right - (line.x + line.width))) < 1e-6
    # vertically centred: equal gap above and below the block
    top_gap = rect.top - block.lines[0].slot.top
    bottom_gap = block.lines[-1].slot.y - rect.y
    assert abs(top_gap - bottom_gap) < 1e-6


def test_layout_block_drops_overflow():
    rect = Rect(0, 0, 200, 50)
    block = layout_block([f"line {i}" for i in range(10)], rect, 12, 18, fixed_measure)
    assert len(block.lines) == 2
    assert block.dropped == 8
    assert block.truncated
    assert all(rect.contains(glyph_box(l)) for l in block.lines)


def test_layout_block_left_align():
    rect = Rect(10, 0, 200, 100)
    block = layout_block(["abc"], rect, 10, 15, fixed_measure, align="left", valign="top")
    assert block.lines[0].x == 10
    assert block.lines[0].slot.top == rect.top


def test_layout_block_centres_real_font_extents_in_slot():
    rect = Rect(0, 0, 300, 120)
    block = layout_block(["Tall", "Title"], rect, 40, 48, fixed_measure, extents=(0.93, 0.22))
    for line in block.lines:
        box = glyph_box(line)
        assert box.height == pytest.approx(1.15 * 40)
        assert line.slot.contains(box)
        assert abs((box.y - line.slot.y) - (line.slot.top - box.top)) < 1e-6
