from __future__ import annotations

from overlay import DISPLAY_CHAR_LIMIT, MARKER_GLYPH, render_caption
from transcript import MARKER_TOKEN


def test_marker_token_is_rendered_as_glyph() -> None:
    assert render_caption(f"first {MARKER_TOKEN} second") == f"first {MARKER_GLYPH} second"


def test_short_text_is_unchanged() -> None:
    assert render_caption("Listening...") == "Listening..."


def test_long_text_keeps_the_tail() -> None:
    text = "x" * 10 + "y" * DISPLAY_CHAR_LIMIT

    rendered = render_caption(text)

    assert rendered == "y" * DISPLAY_CHAR_LIMIT


def test_limit_applies_after_marker_substitution() -> None:
    rendered = render_caption(f"ab {MARKER_TOKEN} cd", limit=6)

    assert rendered == f"b {MARKER_GLYPH} cd"
