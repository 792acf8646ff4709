"""Tests for HTML to text conversion."""

from __future__ import annotations

from helpdesk_bridge.ingestion.html import html_to_text


def test_html_to_text_keeps_paragraphs_and_lists() -> None:
    markup = (
        "<html><head><style>p { color: red; }</style></head><body>"
        "<p>Hello&nbsp;team,</p><p>Steps:</p>"
        "<ul><li>Restart</li><li>Retry &amp; report</li></ul>"
        "<script>alert('x')</script></body></html>"
    )

    text = html_to_text(markup)

    assert text == "Hello team,\nSteps:\n- Restart\n- Retry & report"


def test_html_to_text_collapses_blank_lines() -> None:
    markup = "First<br><br><br><br>Second</div>Third"

    assert html_to_text(markup) == "First\n\nSecond\nThird"


def test_html_to_text_strips_unknown_tags() -> None:
    assert html_to_text("<span class='x'><b>Bold</b> text</span>") == "Bold text"
