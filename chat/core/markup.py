from __future__ import annotations

from markdown_it import MarkdownIt


THINK_OPEN_TAG = "<think>"

# commonmark with raw HTML disabled: backend-emitted tags are escaped
_renderer = MarkdownIt("commonmark", {"html": False}).enable(["table", "strikethrough"])


def strip_reasoning_marker(content: str) -> str:
    # Only the opening tag is removed; the closing tag and reasoning text stay.
    return content.replace(THINK_OPEN_TAG, "")


def render_markdown(content: str) -> str:
    return _renderer.render(content)


def normalize(content: str) -> str:
    """Turn a raw backend reply into display HTML. Apply once per reply."""
    return render_markdown(strip_reasoning_marker(content or ""))
