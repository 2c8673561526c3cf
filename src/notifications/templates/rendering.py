"""Plain-text to HTML conversion shared by the templates."""

from html import escape


def text_to_html(text: str) -> str:
    """Wrap each blank-line separated block in a paragraph, escaping content."""
    paragraphs = [block.strip() for block in text.split("\n\n") if block.strip()]
    return "\n".join(f"<p>{escape(block).replace(chr(10), '<br>')}</p>" for block in paragraphs)
