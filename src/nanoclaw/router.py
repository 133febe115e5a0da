"""Message formatting for agent prompts and outbound chat text."""

from __future__ import annotations

from typing import TYPE_CHECKING

from nanoclaw.config import MAX_MESSAGE_LENGTH

if TYPE_CHECKING:
    from nanoclaw.types import NewMessage


def escape_xml(s: str) -> str:
    """Escape XML special characters."""
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def format_messages(messages: list[NewMessage]) -> str:
    """Format a batch of messages as XML for the agent prompt."""
    lines = [
        f'<message sender="{escape_xml(m.sender_name)}" time="{escape_xml(m.timestamp)}">'
        f"{escape_xml(m.content)}</message>"
        for m in messages
    ]
    return f"<messages>\n{chr(10).join(lines)}\n</messages>"


def format_outbound(assistant_name: str, text: str) -> str:
    """Prefix outbound text with the assistant name."""
    return f"{assistant_name}: {text}"


def chunk_text(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split *text* into consecutive slices of at most *max_length* characters.

    Splits on fixed boundaries, mid-word if necessary; joining the chunks
    reproduces *text* exactly.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    return [text[i : i + max_length] for i in range(0, len(text), max_length)]
