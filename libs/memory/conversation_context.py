"""
Conversation history windowing for prompts.

Recent turns are rendered as role-prefixed lines and bounded by turn count
and per-message length. When a rolling summary exists it stands in for the
older turns, so fewer recent turns are kept.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Tuple

DEFAULT_MAX_TURNS = 5
SUMMARY_MAX_TURNS = 2
MAX_MESSAGE_CHARS = 500


def _role(message: Any) -> str:
    role = getattr(message, "role", None)
    if role is None and isinstance(message, dict):
        role = message.get("role")
    return role or "user"


def _content(message: Any) -> str:
    content = getattr(message, "content", None)
    if content is None and isinstance(message, dict):
        content = message.get("content")
    return content if isinstance(content, str) else str(content or "")


def truncate_message(content: str, max_chars: int = MAX_MESSAGE_CHARS) -> str:
    """Cap a message at ``max_chars`` characters with an ellipsis marker."""
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "..."


def format_conversation_history(
    messages: Iterable[Any],
    max_turns: int = DEFAULT_MAX_TURNS,
    max_chars: int = MAX_MESSAGE_CHARS,
) -> str:
    """Render the last ``max_turns`` turns (two messages each) as a transcript."""
    history = list(messages)
    if max_turns <= 0 or not history:
        return ""

    recent = history[-max_turns * 2:]
    lines = []
    for message in recent:
        prefix = "User" if _role(message) == "user" else "Assistant"
        lines.append(f"{prefix}: {truncate_message(_content(message), max_chars)}")
    return "\n".join(lines)


def build_contextual_query(
    messages: List[Any],
    max_turns: int = DEFAULT_MAX_TURNS,
    summary: Optional[str] = None,
    summary_max_turns: int = SUMMARY_MAX_TURNS,
    max_chars: int = MAX_MESSAGE_CHARS,
) -> Tuple[str, str]:
    """Split messages into the current question and a history block.

    The latest message is the current question and never appears in the
    history. A persisted summary is placed ahead of the recent turns.

    Returns:
        (current_message, conversation_context)
    """
    if not messages:
        return "", ""

    current_message = _content(messages[-1])
    prior = messages[:-1]

    turns = min(max_turns, summary_max_turns) if summary else max_turns
    transcript = format_conversation_history(prior, max_turns=turns, max_chars=max_chars)

    blocks = []
    if summary:
        blocks.append(f"[Conversation Summary]\n{summary}")
    if transcript:
        blocks.append(f"[Recent Messages]\n{transcript}" if summary else transcript)

    return current_message, "\n\n".join(blocks)
