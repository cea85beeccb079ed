"""
carelog/analysis/sampling.py
Selects which messages the analysis collaborator gets to see.

Over the window: first half-window + last half-window, middle dropped.
This is an origin + recency bias, not a full-context guarantee: event
references into the dropped middle cannot be verified by the collaborator.
"""

from typing import List

from carelog.models.record import ChatMessage

DEFAULT_SAMPLE_LIMIT = 400


def sample_messages(messages: List[ChatMessage], limit: int = DEFAULT_SAMPLE_LIMIT) -> List[ChatMessage]:
    """Exactly min(limit, len(messages)) messages; an odd limit gives the extra slot to the tail."""
    if limit <= 0:
        return []
    if len(messages) <= limit:
        return list(messages)
    head = limit // 2
    tail = limit - head
    return list(messages[:head]) + list(messages[len(messages) - tail:])


def format_context_line(m: ChatMessage) -> str:
    return f"[ID: {m.id}][{m.datetime}] {m.sender}: {m.content}"


def build_context(messages: List[ChatMessage]) -> str:
    return '\n'.join(format_context_line(m) for m in messages)
