"""
carelog/query/filters.py
Read-only views over a session's messages. Stateless; recomputed per call.
"""

from collections import Counter
from typing import Dict, List, Optional

from carelog.models.record import ALL_TAGS, CaseEvent, ChatMessage, ChatSession


def group_by_date(messages: List[ChatMessage]) -> Dict[str, List[ChatMessage]]:
    """Messages partitioned by date; keys in first-seen order, order kept within a day."""
    groups: Dict[str, List[ChatMessage]] = {}
    for m in messages:
        groups.setdefault(m.date, []).append(m)
    return groups


def list_dates(messages: List[ChatMessage]) -> List[str]:
    return list(group_by_date(messages))


def search(messages: List[ChatMessage], term: Optional[str]) -> List[ChatMessage]:
    """Case-insensitive substring match on content or sender. Empty term → all."""
    if not term:
        return list(messages)
    needle = term.lower()
    return [
        m for m in messages
        if needle in m.content.lower() or needle in m.sender.lower()
    ]


def filter_by_tag(messages: List[ChatMessage], tag: Optional[str]) -> List[ChatMessage]:
    if not tag:
        return list(messages)
    return [m for m in messages if tag in m.tags]


def filter_messages(
    messages: List[ChatMessage],
    term:     Optional[str] = None,
    tag:      Optional[str] = None,
) -> List[ChatMessage]:
    """Search and tag filter combined with AND semantics."""
    return filter_by_tag(search(messages, term), tag)


def tag_counts(messages: List[ChatMessage]) -> Dict[str, int]:
    """Locally computed tag statistics (every known tag present, zero if unused)."""
    counts = Counter(t for m in messages for t in m.tags)
    return {tag: counts.get(tag, 0) for tag in ALL_TAGS}


def important_messages(messages: List[ChatMessage]) -> List[ChatMessage]:
    return [m for m in messages if m.is_important]


def message_index(session: ChatSession) -> Dict[str, ChatMessage]:
    return {m.id: m for m in session.messages}


def resolve_event_messages(session: ChatSession, event: CaseEvent) -> List[ChatMessage]:
    """Look up an event's referenced messages; unresolved ids are skipped."""
    index = message_index(session)
    return [index[mid] for mid in event.related_message_ids if mid in index]
