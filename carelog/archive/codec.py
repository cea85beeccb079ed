"""
carelog/archive/codec.py
ChatSession <-> plain dict conversion.

Keys are camelCase so archives stay compatible with the browser tool the
transcripts were first archived with. Decoding re-validates structure:
unique message ids, non-empty date/time, well-formed risk levels in any
embedded analysis.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from carelog.analysis.merge import parse_analysis
from carelog.errors import FormatError
from carelog.models.record import (
    AnalysisResult,
    CaseEvent,
    ChatMessage,
    ChatSession,
)

logger = logging.getLogger(__name__)


# ── ENCODE ───────────────────────────────────────────────────

def message_to_dict(m: ChatMessage) -> Dict[str, Any]:
    return {
        'id':          m.id,
        'date':        m.date,
        'time':        m.time,
        'datetime':    m.datetime,
        'sender':      m.sender,
        'content':     m.content,
        'isSystem':    m.is_system,
        'isImportant': m.is_important,
        'tags':        list(m.tags),
    }


def event_to_dict(e: CaseEvent) -> Dict[str, Any]:
    d: Dict[str, Any] = {}
    if e.event_id is not None:
        d['id'] = e.event_id
    d.update({
        'title':                e.title,
        'summary':              e.summary,
        'riskLevel':            e.risk_level,
        'riskAssessment':       e.risk_assessment,
        'remarks':              e.remarks,
        'dateRange':            e.date_range,
        'relatedMessageIds':    list(e.related_message_ids),
        'familyExcerpts':       list(e.family_excerpts),
        'staffExcerpts':        list(e.staff_excerpts),
        'unresolvedMessageIds': list(e.unresolved_message_ids),
    })
    return d


def analysis_to_dict(a: AnalysisResult) -> Dict[str, Any]:
    return {
        'summary':             a.summary,
        'sentiment':           a.sentiment,
        'topics':              list(a.topics),
        'relationshipDynamic': a.relationship_dynamic,
        'events':              [event_to_dict(e) for e in a.events],
        'statistics': {
            'paymentCount':  a.statistics.payment_count,
            'serviceCount':  a.statistics.service_count,
            'scheduleCount': a.statistics.schedule_count,
            'issueCount':    a.statistics.issue_count,
        },
    }


def session_to_dict(s: ChatSession) -> Dict[str, Any]:
    d = {
        'id':           s.id,
        'fileName':     s.file_name,
        'timestamp':    s.timestamp,
        'fileHash':     s.file_hash,
        'fileSize':     s.file_size,
        'messages':     [message_to_dict(m) for m in s.messages],
        'participants': list(s.participants),
    }
    if s.analysis is not None:
        d['analysis'] = analysis_to_dict(s.analysis)
    return d


def sessions_to_json(sessions: List[ChatSession]) -> str:
    """Serialize the whole collection as one blob."""
    return json.dumps([session_to_dict(s) for s in sessions], ensure_ascii=False)


# ── DECODE ───────────────────────────────────────────────────

def message_from_dict(d: Any) -> ChatMessage:
    if not isinstance(d, dict):
        raise FormatError("Message entry is not an object")

    for key in ('id', 'date', 'time', 'sender', 'content'):
        if not isinstance(d.get(key), str):
            raise FormatError(f"Message field '{key}' missing or not a string")
    if not d['id'] or not d['date'] or not d['time']:
        raise FormatError(f"Message {d['id']!r} has an empty id, date or time")

    tags = d.get('tags', [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise FormatError(f"Message {d['id']} has malformed tags")

    return ChatMessage(
        id           = d['id'],
        date         = d['date'],
        time         = d['time'],
        datetime     = str(d.get('datetime') or f"{d['date']} {d['time']}"),
        sender       = d['sender'],
        content      = d['content'],
        is_system    = bool(d.get('isSystem', False)),
        is_important = bool(d.get('isImportant', False)),
        tags         = list(tags),
    )


def session_from_dict(d: Any) -> ChatSession:
    """
    Rebuild a ChatSession from its archive dict.
    Raises FormatError on structural problems, SchemaError if an embedded
    analysis holds an invalid event.
    """
    if not isinstance(d, dict):
        raise FormatError("Archive is not a JSON object")
    if not isinstance(d.get('id'), str) or not d['id']:
        raise FormatError("Archive has no session id")
    if not isinstance(d.get('messages'), list):
        raise FormatError("Archive has no message list")

    messages = [message_from_dict(m) for m in d['messages']]

    ids = set()
    for m in messages:
        if m.id in ids:
            raise FormatError(f"Duplicate message id in archive: {m.id}")
        ids.add(m.id)

    participants = d.get('participants')
    if participants is None:
        participants = list(dict.fromkeys(m.sender for m in messages))
    if not isinstance(participants, list) or not all(isinstance(p, str) for p in participants):
        raise FormatError("Archive participants must be a list of names")

    analysis: Optional[AnalysisResult] = None
    if d.get('analysis') is not None:
        analysis, _ = parse_analysis(d['analysis'], ids, strict=True)

    try:
        timestamp = int(d.get('timestamp', 0))
        file_size = int(d.get('fileSize', 0))
    except (TypeError, ValueError) as e:
        raise FormatError(f"Archive timestamp / fileSize not numeric: {e}") from e

    return ChatSession(
        id           = d['id'],
        file_name    = str(d.get('fileName', '')),
        timestamp    = timestamp,
        file_hash    = str(d.get('fileHash', '')),
        file_size    = file_size,
        messages     = messages,
        participants = list(participants),
        analysis     = analysis,
    )


def sessions_from_json(blob: str) -> List[ChatSession]:
    """Deserialize a persisted collection. Raises FormatError if corrupt."""
    try:
        data = json.loads(blob)
    except json.JSONDecodeError as e:
        raise FormatError(f"Persisted archive collection is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise FormatError("Persisted archive collection is not a list")
    return [session_from_dict(d) for d in data]
