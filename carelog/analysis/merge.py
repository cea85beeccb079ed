"""
carelog/analysis/merge.py
Validates an externally produced analysis payload and attaches it to a session.

Payload contract (camelCase JSON):
  required: summary, sentiment, events, statistics
  optional: topics, relationshipDynamic
  each event requires: title, summary, riskLevel, riskAssessment, remarks,
                       dateRange, relatedMessageIds, familyExcerpts, staffExcerpts

Top-level violations abort the merge (SchemaError, nothing mutated).
An invalid event is dropped and reported; the rest are accepted, unless
strict=True, in which case any invalid event aborts the merge.
relatedMessageIds that do not resolve are kept and listed per event in
unresolved_message_ids, since the collaborator only saw a sample.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Collection, Dict, List, Optional, Tuple, Union

from carelog.errors import SchemaError
from carelog.models.record import (
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
    VALID_RISK_LEVELS,
    AnalysisResult,
    AnalysisStatistics,
    CaseEvent,
    ChatSession,
)

if TYPE_CHECKING:
    from carelog.archive.store import ArchiveStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('summary', 'sentiment', 'events', 'statistics')

REQUIRED_EVENT_FIELDS = (
    'title', 'summary', 'riskLevel', 'riskAssessment', 'remarks',
    'dateRange', 'relatedMessageIds', 'familyExcerpts', 'staffExcerpts',
)

_EVENT_TEXT_FIELDS = ('title', 'summary', 'riskAssessment', 'remarks', 'dateRange')
_EVENT_LIST_FIELDS = ('relatedMessageIds', 'familyExcerpts', 'staffExcerpts')

# Labels used by the Chinese-language prompt
RISK_ALIASES = {
    '低': RISK_LOW,
    '中': RISK_MEDIUM,
    '高': RISK_HIGH,
}

STATISTICS_FIELDS = {
    'paymentCount':  'payment_count',
    'serviceCount':  'service_count',
    'scheduleCount': 'schedule_count',
    'issueCount':    'issue_count',
}


@dataclass
class RejectedEvent:
    index:  int
    title:  str
    reason: str


@dataclass
class MergeReport:
    session_id:            str
    accepted_events:       int
    rejected_events:       List[RejectedEvent] = field(default_factory=list)
    unresolved_references: int = 0


def normalize_risk_level(raw: Any) -> Optional[str]:
    """Map a raw risk label to low/medium/high. None if unrecognized."""
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if s in RISK_ALIASES:
        return RISK_ALIASES[s]
    s = s.lower()
    return s if s in VALID_RISK_LEVELS else None


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence (optionally tagged json)."""
    clean = text.strip()
    if clean.startswith('```'):
        parts = clean.split('```')
        if len(parts) >= 2:
            clean = parts[1]
            if clean.startswith('json'):
                clean = clean[4:]
    return clean.strip()


def load_payload(payload: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Accept a dict, or JSON text (markdown fences tolerated).
    Raises SchemaError if it is not a JSON object.
    """
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8', errors='replace')
    if not isinstance(payload, str):
        raise SchemaError(f"Analysis payload must be a JSON object, got {type(payload).__name__}")

    try:
        data = json.loads(strip_code_fence(payload))
    except json.JSONDecodeError as e:
        raise SchemaError(f"Analysis payload is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SchemaError("Analysis payload must be a JSON object")
    return data


def parse_event(data: Any, message_ids: Collection[str]) -> CaseEvent:
    """Validate one event. Raises SchemaError describing the first violation."""
    if not isinstance(data, dict):
        raise SchemaError("event is not an object")

    missing = [k for k in REQUIRED_EVENT_FIELDS if k not in data]
    if missing:
        raise SchemaError(f"missing field(s): {', '.join(missing)}")

    for key in _EVENT_TEXT_FIELDS:
        if not isinstance(data[key], str):
            raise SchemaError(f"'{key}' must be a string")
    for key in _EVENT_LIST_FIELDS:
        value = data[key]
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise SchemaError(f"'{key}' must be a list of strings")

    risk = normalize_risk_level(data['riskLevel'])
    if risk is None:
        raise SchemaError(f"unrecognized riskLevel {data['riskLevel']!r}")

    event_id = data.get('id')
    if event_id is not None and not isinstance(event_id, str):
        event_id = str(event_id)

    related = list(data['relatedMessageIds'])
    return CaseEvent(
        title                  = data['title'],
        summary                = data['summary'],
        risk_level             = risk,
        risk_assessment        = data['riskAssessment'],
        remarks                = data['remarks'],
        date_range             = data['dateRange'],
        related_message_ids    = related,
        family_excerpts        = list(data['familyExcerpts']),
        staff_excerpts         = list(data['staffExcerpts']),
        unresolved_message_ids = [mid for mid in related if mid not in message_ids],
        event_id               = event_id,
    )


def _parse_statistics(data: Any) -> AnalysisStatistics:
    if not isinstance(data, dict):
        raise SchemaError("'statistics' must be an object")
    values = {}
    for key, attr in STATISTICS_FIELDS.items():
        raw = data.get(key, 0)
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise SchemaError(f"statistics.{key} must be a number")
        values[attr] = int(raw)
    return AnalysisStatistics(**values)


def parse_analysis(
    payload:     Union[str, bytes, Dict[str, Any]],
    message_ids: Collection[str],
    strict:      bool = False,
) -> Tuple[AnalysisResult, List[RejectedEvent]]:
    """
    Validate a full payload against a session's message ids.
    Returns the AnalysisResult and the events that were dropped.
    """
    data = load_payload(payload)

    missing = [k for k in REQUIRED_FIELDS if k not in data]
    if missing:
        raise SchemaError(f"Analysis payload missing required field(s): {', '.join(missing)}")
    for key in ('summary', 'sentiment'):
        if not isinstance(data[key], str):
            raise SchemaError(f"'{key}' must be a string")
    if not isinstance(data['events'], list):
        raise SchemaError("'events' must be a list")

    topics = data.get('topics') or []
    if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
        raise SchemaError("'topics' must be a list of strings")
    dynamic = data.get('relationshipDynamic') or ''
    if not isinstance(dynamic, str):
        raise SchemaError("'relationshipDynamic' must be a string")

    statistics = _parse_statistics(data['statistics'])

    events:   List[CaseEvent]     = []
    rejected: List[RejectedEvent] = []
    for i, raw_event in enumerate(data['events']):
        try:
            events.append(parse_event(raw_event, message_ids))
        except SchemaError as e:
            if strict:
                raise SchemaError(f"Event {i}: {e}") from e
            title = raw_event.get('title', '') if isinstance(raw_event, dict) else ''
            rejected.append(RejectedEvent(index=i, title=str(title), reason=str(e)))

    analysis = AnalysisResult(
        summary              = data['summary'],
        sentiment            = data['sentiment'],
        topics               = list(topics),
        relationship_dynamic = dynamic,
        events               = events,
        statistics           = statistics,
    )
    return analysis, rejected


def merge_analysis(
    store:      "ArchiveStore",
    session_id: str,
    payload:    Union[str, bytes, Dict[str, Any]],
    strict:     bool = False,
) -> MergeReport:
    """
    Validate payload and replace the session's analysis wholesale.
    Persists through the archive store. On any error nothing is mutated.
    """
    rejected: List[RejectedEvent] = []

    def _validate(session: ChatSession) -> AnalysisResult:
        analysis, dropped = parse_analysis(
            payload, {m.id for m in session.messages}, strict=strict,
        )
        rejected.extend(dropped)
        return analysis

    # Validation sees the same session the analysis is attached to.
    analysis = store.update_analysis(session_id, _validate).analysis

    for r in rejected:
        logger.warning(f"Session {session_id}: dropped event {r.index}: {r.reason}")

    unresolved = sum(len(e.unresolved_message_ids) for e in analysis.events)
    if unresolved:
        logger.info(
            f"Session {session_id}: {unresolved} related message reference(s) "
            f"outside the transcript kept as unverified"
        )
    logger.info(
        f"Analysis merged into {session_id}: "
        f"{len(analysis.events)} events accepted, {len(rejected)} rejected"
    )
    return MergeReport(
        session_id            = session_id,
        accepted_events       = len(analysis.events),
        rejected_events       = rejected,
        unresolved_references = unresolved,
    )
