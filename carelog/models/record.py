"""
carelog/models/record.py
Shared dataclass schema. Parser, classifier, archive store and analysis
merge all use these types. Data only.
"""

from dataclasses import dataclass, field
from typing import List, Optional

# ── TAGS ─────────────────────────────────────────────────────
TAG_PAYMENT  = 'payment'
TAG_SERVICE  = 'service'
TAG_SCHEDULE = 'schedule'
TAG_ISSUE    = 'issue'

ALL_TAGS = (TAG_PAYMENT, TAG_SERVICE, TAG_SCHEDULE, TAG_ISSUE)

# ── RISK LEVELS (ordinal, lowest first) ──────────────────────
RISK_LOW    = 'low'
RISK_MEDIUM = 'medium'
RISK_HIGH   = 'high'

VALID_RISK_LEVELS = (RISK_LOW, RISK_MEDIUM, RISK_HIGH)


@dataclass
class ChatMessage:
    """One parsed transcript line (utterance or system notice)."""
    id:           str
    date:         str           # YYYY/MM/DD
    time:         str           # e.g. 上午09:15
    datetime:     str           # "<date> <time>"
    sender:       str
    content:      str
    is_system:    bool      = False
    is_important: bool      = False
    tags:         List[str] = field(default_factory=list)


@dataclass
class CaseEvent:
    """One analyst-identified incident. Message ids are lookup keys only."""
    title:                  str
    summary:                str
    risk_level:             str         # low / medium / high
    risk_assessment:        str
    remarks:                str
    date_range:             str
    related_message_ids:    List[str] = field(default_factory=list)
    family_excerpts:        List[str] = field(default_factory=list)
    staff_excerpts:         List[str] = field(default_factory=list)
    unresolved_message_ids: List[str] = field(default_factory=list)
    event_id:               Optional[str] = None


@dataclass
class AnalysisStatistics:
    """Counts as reported by the collaborator, not recomputed locally."""
    payment_count:  int = 0
    service_count:  int = 0
    schedule_count: int = 0
    issue_count:    int = 0


@dataclass
class AnalysisResult:
    summary:              str
    sentiment:            str
    topics:               List[str]          = field(default_factory=list)
    relationship_dynamic: str                = ''
    events:               List[CaseEvent]    = field(default_factory=list)
    statistics:           AnalysisStatistics = field(default_factory=AnalysisStatistics)


@dataclass
class ChatSession:
    """The archive unit: one imported transcript plus optional analysis."""
    id:           str
    file_name:    str
    timestamp:    int               # epoch milliseconds
    file_hash:    str               # SHA-256 of the raw transcript text
    file_size:    int               # bytes
    messages:     List[ChatMessage] = field(default_factory=list)
    participants: List[str]         = field(default_factory=list)
    analysis:     Optional[AnalysisResult] = None
