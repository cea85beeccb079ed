"""
carelog/detectors/keyword_classifier.py
Rule-based message classifier. Offline and deterministic.

Each tag owns one keyword group; every group is evaluated independently,
so a message may carry zero, one or several tags. Add a category by adding
a row to KEYWORD_MAP.
"""

import re
from typing import Dict, List, Pattern, Tuple

from carelog.models.record import TAG_ISSUE, TAG_PAYMENT, TAG_SCHEDULE, TAG_SERVICE

# ── KEYWORD DICTIONARIES ─────────────────────────────────────
# Order here is the order tags appear in output.

KEYWORD_MAP: Dict[str, List[str]] = {

    TAG_PAYMENT: [
        '$', '元', '繳費', '自付額', '費用', '薪資', '匯款',
    ],

    TAG_SERVICE: [
        '服務', '照護', '居服', '協助', '喘息', '就醫', '家訪', '評估',
    ],

    TAG_SCHEDULE: [
        '時間', '星期', '禮拜', '調動', '排程', '日期', '幾點', '暫停', '更換',
    ],

    TAG_ISSUE: [
        '問題', '抱歉', '不好意思', '協商', '抱怨', '受傷', '跌倒', '緊急', '衝突',
    ],
}

# Tags that raise a message to "important" (service / schedule alone do not)
IMPORTANT_TAGS = frozenset({TAG_PAYMENT, TAG_ISSUE})


def _compile(keywords: List[str]) -> Pattern:
    return re.compile('|'.join(re.escape(kw) for kw in keywords), re.IGNORECASE)


_COMPILED: List[Tuple[str, Pattern]] = [
    (tag, _compile(keywords)) for tag, keywords in KEYWORD_MAP.items()
]


def classify(content: str) -> Tuple[List[str], bool]:
    """Return (tags, is_important) for one message body."""
    lowered = content.lower()
    tags = [tag for tag, pattern in _COMPILED if pattern.search(lowered)]
    return tags, any(tag in IMPORTANT_TAGS for tag in tags)
