"""
tests/conftest.py
Shared synthetic transcript. No real case data.
"""

import pytest

from carelog.archive.store import ArchiveStore
from carelog.llm.base import AnalysisCollaborator
from carelog.session_builder import build_session
from carelog.storage.blob_store import MemoryBlobStore

# Line index → message id:  5, 6, 7, 9, 10 (system), 11
SAMPLE_TRANSCRIPT = "\n".join([
    "[LINE] 與王小姐的聊天記錄",
    "儲存日期：2024/05/10 21:30",
    "",
    "上午08:00 王小姐 這行出現在日期之前",
    "2024/05/01（三）",
    "上午09:15 王小姐 這個月的費用要什麼時候繳？",
    "上午09:20 陳督導 您好，費用可以在五號前匯款。",
    "下午02:05 陳督導 明天居服員的服務時間改到下午三點",
    "2024/05/02（四）",
    "上午10:00 王小姐 我媽媽昨天跌倒受傷了",
    "上午10:01 王小姐 王小姐已新增李主任至群組",
    "下午01:30 李主任 好的謝謝",
])


@pytest.fixture
def transcript_text():
    return SAMPLE_TRANSCRIPT


@pytest.fixture
def session():
    return build_session(SAMPLE_TRANSCRIPT.encode('utf-8'), 'chat.txt',
                         session_id='sess-1', now_ms=1714550400000)


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def store(blob_store, session):
    s = ArchiveStore(blob_store)
    s.load()
    s.insert(session)
    return s


def make_event(**overrides):
    event = {
        'title':             '跌倒通報',
        'summary':           '家屬通報長輩跌倒受傷',
        'riskLevel':         'high',
        'riskAssessment':    '長輩受傷，需追蹤就醫',
        'remarks':           '保留家屬通報時間',
        'dateRange':         '2024/05/02',
        'relatedMessageIds': ['msg-9'],
        'familyExcerpts':    ['我媽媽昨天跌倒受傷了'],
        'staffExcerpts':     [],
    }
    event.update(overrides)
    return event


def make_payload(**overrides):
    payload = {
        'summary':             '家屬詢問費用並通報跌倒',
        'sentiment':           '擔憂',
        'topics':              ['費用', '跌倒'],
        'relationshipDynamic': '家屬主動詢問，單位回應及時',
        'events':              [make_event()],
        'statistics': {
            'paymentCount':  2,
            'serviceCount':  1,
            'scheduleCount': 1,
            'issueCount':    1,
        },
    }
    payload.update(overrides)
    return payload


class FakeCollaborator(AnalysisCollaborator):
    """Returns a canned payload; optionally waits on a gate or raises."""

    model_name = 'fake'

    def __init__(self, payload=None, error=None, gate=None):
        self.payload = payload if payload is not None else make_payload()
        self.error   = error
        self.gate    = gate
        self.calls   = []

    def is_available(self):
        return True

    async def analyze(self, messages):
        self.calls.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.payload
