"""
carelog/llm/base.py
Abstract base class for analysis collaborators.
To add a new backend: subclass AnalysisCollaborator and implement analyze().
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from carelog.analysis.sampling import build_context
from carelog.models.record import ChatMessage

# JSON schema handed to backends that support structured output.
# Field names match carelog.analysis.merge.
ANALYSIS_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'summary':             {'type': 'string'},
        'sentiment':           {'type': 'string'},
        'topics':              {'type': 'array', 'items': {'type': 'string'}},
        'relationshipDynamic': {'type': 'string'},
        'events': {
            'type': 'array',
            'items': {
                'type': 'object',
                'properties': {
                    'id':                {'type': 'string'},
                    'title':             {'type': 'string'},
                    'summary':           {'type': 'string'},
                    'riskLevel':         {'type': 'string', 'enum': ['low', 'medium', 'high']},
                    'riskAssessment':    {'type': 'string'},
                    'remarks':           {'type': 'string'},
                    'dateRange':         {'type': 'string'},
                    'relatedMessageIds': {'type': 'array', 'items': {'type': 'string'}},
                    'familyExcerpts':    {'type': 'array', 'items': {'type': 'string'}},
                    'staffExcerpts':     {'type': 'array', 'items': {'type': 'string'}},
                },
                'required': [
                    'title', 'summary', 'riskLevel', 'riskAssessment', 'remarks',
                    'dateRange', 'relatedMessageIds', 'familyExcerpts', 'staffExcerpts',
                ],
            },
        },
        'statistics': {
            'type': 'object',
            'properties': {
                'paymentCount':  {'type': 'number'},
                'serviceCount':  {'type': 'number'},
                'scheduleCount': {'type': 'number'},
                'issueCount':    {'type': 'number'},
            },
        },
    },
    'required': ['summary', 'sentiment', 'events', 'statistics'],
}


class AnalysisCollaborator(ABC):
    """
    All analysis backends implement this interface.
    The caller submits sampled messages and gets back a raw payload dict,
    which carelog.analysis.merge validates. The caller never knows which
    backend is running.
    """

    model_name: str = 'unknown'

    @abstractmethod
    def is_available(self) -> bool:
        """True if the backend is reachable and ready."""
        ...

    @abstractmethod
    async def analyze(self, messages: List[ChatMessage]) -> Dict[str, Any]:
        """
        Analyze sampled messages.
        Returns the decoded JSON payload. Raises CollaboratorError on any
        transport or decoding failure. Must honour task cancellation.
        """
        ...

    def build_prompt(self, messages: List[ChatMessage]) -> str:
        """Shared prompt builder. Adapters override only for format-specific needs."""
        return (
            "你是一位資深的居家長照證據保全分析專家。請分析以下 LINE 對話紀錄，"
            "將對話整理成獨立事件（一個事件可能跨越數天）。\n\n"
            "每個事件請提供：\n"
            "- title: 事件標題\n"
            "- summary: 事件摘要\n"
            "- riskLevel: 風險等級，只能是 low / medium / high\n"
            "- riskAssessment: 風險具體說明\n"
            "- remarks: 長照留存證據所需的專業備註\n"
            "- dateRange: 日期範圍\n"
            "- relatedMessageIds: 相關對話 ID，必須是下方標註的 ID\n"
            "- familyExcerpts: 家屬或案主說過的關鍵原文\n"
            "- staffExcerpts: 機構同仁、督導或主任的回應或承諾原文\n\n"
            "另外提供整體 summary、sentiment、topics、relationshipDynamic，"
            "以及 statistics（paymentCount、serviceCount、scheduleCount、issueCount）。\n"
            "只回傳一個合法的 JSON 物件，不要 markdown，不要額外說明。\n"
            "注意：此分析為推論，不得作為法律結論。\n\n"
            "對話紀錄：\n"
            f"{build_context(messages)}"
        )
