"""
tests/test_classifier.py
Keyword classifier: tag assignment, importance rule, purity.
"""

import pytest

from carelog.detectors.keyword_classifier import IMPORTANT_TAGS, KEYWORD_MAP, classify
from carelog.models.record import ALL_TAGS


class TestClassifier:

    @pytest.mark.parametrize('content, expected', [
        ('自付額是多少',           ['payment']),
        ('總共$3000',             ['payment']),
        ('下週家訪評估',           ['service']),
        ('禮拜三幾點到',           ['schedule']),
        ('不好意思昨天有點衝突',    ['issue']),
        ('好的謝謝',               []),
    ])
    def test_single_group(self, content, expected):
        tags, _ = classify(content)
        assert tags == expected

    def test_payment_is_important(self):
        assert classify('匯款完成')[1] is True

    def test_issue_is_important(self):
        assert classify('緊急狀況')[1] is True

    def test_service_and_schedule_not_important(self):
        tags, important = classify('居服時間要更換')
        assert tags == ['service', 'schedule']
        assert important is False

    def test_all_groups_at_once(self):
        tags, important = classify('抱歉，服務費用的排程要調動')
        assert tags == ['payment', 'service', 'schedule', 'issue']
        assert important is True

    def test_case_insensitive(self, monkeypatch):
        from carelog.detectors import keyword_classifier as kc
        monkeypatch.setattr(kc, '_COMPILED', [('payment', kc._compile(['copay']))])
        assert kc.classify('CoPay due Friday') == (['payment'], True)

    def test_pure(self):
        content = '跌倒後就醫的費用'
        assert classify(content) == classify(content)

    def test_table_covers_closed_tag_set(self):
        assert tuple(KEYWORD_MAP) == ALL_TAGS
        assert IMPORTANT_TAGS == {'payment', 'issue'}
