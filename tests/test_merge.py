"""
tests/test_merge.py
Analysis merge: schema validation, event-level reject policy, unresolved
references, wholesale replacement, no mutation on failure.
"""

import json

import pytest
from conftest import make_event, make_payload

from carelog.analysis.merge import (
    load_payload,
    merge_analysis,
    normalize_risk_level,
    parse_analysis,
    strip_code_fence,
)
from carelog.archive.store import STORE_KEY
from carelog.errors import SchemaError, SessionNotFound
from carelog.session_builder import build_session


class TestRiskLevels:

    @pytest.mark.parametrize('raw, expected', [
        ('low', 'low'), ('MEDIUM', 'medium'), (' High ', 'high'),
        ('低', 'low'), ('中', 'medium'), ('高', 'high'),
        ('critical', None), ('', None), (3, None), (None, None),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_risk_level(raw) == expected


class TestLoadPayload:

    def test_dict_passthrough(self):
        d = make_payload()
        assert load_payload(d) is d

    def test_json_text_with_fences(self):
        text = "```json\n" + json.dumps(make_payload()) + "\n```"
        assert load_payload(text)['summary'] == make_payload()['summary']

    @pytest.mark.parametrize('text', [
        '{"a": 1}',
        '```\n{"a": 1}\n```',
        '```json\n{"a": 1}\n```',
        '  ```json {"a": 1}```  ',
    ])
    def test_strip_code_fence(self, text):
        assert strip_code_fence(text) == '{"a": 1}'

    def test_invalid_json(self):
        with pytest.raises(SchemaError):
            load_payload('{"summary": ')

    def test_non_object(self):
        with pytest.raises(SchemaError):
            load_payload('[1, 2]')


class TestParseAnalysis:

    def test_valid_payload(self):
        analysis, rejected = parse_analysis(make_payload(), {'msg-9'})
        assert rejected == []
        assert analysis.summary == '家屬詢問費用並通報跌倒'
        assert analysis.topics == ['費用', '跌倒']
        assert analysis.statistics.payment_count == 2
        event = analysis.events[0]
        assert event.risk_level == 'high'
        assert event.related_message_ids == ['msg-9']
        assert event.unresolved_message_ids == []

    @pytest.mark.parametrize('missing', ['summary', 'sentiment', 'events', 'statistics'])
    def test_missing_required_top_level(self, missing):
        payload = make_payload()
        del payload[missing]
        with pytest.raises(SchemaError, match=missing):
            parse_analysis(payload, set())

    def test_optional_fields_default(self):
        payload = make_payload()
        del payload['topics']
        del payload['relationshipDynamic']
        payload['statistics'] = {}
        analysis, _ = parse_analysis(payload, set())
        assert analysis.topics == []
        assert analysis.relationship_dynamic == ''
        assert analysis.statistics.issue_count == 0

    def test_non_numeric_statistic(self):
        with pytest.raises(SchemaError):
            parse_analysis(make_payload(statistics={'paymentCount': 'many'}), set())

    def test_invalid_event_dropped_rest_kept(self):
        payload = make_payload(events=[
            make_event(title='ok-1'),
            make_event(title='bad', riskLevel='extreme'),
            make_event(title='ok-2', riskLevel='低'),
        ])
        analysis, rejected = parse_analysis(payload, {'msg-9'})
        assert [e.title for e in analysis.events] == ['ok-1', 'ok-2']
        assert len(rejected) == 1
        assert rejected[0].index == 1
        assert rejected[0].title == 'bad'
        assert 'riskLevel' in rejected[0].reason

    def test_event_missing_field_dropped(self):
        bad = make_event()
        del bad['staffExcerpts']
        analysis, rejected = parse_analysis(make_payload(events=[bad]), set())
        assert analysis.events == []
        assert 'staffExcerpts' in rejected[0].reason

    def test_strict_rejects_whole_payload(self):
        payload = make_payload(events=[make_event(), make_event(riskLevel='?')])
        with pytest.raises(SchemaError, match='Event 1'):
            parse_analysis(payload, set(), strict=True)

    def test_unresolved_references_kept_and_flagged(self):
        payload = make_payload(events=[make_event(relatedMessageIds=['msg-9', 'msg-404'])])
        analysis, _ = parse_analysis(payload, {'msg-9'})
        event = analysis.events[0]
        assert event.related_message_ids == ['msg-9', 'msg-404']
        assert event.unresolved_message_ids == ['msg-404']


class TestMergeAnalysis:

    def test_merge_attaches_and_persists(self, store, blob_store):
        report = merge_analysis(store, 'sess-1', make_payload())
        assert report.accepted_events == 1
        assert report.rejected_events == []
        assert store.get('sess-1').analysis.events[0].title == '跌倒通報'
        persisted = json.loads(blob_store.get(STORE_KEY))
        assert persisted[0]['analysis']['events'][0]['riskLevel'] == 'high'

    def test_merge_replaces_wholesale(self, store):
        merge_analysis(store, 'sess-1', make_payload(events=[make_event(title='a'), make_event(title='b')]))
        merge_analysis(store, 'sess-1', make_payload(events=[make_event(title='c')], summary='第二次'))
        analysis = store.get('sess-1').analysis
        assert [e.title for e in analysis.events] == ['c']
        assert analysis.summary == '第二次'

    def test_malformed_payload_leaves_session_untouched(self, store, blob_store):
        merge_analysis(store, 'sess-1', make_payload())
        before_session = store.get('sess-1')
        before_blob    = blob_store.get(STORE_KEY)

        bad = make_payload()
        del bad['events']
        with pytest.raises(SchemaError):
            merge_analysis(store, 'sess-1', bad)

        assert store.get('sess-1') == before_session
        assert blob_store.get(STORE_KEY) == before_blob

    def test_unresolved_count_reported(self, store):
        payload = make_payload(events=[make_event(relatedMessageIds=['msg-5', 'x', 'y'])])
        report = merge_analysis(store, 'sess-1', payload)
        assert report.unresolved_references == 2

    def test_unknown_session(self, store):
        with pytest.raises(SessionNotFound):
            merge_analysis(store, 'nope', make_payload())

    def test_messages_unchanged_by_merge(self, store, session):
        merge_analysis(store, 'sess-1', make_payload())
        assert store.get('sess-1').messages == session.messages

    def test_references_checked_against_stored_session(self, store):
        store.insert(build_session('2024/06/01（六）\n上午09:00 王小姐 好的', 'short.txt', session_id='sess-1'))
        report = merge_analysis(store, 'sess-1', make_payload())
        assert report.unresolved_references == 1
        assert store.get('sess-1').analysis.events[0].unresolved_message_ids == ['msg-9']
