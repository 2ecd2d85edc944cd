"""
Unit tests for session_summary: snapshots, the pandas line table and the
JSON summary written for history records.
"""

import json
from datetime import datetime, timedelta

import pytest

from models import (
    LineStatus,
    OrderLine,
    PauseInterval,
    ScanEvent,
    Session,
    SessionKind,
    SessionStatus,
)
from session_summary import (
    LINE_COLUMNS,
    build_snapshot,
    build_summary,
    scan_history,
    summary_frame,
)

T0 = datetime(2025, 11, 5, 9, 0, 0)


def at(minutes=0, seconds=0):
    return T0 + timedelta(minutes=minutes, seconds=seconds)


@pytest.fixture
def finalized_control():
    """Control session: one correct line, one documented shortage, one withdrawn excess."""
    return Session(
        id='S1',
        order_id='P0025',
        operator_id='17',
        kind=SessionKind.CONTROL,
        status=SessionStatus.FINALIZED,
        started_at=at(0),
        finished_at=at(20),
        comment='checked twice',
        lines=[
            OrderLine('A1', 5, accumulated_quantity=5, description='Cream 50ml'),
            OrderLine('B2', 4, accumulated_quantity=3, shortage_reason='Out of stock'),
            OrderLine('C3', 2, accumulated_quantity=3, excess_confirmed=True),
        ],
        pauses=[PauseInterval(start=at(5), end=at(10), reason='Lunch')],
        events=[
            ScanEvent('a1', 'A1', 2, at(1)),
            ScanEvent('A1', 'A1', 3, at(2)),
            ScanEvent('B2', 'B2', 3, at(3), reason='Out of stock'),
            ScanEvent('C3', 'C3', 3, at(15)),
        ],
    )


class TestSnapshot:

    def test_lines_carry_derived_status(self, finalized_control):
        snapshot = build_snapshot(finalized_control, at(60))

        assert snapshot.line('A1').status == LineStatus.CORRECT
        assert snapshot.line('B2').status == LineStatus.SHORTAGE
        assert snapshot.line('C3').status == LineStatus.CORRECT
        assert snapshot.line('C3').displayed_quantity == 2
        assert snapshot.line('C3').accumulated_quantity == 3
        assert snapshot.line('Z9') is None

    def test_times(self, finalized_control):
        snapshot = build_snapshot(finalized_control, at(60))
        assert snapshot.gross_elapsed == timedelta(minutes=20)
        assert snapshot.net_elapsed == timedelta(minutes=15)
        assert snapshot.pause_count == 1
        assert snapshot.paused_since is None

    def test_completion(self, finalized_control):
        snapshot = build_snapshot(finalized_control, at(60))
        assert snapshot.completable
        assert snapshot.issues == ()

    def test_snapshot_is_detached_from_session(self, finalized_control):
        snapshot = build_snapshot(finalized_control, at(60))
        finalized_control.lines[0].accumulated_quantity = 0
        assert snapshot.line('A1').accumulated_quantity == 5

    def test_paused_since(self):
        session = Session(id='S2', order_id='P0001', kind=SessionKind.PICKING, status=SessionStatus.PAUSED,
                          started_at=at(0), pauses=[PauseInterval(start=at(3), reason='Lunch')],
                          lines=[OrderLine('A1', 1)])
        snapshot = build_snapshot(session, at(10))
        assert snapshot.paused_since == at(3)
        assert snapshot.issues == (('A1', 'pending'),)


class TestSummaryFrame:

    def test_columns_and_rows(self, finalized_control):
        df = summary_frame(finalized_control)
        assert list(df.columns) == LINE_COLUMNS
        assert list(df['code']) == ['A1', 'B2', 'C3']
        assert list(df['status']) == ['correct', 'shortage', 'correct']
        assert list(df['counted']) == [5, 3, 2]

    def test_empty_session(self):
        session = Session(id='S3', order_id='P0000', kind=SessionKind.PICKING, status=SessionStatus.PENDING)
        df = summary_frame(session)
        assert df.empty
        assert list(df.columns) == LINE_COLUMNS


class TestScanHistory:

    def test_most_recent_first(self, finalized_control):
        history = scan_history(finalized_control)
        assert [h['code'] for h in history] == ['C3', 'B2', 'A1', 'A1']
        assert history[-1]['raw_code'] == 'a1'
        assert history[0]['timestamp'] == at(15).isoformat()


class TestBuildSummary:

    def test_header(self, finalized_control):
        summary = build_summary(finalized_control, at(60))

        assert summary['session_id'] == 'S1'
        assert summary['order_id'] == 'P0025'
        assert summary['operator_id'] == '17'
        assert summary['kind'] == 'control'
        assert summary['status'] == 'finalized'
        assert summary['comment'] == 'checked twice'
        assert summary['started_at'] == '2025-11-05T09:00:00'
        assert summary['finished_at'] == '2025-11-05T09:20:00'

    def test_times_and_result(self, finalized_control):
        summary = build_summary(finalized_control, at(60))
        assert summary['gross_time'] == '00:20:00'
        assert summary['net_time'] == '00:15:00'
        assert summary['pause_count'] == 1
        assert summary['result'] == 'shortages'

    def test_totals(self, finalized_control):
        summary = build_summary(finalized_control, at(60))
        assert summary['totals'] == {'lines': 3, 'expected': 11, 'counted': 10}
        assert summary['status_counts'] == {'correct': 2, 'shortage': 1}
        assert summary['issues'] == []

    def test_scans_are_grouped_by_code(self, finalized_control):
        scans = build_summary(finalized_control, at(60))['scans']
        assert [s['code'] for s in scans] == ['C3', 'B2', 'A1']
        a1 = scans[2]
        assert a1['quantity'] == 5
        assert a1['scans'] == 2
        assert a1['reason'] is None
        assert scans[1]['reason'] == 'Out of stock'

    def test_is_json_serializable(self, finalized_control):
        text = json.dumps(build_summary(finalized_control, at(60)))
        assert json.loads(text)['lines'][2]['excess_confirmed'] is True

    def test_empty_session(self):
        session = Session(id='S3', order_id='P0000', kind=SessionKind.PICKING, status=SessionStatus.PENDING)
        summary = build_summary(session, at(0))
        assert summary['totals'] == {'lines': 0, 'expected': 0, 'counted': 0}
        assert summary['status_counts'] == {}
        assert summary['scans'] == []
        assert summary['gross_time'] == '00:00:00'
        json.dumps(summary)
