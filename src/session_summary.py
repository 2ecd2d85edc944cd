"""
Read-only views of a session for callers and reports.

Statuses come from the ledger and times from the pause tracker. This module
only shapes them for display; it never re-derives business state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from fulfillment_state import blocking_issues, is_completable, result_of
from line_ledger import aggregate_events, status_of
from models import LineStatus, OrderLine, Session
import pause_tracker


@dataclass(frozen=True)
class LineView:
    code: str
    description: str
    expected_quantity: int
    displayed_quantity: int
    accumulated_quantity: Optional[int]
    status: LineStatus
    shortage_reason: Optional[str]
    excess_confirmed: bool


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Point-in-time view of a session.

    Attributes:
        net_elapsed: Working time, pauses excluded
        gross_elapsed: Wall-clock time since start
        completable: Whether the completion predicate holds
        issues: (code, issue) pairs that block completion
    """
    id: str
    order_id: str
    operator_id: Optional[str]
    kind: str
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    comment: Optional[str]
    lines: Tuple[LineView, ...]
    net_elapsed: timedelta
    gross_elapsed: timedelta
    pause_count: int
    paused_since: Optional[datetime]
    completable: bool
    issues: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def line(self, code: str) -> Optional[LineView]:
        for view in self.lines:
            if view.code == code:
                return view
        return None


def build_snapshot(session: Session, now: Optional[datetime] = None) -> SessionSnapshot:
    now = now or datetime.now()
    active = session.active_pause

    return SessionSnapshot(
        id=session.id,
        order_id=session.order_id,
        operator_id=session.operator_id,
        kind=session.kind.value,
        status=session.status.value,
        started_at=session.started_at,
        finished_at=session.finished_at,
        comment=session.comment,
        lines=tuple(
            LineView(
                code=line.code,
                description=line.description,
                expected_quantity=line.expected_quantity,
                displayed_quantity=line.displayed_quantity,
                accumulated_quantity=line.accumulated_quantity,
                status=status_of(line),
                shortage_reason=line.shortage_reason,
                excess_confirmed=line.excess_confirmed,
            )
            for line in session.lines
        ),
        net_elapsed=pause_tracker.net_elapsed(session, now),
        gross_elapsed=pause_tracker.gross_elapsed(session, now),
        pause_count=pause_tracker.pause_count(session),
        paused_since=active.start if active else None,
        completable=is_completable(session),
        issues=tuple(blocking_issues(session)),
    )


LINE_COLUMNS = ['code', 'description', 'expected', 'counted', 'status', 'reason', 'excess_confirmed']


def _line_row(line: OrderLine) -> Dict[str, Any]:
    return {
        'code': line.code,
        'description': line.description,
        'expected': line.expected_quantity,
        'counted': line.displayed_quantity,
        'status': status_of(line).value,
        'reason': line.shortage_reason,
        'excess_confirmed': line.excess_confirmed,
    }


def summary_frame(session: Session) -> pd.DataFrame:
    """Line table of a session: one row per line with its derived status."""
    return pd.DataFrame([_line_row(line) for line in session.lines], columns=LINE_COLUMNS)


def scan_history(session: Session) -> List[Dict[str, Any]]:
    """Raw scan events, most recent first."""
    return [
        {
            'raw_code': e.raw_code,
            'code': e.code,
            'delta': e.delta,
            'timestamp': e.timestamp.isoformat(),
            'reason': e.reason,
        }
        for e in sorted(session.events, key=lambda e: e.timestamp, reverse=True)
    ]


def build_summary(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    JSON-serializable summary of a session, in the shape the history records use.

    Example:
        {
          "session_id": "...", "order_id": "P0025", "kind": "control",
          "status": "finalized", "result": "complete",
          "started_at": "2025-11-05T09:00:00", "finished_at": "2025-11-05T09:20:00",
          "gross_time": "00:20:00", "net_time": "00:15:00", "pause_count": 1,
          "totals": {"lines": 3, "expected": 12, "counted": 12},
          "status_counts": {"correct": 3},
          "lines": [...], "scans": [...]
        }
    """
    now = now or datetime.now()
    frame = summary_frame(session)
    grouped = aggregate_events(session.events)

    return {
        'session_id': session.id,
        'order_id': session.order_id,
        'operator_id': session.operator_id,
        'kind': session.kind.value,
        'status': session.status.value,
        'result': result_of(session),
        'comment': session.comment,
        'started_at': session.started_at.isoformat() if session.started_at else None,
        'finished_at': session.finished_at.isoformat() if session.finished_at else None,
        'gross_time': pause_tracker.format_duration(pause_tracker.gross_elapsed(session, now)),
        'net_time': pause_tracker.format_duration(pause_tracker.net_elapsed(session, now)),
        'pause_count': pause_tracker.pause_count(session),
        'totals': {
            'lines': len(frame),
            'expected': int(frame['expected'].sum()) if not frame.empty else 0,
            'counted': int(frame['counted'].sum()) if not frame.empty else 0,
        },
        'status_counts': {str(k): int(v) for k, v in frame['status'].value_counts().items()},
        'issues': [{'code': code, 'issue': issue} for code, issue in blocking_issues(session)],
        'lines': [_line_row(line) for line in session.lines],
        'scans': [
            {
                'code': row['code'],
                'quantity': int(row['quantity']),
                'reason': row['reason'],
                'last_scan': row['last_scan'].isoformat(),
                'scans': int(row['scans']),
            }
            for row in grouped.to_dict(orient='records')
        ],
    }
