"""
Persistence for sessions, their lines, scan events and pauses.

Two stores share one interface:
- InMemorySessionStore: process-local, used by tests and single-station setups
- SQLiteSessionStore: durable store in a local SQLite file

Both store exactly the persisted fields of a session. Nothing else is needed
to rebuild its state, status and elapsed times after a restart.

Every save carries the version the caller loaded. If the stored version moved
on in the meantime, the save is refused with ConcurrentModification and the
caller must reload and retry.
"""

import copy
import sqlite3
import threading
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from exceptions import ConcurrentModification, SessionNotFound
from logger import get_logger
from models import OrderLine, PauseInterval, ScanEvent, Session, SessionKind, SessionStatus

logger = get_logger(__name__)


class InMemorySessionStore:
    """Dictionary-backed store. Loaded sessions are copies, never shared objects."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise ConcurrentModification(f"Session {session.id} already exists", session_id=session.id)
            session.version = 1
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    def load(self, session_id: str) -> Session:
        with self._lock:
            stored = self._sessions.get(session_id)
            if stored is None:
                raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
            return copy.deepcopy(stored)

    def save(self, session: Session) -> Session:
        with self._lock:
            stored = self._sessions.get(session.id)
            if stored is None:
                raise SessionNotFound(f"Session {session.id} not found", session_id=session.id)
            if stored.version != session.version:
                raise ConcurrentModification(
                    f"Session {session.id} changed since it was loaded "
                    f"(version {session.version}, stored {stored.version})",
                    session_id=session.id
                )
            session.version += 1
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    def find_by_order(self, order_id: str, kind: Optional[SessionKind] = None) -> List[Session]:
        with self._lock:
            matches = [
                s for s in self._sessions.values()
                if s.order_id == str(order_id) and (kind is None or s.kind == kind)
            ]
            return [copy.deepcopy(s) for s in matches]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id              TEXT PRIMARY KEY,
    order_id        TEXT NOT NULL,
    operator_id     TEXT,
    kind            TEXT NOT NULL,
    status          TEXT NOT NULL,
    started_at      TEXT,
    finished_at     TEXT,
    comment         TEXT,
    version         INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS order_lines (
    session_id           TEXT NOT NULL REFERENCES sessions(id),
    position             INTEGER NOT NULL,
    code                 TEXT NOT NULL,
    description          TEXT,
    expected_quantity    INTEGER NOT NULL,
    accumulated_quantity INTEGER,
    shortage_reason      TEXT,
    excess_confirmed     INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (session_id, position)
);
CREATE TABLE IF NOT EXISTS scan_events (
    session_id  TEXT NOT NULL REFERENCES sessions(id),
    seq         INTEGER NOT NULL,
    raw_code    TEXT NOT NULL,
    code        TEXT NOT NULL,
    delta       INTEGER NOT NULL,
    timestamp   TEXT NOT NULL,
    reason      TEXT,
    PRIMARY KEY (session_id, seq)
);
CREATE TABLE IF NOT EXISTS pause_intervals (
    session_id  TEXT NOT NULL REFERENCES sessions(id),
    seq         INTEGER NOT NULL,
    start       TEXT NOT NULL,
    "end"       TEXT,
    reason      TEXT NOT NULL,
    PRIMARY KEY (session_id, seq)
);
CREATE INDEX IF NOT EXISTS idx_sessions_order ON sessions (order_id, kind);
"""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteSessionStore:
    """SQLite-backed session store."""

    def __init__(self, db_path):
        self._path = str(Path(db_path))
        self._init_schema()
        logger.debug(f"SQLiteSessionStore using {self._path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def _write_children(self, conn: sqlite3.Connection, session: Session) -> None:
        for table in ('order_lines', 'scan_events', 'pause_intervals'):
            conn.execute(f"DELETE FROM {table} WHERE session_id = ?", (session.id,))

        conn.executemany(
            """
            INSERT INTO order_lines
                (session_id, position, code, description, expected_quantity,
                 accumulated_quantity, shortage_reason, excess_confirmed)
            VALUES (?,?,?,?,?,?,?,?)
            """,
            [
                (session.id, position, line.code, line.description, line.expected_quantity,
                 line.accumulated_quantity, line.shortage_reason, int(line.excess_confirmed))
                for position, line in enumerate(session.lines)
            ]
        )
        conn.executemany(
            """
            INSERT INTO scan_events (session_id, seq, raw_code, code, delta, timestamp, reason)
            VALUES (?,?,?,?,?,?,?)
            """,
            [
                (session.id, seq, e.raw_code, e.code, e.delta, _iso(e.timestamp), e.reason)
                for seq, e in enumerate(session.events)
            ]
        )
        conn.executemany(
            'INSERT INTO pause_intervals (session_id, seq, start, "end", reason) VALUES (?,?,?,?,?)',
            [
                (session.id, seq, _iso(p.start), _iso(p.end), p.reason)
                for seq, p in enumerate(session.pauses)
            ]
        )

    def create(self, session: Session) -> Session:
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute(
                    """
                    INSERT INTO sessions
                        (id, order_id, operator_id, kind, status, started_at, finished_at, comment, version)
                    VALUES (?,?,?,?,?,?,?,?,1)
                    """,
                    (session.id, session.order_id, session.operator_id, session.kind.value,
                     session.status.value, _iso(session.started_at), _iso(session.finished_at),
                     session.comment)
                )
                self._write_children(conn, session)
        except sqlite3.IntegrityError as e:
            raise ConcurrentModification(f"Session {session.id} already exists: {e}", session_id=session.id)

        session.version = 1
        return session

    def save(self, session: Session) -> Session:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                """
                UPDATE sessions
                   SET status = ?, started_at = ?, finished_at = ?, comment = ?, version = version + 1
                 WHERE id = ? AND version = ?
                """,
                (session.status.value, _iso(session.started_at), _iso(session.finished_at),
                 session.comment, session.id, session.version)
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT version FROM sessions WHERE id = ?", (session.id,)).fetchone()
                if exists is None:
                    raise SessionNotFound(f"Session {session.id} not found", session_id=session.id)
                raise ConcurrentModification(
                    f"Session {session.id} changed since it was loaded "
                    f"(version {session.version}, stored {exists['version']})",
                    session_id=session.id
                )
            self._write_children(conn, session)

        session.version += 1
        return session

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def _build(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Session:
        session_id = row['id']
        lines = [
            OrderLine(
                code=r['code'],
                expected_quantity=r['expected_quantity'],
                accumulated_quantity=r['accumulated_quantity'],
                shortage_reason=r['shortage_reason'],
                excess_confirmed=bool(r['excess_confirmed']),
                description=r['description'] or '',
            )
            for r in conn.execute(
                "SELECT * FROM order_lines WHERE session_id = ? ORDER BY position", (session_id,)
            )
        ]
        events = [
            ScanEvent(
                raw_code=r['raw_code'],
                code=r['code'],
                delta=r['delta'],
                timestamp=_from_iso(r['timestamp']),
                reason=r['reason'],
            )
            for r in conn.execute(
                "SELECT * FROM scan_events WHERE session_id = ? ORDER BY seq", (session_id,)
            )
        ]
        pauses = [
            PauseInterval(start=_from_iso(r['start']), end=_from_iso(r['end']), reason=r['reason'])
            for r in conn.execute(
                "SELECT * FROM pause_intervals WHERE session_id = ? ORDER BY seq", (session_id,)
            )
        ]
        return Session(
            id=session_id,
            order_id=row['order_id'],
            operator_id=row['operator_id'],
            kind=SessionKind(row['kind']),
            status=SessionStatus(row['status']),
            started_at=_from_iso(row['started_at']),
            finished_at=_from_iso(row['finished_at']),
            comment=row['comment'],
            version=row['version'],
            lines=lines,
            pauses=pauses,
            events=events,
        )

    def load(self, session_id: str) -> Session:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
            return self._build(conn, row)

    def find_by_order(self, order_id: str, kind: Optional[SessionKind] = None) -> List[Session]:
        sql = "SELECT * FROM sessions WHERE order_id = ?"
        params = [str(order_id)]
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind.value)

        with closing(self._connect()) as conn:
            return [self._build(conn, row) for row in conn.execute(sql, params).fetchall()]

    @property
    def db_path(self) -> str:
        return self._path
