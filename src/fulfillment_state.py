"""
Session state machine and completion predicate.

Picking:  pending -> in_process -> completed
Control:  ready -> controlling -> finalized
Both:     in_process/controlling <-> paused

Completed and finalized are terminal. Every transition is decided from the
persisted session fields alone, so a session reloaded after a restart
continues exactly where it was.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from exceptions import CompletionBlocked, SessionNotActive
from line_ledger import is_resolved, numeric_status_of, status_of
from logger import get_logger
from models import LineStatus, Session, SessionKind, SessionStatus
import pause_tracker

logger = get_logger(__name__)

# (kind, action) -> {from_status: to_status}
TRANSITIONS: Dict[Tuple[SessionKind, str], Dict[SessionStatus, SessionStatus]] = {
    (SessionKind.PICKING, 'start'): {SessionStatus.PENDING: SessionStatus.IN_PROCESS},
    (SessionKind.PICKING, 'pause'): {SessionStatus.IN_PROCESS: SessionStatus.PAUSED},
    (SessionKind.PICKING, 'resume'): {SessionStatus.PAUSED: SessionStatus.IN_PROCESS},
    (SessionKind.PICKING, 'finish'): {SessionStatus.IN_PROCESS: SessionStatus.COMPLETED},
    (SessionKind.CONTROL, 'start'): {SessionStatus.READY: SessionStatus.CONTROLLING},
    (SessionKind.CONTROL, 'pause'): {SessionStatus.CONTROLLING: SessionStatus.PAUSED},
    (SessionKind.CONTROL, 'resume'): {SessionStatus.PAUSED: SessionStatus.CONTROLLING},
    (SessionKind.CONTROL, 'finish'): {SessionStatus.CONTROLLING: SessionStatus.FINALIZED},
}

INITIAL_STATUS = {
    SessionKind.PICKING: SessionStatus.PENDING,
    SessionKind.CONTROL: SessionStatus.READY,
}

ACTIVE_STATUS = {
    SessionKind.PICKING: SessionStatus.IN_PROCESS,
    SessionKind.CONTROL: SessionStatus.CONTROLLING,
}

TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FINALIZED})

# issues that finish(force=True) may override
FORCIBLE_ISSUES = frozenset({'excess'})


def is_terminal(session: Session) -> bool:
    return session.status in TERMINAL_STATUSES


def is_accepting_scans(session: Session) -> bool:
    return session.status == ACTIVE_STATUS[session.kind]


def require_accepting(session: Session, action: str) -> None:
    """
    Raise unless the session is in its active state (in_process/controlling).

    Raises:
        SessionNotActive: Paused, not started or already finished
    """
    if not is_accepting_scans(session):
        raise SessionNotActive(
            f"Session {session.id} does not accept '{action}' while {session.status.value}",
            session_id=session.id, status=session.status.value, action=action
        )


def blocking_issues(session: Session) -> List[Tuple[str, str]]:
    """
    Lines that keep the session from completing, as (code, issue) pairs.

    Issues:
        pending  - never scanned
        excess   - more units than ordered and no withdrawal confirmed
        shortage - fewer units than ordered and no reason recorded
    """
    issues = []
    for line in session.lines:
        status = status_of(line)
        if not is_resolved(line, status):
            issues.append((line.code, status.value))
    return issues


def is_completable(session: Session) -> bool:
    """
    Completion predicate.

    Holds when every line is correct (an excess-confirmed line counts as
    correct) or short with a documented reason.
    """
    return not blocking_issues(session)


def result_of(session: Session) -> str:
    """
    Overall outcome for history records: "complete", "shortages" or "excesses".

    Excess that was withdrawn still counts as an excess outcome, since the
    picker put too many units in the box.
    """
    numeric = [numeric_status_of(line) for line in session.lines]
    if any(status == LineStatus.SHORTAGE for status in numeric):
        return 'shortages'
    if any(status == LineStatus.EXCESS for status in numeric):
        return 'excesses'
    return 'complete'


class FulfillmentStateMachine:
    """
    Applies lifecycle actions to a session.

    The machine holds no state of its own: every method reads and updates the
    Session passed to it.
    """

    def _transition(self, session: Session, action: str) -> SessionStatus:
        allowed = TRANSITIONS[(session.kind, action)]
        target = allowed.get(session.status)
        if target is None:
            raise SessionNotActive(
                f"Cannot {action} session {session.id} while {session.status.value}",
                session_id=session.id, status=session.status.value, action=action
            )
        return target

    def start(self, session: Session, now: datetime) -> Session:
        target = self._transition(session, 'start')
        pause_tracker.start(session, now)
        session.status = target
        logger.info(f"Session {session.id} started ({session.kind.value}, {len(session.lines)} lines)")
        return session

    def pause(self, session: Session, reason: str, now: datetime) -> Session:
        target = self._transition(session, 'pause')
        pause_tracker.pause(session, reason, now)
        session.status = target
        return session

    def resume(self, session: Session, now: datetime) -> Session:
        target = self._transition(session, 'resume')
        pause_tracker.resume(session, now)
        session.status = target
        return session

    def finish(self, session: Session, now: datetime,
               comment: Optional[str] = None, force: bool = False) -> Session:
        """
        Complete (picking) or finalize (control) the session.

        Args:
            force: Acknowledge unresolved excess. Pending lines and
                   unexplained shortages still block.

        Raises:
            SessionNotActive: Not in the active state (paused, finished, ...)
            CompletionBlocked: The completion predicate does not hold
        """
        target = self._transition(session, 'finish')

        issues = blocking_issues(session)
        if force:
            acknowledged = [issue for issue in issues if issue[1] in FORCIBLE_ISSUES]
            if acknowledged:
                logger.warning(
                    f"Session {session.id} finished with acknowledged issues: {acknowledged}"
                )
            issues = [issue for issue in issues if issue[1] not in FORCIBLE_ISSUES]

        if issues:
            raise CompletionBlocked(
                f"Session {session.id} has {len(issues)} unresolved line(s)",
                issues=issues
            )

        pause_tracker.finish(session, now)
        session.status = target
        if comment is not None and str(comment).strip():
            session.comment = str(comment).strip()

        logger.info(
            f"Session {session.id} {target.value}: result={result_of(session)}, "
            f"net time {pause_tracker.format_duration(pause_tracker.net_elapsed(session, now))}"
        )
        return session
