"""
Start/pause/resume/finish instants and elapsed time for a session.

Nothing here keeps a running counter. Gross and net time are always
recomputed from started_at, finished_at and the pause intervals, so a session
reloaded after a restart reports the same durations it had before.
"""

from datetime import datetime, timedelta
from typing import Optional

from exceptions import ReasonRequired, SessionNotActive
from logger import get_logger
from models import PauseInterval, Session

logger = get_logger(__name__)


def start(session: Session, now: datetime) -> None:
    """Record the start instant. Restarting a started session is rejected."""
    if session.started_at is not None:
        raise SessionNotActive(
            f"Session {session.id} was already started at {session.started_at.isoformat()}",
            session_id=session.id, status=session.status.value, action='start'
        )
    session.started_at = now


def pause(session: Session, reason: str, now: datetime) -> PauseInterval:
    """
    Open a pause interval.

    Raises:
        ReasonRequired: Empty reason
        SessionNotActive: A pause is already open
    """
    if not reason or not str(reason).strip():
        raise ReasonRequired("A pause reason is required")

    if session.active_pause is not None:
        raise SessionNotActive(
            f"Session {session.id} is already paused since {session.active_pause.start.isoformat()}",
            session_id=session.id, status=session.status.value, action='pause'
        )

    interval = PauseInterval(start=now, reason=str(reason).strip())
    session.pauses.append(interval)
    logger.info(f"Pause #{len(session.pauses)} opened: {interval.reason}")
    return interval


def resume(session: Session, now: datetime) -> PauseInterval:
    """
    Close the open pause interval.

    Raises:
        SessionNotActive: No pause is open
    """
    interval = session.active_pause
    if interval is None:
        raise SessionNotActive(
            f"Session {session.id} is not paused",
            session_id=session.id, status=session.status.value, action='resume'
        )

    # a clock that went backwards must not produce a negative pause
    interval.end = max(now, interval.start)
    logger.info(f"Pause closed after {format_duration(interval.end - interval.start)}")
    return interval


def finish(session: Session, now: datetime) -> None:
    """Record the finish instant."""
    session.finished_at = now


def gross_elapsed(session: Session, now: Optional[datetime] = None) -> timedelta:
    """Wall-clock time from start to finish (or to now while unfinished)."""
    if session.started_at is None:
        return timedelta(0)

    end = session.finished_at or now or datetime.now()
    return max(end - session.started_at, timedelta(0))


def total_paused(session: Session, now: Optional[datetime] = None) -> timedelta:
    """
    Time spent in pauses up to the reference instant.

    An open pause counts from its start to the reference instant, which is
    what freezes net time while paused.
    """
    if session.started_at is None:
        return timedelta(0)

    reference = session.finished_at or now or datetime.now()
    paused = timedelta(0)
    for interval in session.pauses:
        begin = max(interval.start, session.started_at)
        end = min(interval.end or reference, reference)
        if end > begin:
            paused += end - begin
    return paused


def net_elapsed(session: Session, now: Optional[datetime] = None) -> timedelta:
    """
    Working time: gross elapsed minus all pause time.

    Net time does not advance while a pause is open and picks up from the same
    value after resume. It never exceeds gross elapsed time.
    """
    if now is None:
        now = datetime.now()
    return max(gross_elapsed(session, now) - total_paused(session, now), timedelta(0))


def pause_count(session: Session) -> int:
    return len(session.pauses)


def format_duration(duration: timedelta) -> str:
    """
    Format a duration as HH:MM:SS. Hours are not capped at 24.

    Examples:
        timedelta(minutes=5, seconds=3) -> "00:05:03"
        timedelta(hours=26) -> "26:00:00"
    """
    total_seconds = max(int(duration.total_seconds()), 0)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
