"""
Fulfillment engine: the interface the application layer calls.

Each public method is one discrete operation on one session: load it under
the session lock, apply the change through the processor or the state
machine, save it with a version check, then notify listeners. A failed
operation raises a FulfillmentError and leaves the stored session untouched.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from PySide6.QtCore import QObject, Signal

from code_matcher import CodeMatcher
from engine_config import EngineConfig
from exceptions import CodeNotFound, FulfillmentError, InvalidQuantity, SessionNotActive
from fulfillment_state import FulfillmentStateMachine, INITIAL_STATUS, is_completable, is_terminal
from line_ledger import status_of
from logger import (
    clear_logging_context,
    get_logger,
    set_operator_context,
    set_order_context,
    set_session_context,
)
from models import OrderLine, Session, SessionKind
from scan_processor import ScanProcessor
from session_lock_manager import SessionLockManager
from session_store import InMemorySessionStore, SQLiteSessionStore
from session_summary import SessionSnapshot, build_snapshot, build_summary, scan_history

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScanOutcome:
    """
    Result of FulfillmentEngine.scan().

    Attributes:
        matched: Always True here; unmatched codes raise CodeNotFound
        line: The updated line
        line_status: Derived status of the updated line
        session_status: Session status after the scan (may be terminal after auto-finish)
        completable: Whether the completion predicate held after the scan
    """
    matched: bool
    line: Optional[OrderLine]
    line_status: Optional[str]
    session_status: str
    completable: bool


class FulfillmentEngine(QObject):
    """
    Orchestrates picking and control sessions.

    Signals:
        line_updated(session_id, code, displayed_quantity, expected_quantity)
        session_completable(session_id): Emitted after a mutation that leaves the
            session satisfying the completion predicate
        session_finished(session_id, status): Emitted on completion/finalization,
            explicit or automatic

    Attributes:
        order_provider: Supplies order lines; must implement
            get_order_lines(order_id) -> iterable of dicts
            ({"code", "quantity", "description"}) or (code, quantity[, description]) tuples
        store: Session store (in-memory or SQLite)
        config (EngineConfig): Engine settings
    """
    line_updated = Signal(str, str, int, int)
    session_completable = Signal(str)
    session_finished = Signal(str, str)

    def __init__(self, order_provider, store=None, config: Optional[EngineConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 lock_manager: Optional[SessionLockManager] = None):
        super().__init__()

        self.config = config or EngineConfig()
        self.order_provider = order_provider

        if store is None:
            if self.config.database_path:
                store = SQLiteSessionStore(self.config.database_path)
            else:
                store = InMemorySessionStore()
        self.store = store

        self.matcher = CodeMatcher(self.config.preserve_codes)
        self.processor = ScanProcessor(self.matcher, self.config)
        self.state_machine = FulfillmentStateMachine()
        self.lock_manager = lock_manager or SessionLockManager(self.config.lock_timeout_seconds)
        self._clock = clock or datetime.now

        logger.info(
            f"FulfillmentEngine initialized ({type(self.store).__name__}, "
            f"{len(self.config.preserve_codes)} preserved codes)"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    def _load_lines(self, order_id: str) -> List[OrderLine]:
        """Build order lines from the provider's records."""
        records: Iterable[Any] = self.order_provider.get_order_lines(order_id) or []

        lines = []
        for record in records:
            if isinstance(record, dict):
                code = record.get('code')
                quantity = record.get('expected_quantity', record.get('quantity'))
                description = record.get('description') or ''
            else:
                code, quantity, *rest = record
                description = rest[0] if rest else ''

            try:
                expected = int(quantity)
            except (TypeError, ValueError):
                raise InvalidQuantity(
                    f"Order {order_id}: line {code} has invalid quantity {quantity!r}",
                    code=code, quantity=quantity
                )
            if expected < 0:
                raise InvalidQuantity(
                    f"Order {order_id}: line {code} has negative quantity {expected}",
                    code=code, quantity=quantity
                )

            lines.append(OrderLine(code=str(code).strip(), expected_quantity=expected,
                                   description=str(description or '')))
        return lines

    def _mutate(self, session_id: str, action: str, change: Callable[[Session], Any]):
        """
        Run one locked load-change-save cycle.

        Returns:
            (session, value returned by change)
        """
        set_session_context(session_id)
        try:
            with self.lock_manager.locked(session_id):
                session = self.store.load(session_id)
                set_order_context(session.order_id)
                set_operator_context(session.operator_id)

                value = change(session)
                self.store.save(session)
                return session, value

        except FulfillmentError as e:
            logger.warning(f"{action} rejected for session {session_id}: {e}")
            raise
        finally:
            clear_logging_context()

    def _after_change(self, session: Session) -> bool:
        """
        Evaluate the completion predicate after a mutation and auto-finish
        when the session kind is configured for it.

        Returns:
            Whether the session was completable
        """
        completable = is_completable(session)
        if completable and self.config.auto_finish_for(session.kind.value):
            self.state_machine.finish(session, self._now())
            logger.info(f"Session {session.id} finished automatically")
        return completable

    def _notify(self, session: Session, completable: bool) -> None:
        if completable:
            self.session_completable.emit(session.id)
        if is_terminal(session):
            self.session_finished.emit(session.id, session.status.value)
            self.lock_manager.forget(session.id)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, order_id: str, operator_id: Optional[str] = None,
                      kind: str = 'picking') -> Session:
        """
        Open and start a picking or control session for an order.

        Raises:
            SessionNotActive: The order already has an unfinished session of this kind
            InvalidQuantity: The order provider returned an unusable quantity
        """
        kind = SessionKind(kind)
        order_id = str(order_id)
        set_order_context(order_id)
        set_operator_context(operator_id)

        order_key = f"order:{order_id}:{kind.value}"
        try:
            with self.lock_manager.locked(order_key):
                open_sessions = [s for s in self.store.find_by_order(order_id, kind) if not is_terminal(s)]
                if open_sessions:
                    existing = open_sessions[0]
                    raise SessionNotActive(
                        f"Order {order_id} already has an open {kind.value} session {existing.id}",
                        session_id=existing.id, status=existing.status.value, action='start'
                    )

                session = Session(
                    id=uuid.uuid4().hex,
                    order_id=order_id,
                    operator_id=None if operator_id is None else str(operator_id),
                    kind=kind,
                    status=INITIAL_STATUS[kind],
                    lines=self._load_lines(order_id),
                )
                set_session_context(session.id)

                self.state_machine.start(session, self._now())
                self.store.create(session)
                return session

        except FulfillmentError as e:
            logger.warning(f"start rejected for order {order_id}: {e}")
            raise
        finally:
            self.lock_manager.forget(order_key)
            clear_logging_context()

    def pause(self, session_id: str, reason: str) -> Session:
        """
        Pause an active session.

        Raises:
            ReasonRequired: Empty reason
            UnrecognizedReason: Catalog is closed and the reason is not in it
        """
        session, _ = self._mutate(
            session_id, 'pause',
            lambda s: self.state_machine.pause(s, self.processor.validate_pause_reason(reason), self._now())
        )
        return session

    def resume(self, session_id: str) -> Session:
        session, _ = self._mutate(
            session_id, 'resume',
            lambda s: self.state_machine.resume(s, self._now())
        )
        return session

    def finish(self, session_id: str, comment: Optional[str] = None, force: bool = False) -> Session:
        """
        Complete a picking session or finalize a control session.

        Raises:
            CompletionBlocked: Pending lines, unconfirmed excess (unless forced)
                or shortages without a reason
        """
        session, _ = self._mutate(
            session_id, 'finish',
            lambda s: self.state_machine.finish(s, self._now(), comment=comment, force=force)
        )
        self._notify(session, completable=False)
        return session

    # ------------------------------------------------------------------
    # Scans and adjustments
    # ------------------------------------------------------------------

    def scan(self, session_id: str, raw_code: Any, quantity: Any = 1,
             reason: Optional[str] = None) -> ScanOutcome:
        """
        Apply a scanned or typed code to a session.

        Args:
            quantity: Units to add (default 1); negative values withdraw excess
            reason: Shortage reason, required when the line ends up short

        Raises:
            CodeNotFound: The code is not part of the order; nothing changed
            SessionNotActive, InvalidQuantity, ReasonRequired
        """
        def change(session: Session):
            result = self.processor.process(session, raw_code, quantity, reason=reason, now=self._now())
            if not result.matched:
                raise CodeNotFound(
                    f"Code '{raw_code}' is not part of order {session.order_id}",
                    code=None if raw_code is None else str(raw_code), session_id=session.id
                )
            return result.line, self._after_change(session)

        session, (line, completable) = self._mutate(session_id, 'scan', change)

        self.line_updated.emit(session.id, line.code, line.displayed_quantity, line.expected_quantity)
        self._notify(session, completable)

        return ScanOutcome(
            matched=True,
            line=line,
            line_status=status_of(line).value,
            session_status=session.status.value,
            completable=completable,
        )

    def withdraw_excess(self, session_id: str, code: Any, quantity: Any) -> ScanOutcome:
        """Record removal of some excess units (at most the current excess)."""
        def change(session: Session):
            result = self.processor.withdraw_excess(session, code, quantity, now=self._now())
            if not result.matched:
                raise CodeNotFound(f"Code '{code}' is not part of order {session.order_id}",
                                   code=str(code), session_id=session.id)
            return result.line, self._after_change(session)

        session, (line, completable) = self._mutate(session_id, 'withdraw excess', change)

        self.line_updated.emit(session.id, line.code, line.displayed_quantity, line.expected_quantity)
        self._notify(session, completable)

        return ScanOutcome(
            matched=True,
            line=line,
            line_status=status_of(line).value,
            session_status=session.status.value,
            completable=completable,
        )

    def confirm_excess_withdrawal(self, session_id: str, code: Any) -> Session:
        """
        Confirm the excess units of a line were physically removed.

        The line then displays expected/expected and counts as correct.
        """
        def change(session: Session):
            line = self.processor.confirm_excess_withdrawal(session, code)
            if line is None:
                raise CodeNotFound(f"Code '{code}' is not part of order {session.order_id}",
                                   code=str(code), session_id=session.id)
            return line, self._after_change(session)

        session, (line, completable) = self._mutate(session_id, 'confirm excess withdrawal', change)

        self.line_updated.emit(session.id, line.code, line.displayed_quantity, line.expected_quantity)
        self._notify(session, completable)
        return session

    def record_shortage_reason(self, session_id: str, code: Any, reason: str) -> Session:
        """Attach a reason to a short line so it counts as resolved."""
        def change(session: Session):
            line = self.processor.record_reason(session, code, reason)
            if line is None:
                raise CodeNotFound(f"Code '{code}' is not part of order {session.order_id}",
                                   code=str(code), session_id=session.id)
            return self._after_change(session)

        session, completable = self._mutate(session_id, 'record reason', change)
        self._notify(session, completable)
        return session

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> SessionSnapshot:
        """Read-only snapshot with derived line status and net elapsed time."""
        return build_snapshot(self.store.load(session_id), self._now())

    def get_summary(self, session_id: str) -> Dict[str, Any]:
        return build_summary(self.store.load(session_id), self._now())

    def scan_history(self, session_id: str) -> List[Dict[str, Any]]:
        """Scan events of a session, most recent first."""
        return scan_history(self.store.load(session_id))

    def find_open_session(self, order_id: str, kind: str = 'picking') -> Optional[Session]:
        """The unfinished session of this kind for an order, if any."""
        for session in self.store.find_by_order(str(order_id), SessionKind(kind)):
            if not is_terminal(session):
                return session
        return None
