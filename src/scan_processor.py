"""
Applies scan and adjustment events to a session's lines.

The processor is the only code that changes a line's accumulated quantity or
its excess-withdrawal flag. It resolves the scanned code through the
CodeMatcher, validates the event against the ledger rules and, if everything
passes, records the event and the updated line together. A rejected event
leaves the session exactly as it was.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, List, Optional

from code_matcher import CodeMatcher
from engine_config import EngineConfig
from exceptions import InvalidQuantity, ReasonRequired, UnrecognizedReason
from fulfillment_state import is_completable, require_accepting
import line_ledger
from logger import get_logger
from models import LineStatus, OrderLine, ScanEvent, Session

logger = get_logger(__name__)


@dataclass
class ScanResult:
    """
    Outcome of one processed scan.

    Attributes:
        session: The session after the scan (unchanged when not matched)
        matched: Whether the code resolved to a line
        line: The updated line, if matched
        event: The recorded event, if matched
        completable: Whether the session now satisfies the completion predicate
    """
    session: Session
    matched: bool
    line: Optional[OrderLine] = None
    event: Optional[ScanEvent] = None
    completable: bool = False


class ScanProcessor:
    """
    Validates and applies scans, reasons and excess confirmations.

    Attributes:
        matcher (CodeMatcher): Resolves raw codes to order lines
        config (EngineConfig): Reason catalogs and entry rules
    """

    def __init__(self, matcher: CodeMatcher, config: Optional[EngineConfig] = None):
        self.matcher = matcher
        self.config = config or EngineConfig()

    def _check_catalog(self, reason: Optional[str], allowed: List[str], kind: str,
                       code: Optional[str] = None) -> Optional[str]:
        if reason is None or not str(reason).strip():
            return None

        cleaned = str(reason).strip()
        if self.config.allow_custom_reasons:
            return cleaned

        catalog = {r.lower(): r for r in allowed}
        if cleaned.lower() not in catalog:
            raise UnrecognizedReason(
                f"Reason '{cleaned}' is not in the {kind} reason catalog",
                code=code, reason=cleaned, allowed=allowed
            )
        return catalog[cleaned.lower()]

    def validate_reason(self, reason: Optional[str], code: Optional[str] = None) -> Optional[str]:
        """
        Clean a shortage reason and check it against the catalog.

        Returns:
            The stripped reason, or None when empty

        Raises:
            UnrecognizedReason: Catalog is closed and the reason is not in it
        """
        return self._check_catalog(reason, self.config.shortage_reasons, 'shortage', code=code)

    def validate_pause_reason(self, reason: Optional[str]) -> Optional[str]:
        """Clean a pause reason and check it against the [Reasons] Pause catalog."""
        return self._check_catalog(reason, self.config.pause_reasons, 'pause')

    def resolve(self, session: Session, raw_code: Any) -> Optional[OrderLine]:
        return self.matcher.find_line(raw_code, session.lines)

    def process(self, session: Session, raw_code: Any, quantity: Any = 1,
                reason: Optional[str] = None, now: Optional[datetime] = None) -> ScanResult:
        """
        Apply one scan or manual adjustment.

        Steps:
        1. Session must be in_process/controlling
        2. Quantity must be a non-zero integer (negative = excess withdrawal)
        3. Resolve the code; no match returns matched=False and changes nothing
        4. Validate the delta and the shortage reason against the ledger
        5. Record the event and the updated line
        6. Report whether the session is now completable

        Raises:
            SessionNotActive: Session is paused, not started or finished
            InvalidQuantity: Bad quantity or negative resulting total
            ReasonRequired: Result is a shortage and no reason is known
        """
        require_accepting(session, 'scan')
        now = now or datetime.now()

        delta = line_ledger.coerce_quantity(quantity)

        line = self.resolve(session, raw_code)
        if line is None:
            logger.warning(f"Scanned code '{raw_code}' is not part of order {session.order_id}")
            return ScanResult(session=session, matched=False, completable=is_completable(session))

        reason = self.validate_reason(reason, code=line.code)
        delta = line_ledger.effective_delta(line, delta)

        event = ScanEvent(raw_code=str(raw_code), code=line.code, delta=delta, timestamp=now, reason=reason)
        updated = line_ledger.apply(line, event)
        status = line_ledger.status_of(updated)

        if self.config.require_shortage_reason and status == LineStatus.SHORTAGE and not updated.has_reason:
            raise ReasonRequired(
                f"Line {line.code} would be short "
                f"({updated.accumulated_quantity}/{updated.expected_quantity}) without a reason",
                code=line.code
            )

        session.lines[session.line_index(line)] = updated
        session.events.append(event)

        completable = is_completable(session)
        logger.info(
            f"Line {updated.code} updated: {updated.displayed_quantity}/{updated.expected_quantity} "
            f"({status.value}), delta {delta:+d}"
        )
        return ScanResult(session=session, matched=True, line=updated, event=event, completable=completable)

    def record_reason(self, session: Session, raw_code: Any, reason: str) -> Optional[OrderLine]:
        """
        Attach a shortage reason to a line without changing its quantity.

        Returns:
            The updated line, or None when the code matches no line

        Raises:
            SessionNotActive: Session is not in its active state
            ReasonRequired: Empty reason
        """
        require_accepting(session, 'record reason')

        line = self.resolve(session, raw_code)
        if line is None:
            return None

        cleaned = self.validate_reason(reason, code=line.code)
        if cleaned is None:
            raise ReasonRequired(f"An empty reason cannot resolve line {line.code}", code=line.code)

        updated = replace(line, shortage_reason=cleaned)
        session.lines[session.line_index(line)] = updated
        logger.info(f"Reason recorded for {line.code}: {cleaned}")
        return updated

    def confirm_excess_withdrawal(self, session: Session, raw_code: Any) -> Optional[OrderLine]:
        """
        Mark the excess units of a line as physically removed.

        The running total of events is left untouched; the line displays its
        expected quantity and counts as correct from now on.

        Returns:
            The updated line, or None when the code matches no line

        Raises:
            InvalidQuantity: The line has no excess
        """
        require_accepting(session, 'confirm excess withdrawal')

        line = self.resolve(session, raw_code)
        if line is None:
            return None

        if line_ledger.numeric_status_of(line) != LineStatus.EXCESS:
            raise InvalidQuantity(
                f"Line {line.code} has no excess to withdraw "
                f"({line.accumulated_quantity or 0}/{line.expected_quantity})",
                code=line.code
            )

        updated = replace(line, excess_confirmed=True)
        session.lines[session.line_index(line)] = updated
        logger.info(
            f"Excess withdrawal confirmed for {line.code}: "
            f"{line.accumulated_quantity} scanned, {line.expected_quantity} kept"
        )
        return updated

    def withdraw_excess(self, session: Session, raw_code: Any, quantity: Any,
                        now: Optional[datetime] = None) -> ScanResult:
        """
        Record removal of some excess units as a negative adjustment.

        The quantity withdrawn may not exceed the current excess.

        Raises:
            InvalidQuantity: Not a positive integer, or more than the excess
        """
        require_accepting(session, 'withdraw excess')

        units = line_ledger.coerce_quantity(quantity)
        if units < 0:
            raise InvalidQuantity("Withdrawal quantity must be positive", quantity=quantity)

        line = self.resolve(session, raw_code)
        if line is None:
            return ScanResult(session=session, matched=False, completable=is_completable(session))

        excess = (line.accumulated_quantity or 0) - line.expected_quantity
        if line.excess_confirmed or excess <= 0:
            raise InvalidQuantity(f"Line {line.code} has no excess to withdraw", code=line.code, quantity=units)
        if units > excess:
            raise InvalidQuantity(
                f"Cannot withdraw {units} units from {line.code}: excess is {excess}",
                code=line.code, quantity=units
            )

        return self.process(session, line.code, -units, now=now)
