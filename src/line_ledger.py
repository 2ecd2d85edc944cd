"""
Per-line quantity reconciliation.

The ledger is the single place where a line's status is decided. Presentation
code must render status_of() and never recompute it from raw quantities.
"""

from dataclasses import replace
from typing import Iterable, Optional

import pandas as pd

from exceptions import InvalidQuantity, LineAlreadyComplete
from logger import get_logger
from models import LineStatus, OrderLine, ScanEvent

logger = get_logger(__name__)

EVENT_COLUMNS = ['code', 'quantity', 'reason', 'last_scan', 'scans']


def status_of(line: OrderLine) -> LineStatus:
    """
    Derive a line's status from (expected, accumulated, excess_confirmed).

    - excess withdrawal confirmed and at least the expected units -> correct
    - nothing expected -> correct
    - never scanned -> pending
    - fewer / more / equal units -> shortage / excess / correct
    """
    if line.excess_confirmed and (line.accumulated_quantity or 0) >= line.expected_quantity:
        return LineStatus.CORRECT
    if line.expected_quantity == 0:
        return LineStatus.CORRECT
    if line.accumulated_quantity is None:
        return LineStatus.PENDING
    if line.accumulated_quantity < line.expected_quantity:
        return LineStatus.SHORTAGE
    if line.accumulated_quantity > line.expected_quantity:
        return LineStatus.EXCESS
    return LineStatus.CORRECT


def numeric_status_of(line: OrderLine) -> LineStatus:
    """Status from the quantities alone, ignoring the excess override."""
    return status_of(replace(line, excess_confirmed=False))


def is_resolved(line: OrderLine, status: Optional[LineStatus] = None) -> bool:
    """A line is resolved when correct, or short with a documented reason."""
    status = status or status_of(line)
    if status == LineStatus.CORRECT:
        return True
    return status == LineStatus.SHORTAGE and line.has_reason


def coerce_quantity(quantity, code: Optional[str] = None) -> int:
    """
    Validate a quantity received from the input surface.

    Accepts ints and integral strings ("3", " -2 "). Booleans, floats with a
    fractional part, NaN/inf and zero are rejected.

    Raises:
        InvalidQuantity: The value is not a usable non-zero integer
    """
    if isinstance(quantity, bool):
        raise InvalidQuantity(f"Quantity must be an integer, got {quantity!r}", code=code, quantity=quantity)

    if isinstance(quantity, int):
        value = quantity
    elif isinstance(quantity, float):
        if quantity != quantity or quantity in (float('inf'), float('-inf')) or not quantity.is_integer():
            raise InvalidQuantity(f"Quantity must be a whole number, got {quantity!r}", code=code, quantity=quantity)
        value = int(quantity)
    elif isinstance(quantity, str):
        try:
            value = int(quantity.strip())
        except ValueError:
            raise InvalidQuantity(f"Quantity must be a whole number, got {quantity!r}", code=code, quantity=quantity)
    else:
        raise InvalidQuantity(f"Quantity must be an integer, got {quantity!r}", code=code, quantity=quantity)

    if value == 0:
        raise InvalidQuantity("Quantity must not be zero", code=code, quantity=quantity)
    return value


def effective_delta(line: OrderLine, delta: int) -> int:
    """
    Delta that will actually be recorded for this line.

    A positive delta on an excess-confirmed line is capped at the units still
    missing, so a withdrawn excess cannot silently come back.

    Raises:
        InvalidQuantity: The running total would become negative
        LineAlreadyComplete: Confirmed line with nothing left to add
    """
    current = line.accumulated_quantity or 0

    if delta > 0 and line.excess_confirmed:
        room = line.expected_quantity - current
        if room <= 0:
            raise LineAlreadyComplete(
                f"Line {line.code} is already complete ({line.expected_quantity} units)",
                code=line.code, quantity=delta
            )
        if delta > room:
            logger.info(f"Capping scan for {line.code}: {delta} -> {room} (excess already withdrawn)")
            delta = room

    if current + delta < 0:
        raise InvalidQuantity(
            f"Adjustment of {delta} would leave {line.code} at {current + delta} units",
            code=line.code, quantity=delta
        )
    return delta


def apply(line: OrderLine, event: ScanEvent) -> OrderLine:
    """
    Apply one scan event and return the updated line. The input is not modified.

    The accumulated quantity is the sum of all deltas. A non-empty reason on
    the event replaces the line's reason (most recent wins). A confirmed
    withdrawal is dropped once the total falls below the expected quantity,
    so the shortage shows up again.
    """
    delta = effective_delta(line, event.delta)
    reason = event.reason if event.reason and event.reason.strip() else line.shortage_reason
    total = (line.accumulated_quantity or 0) + delta

    excess_confirmed = line.excess_confirmed and total >= line.expected_quantity
    if line.excess_confirmed and not excess_confirmed:
        logger.info(f"Line {line.code} dropped below {line.expected_quantity} units, withdrawal confirmation cleared")

    return replace(
        line,
        accumulated_quantity=total,
        shortage_reason=reason,
        excess_confirmed=excess_confirmed,
    )


def aggregate_events(events: Iterable[ScanEvent]) -> pd.DataFrame:
    """
    Group raw scan events per line code for display.

    Quantities are summed. The reason is the most recent non-empty one.
    Rows are ordered most-recent-first.

    Returns:
        DataFrame with columns: code, quantity, reason, last_scan, scans
    """
    rows = [
        {'code': e.code, 'delta': e.delta, 'timestamp': e.timestamp, 'reason': e.reason}
        for e in events
    ]
    if not rows:
        return pd.DataFrame(columns=EVENT_COLUMNS)

    df = pd.DataFrame(rows).sort_values('timestamp', kind='stable')
    blank = df['reason'].fillna('').astype(str).str.strip() == ''
    df['reason'] = df['reason'].where(~blank)

    grouped = df.groupby('code', sort=False).agg(
        quantity=('delta', 'sum'),
        reason=('reason', 'last'),
        last_scan=('timestamp', 'max'),
        scans=('delta', 'size'),
    ).reset_index()

    grouped['reason'] = grouped['reason'].astype(object).where(grouped['reason'].notna(), None)
    return grouped.sort_values('last_scan', ascending=False, kind='stable').reset_index(drop=True)[EVENT_COLUMNS]
