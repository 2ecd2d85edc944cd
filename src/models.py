"""
Data model for picking and control sessions.

A Session is the aggregate root: it owns its order lines, the immutable scan
events applied to them and the pause intervals recorded while working. Line
status is never stored; line_ledger.status_of() derives it from the
quantities and the excess_confirmed flag.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class LineStatus(str, Enum):
    PENDING = 'pending'
    CORRECT = 'correct'
    SHORTAGE = 'shortage'
    EXCESS = 'excess'


class SessionKind(str, Enum):
    PICKING = 'picking'
    CONTROL = 'control'


class SessionStatus(str, Enum):
    # picking
    PENDING = 'pending'
    IN_PROCESS = 'in_process'
    COMPLETED = 'completed'
    # control
    READY = 'ready'
    CONTROLLING = 'controlling'
    FINALIZED = 'finalized'
    # shared pause sub-cycle
    PAUSED = 'paused'


@dataclass
class OrderLine:
    """
    One requested product within an order.

    Attributes:
        code: Product code as it came from the order (not normalized)
        expected_quantity: Units ordered, fixed at creation
        accumulated_quantity: Running sum of scan deltas, None until first scan
        shortage_reason: Explanation for missing units, if any
        excess_confirmed: Operator confirmed the excess units were physically removed
        description: Product description, informational only
    """
    code: str
    expected_quantity: int
    accumulated_quantity: Optional[int] = None
    shortage_reason: Optional[str] = None
    excess_confirmed: bool = False
    description: str = ''

    @property
    def displayed_quantity(self) -> int:
        """Quantity shown to operators; a confirmed withdrawal shows the expected count."""
        accumulated = self.accumulated_quantity or 0
        if self.excess_confirmed and accumulated >= self.expected_quantity:
            return self.expected_quantity
        return accumulated

    @property
    def has_reason(self) -> bool:
        return bool(self.shortage_reason and self.shortage_reason.strip())


@dataclass(frozen=True)
class ScanEvent:
    """An applied adjustment. Never edited after it is recorded."""
    raw_code: str
    code: str
    delta: int
    timestamp: datetime
    reason: Optional[str] = None


@dataclass
class PauseInterval:
    start: datetime
    reason: str
    end: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass
class Session:
    """
    One operator's pass over an order, for picking or for control.

    Attributes:
        id: Session identifier
        order_id: Order being processed
        operator_id: Operator who started the session
        kind: SessionKind.PICKING or SessionKind.CONTROL
        status: Current SessionStatus
        started_at / finished_at: Set on start and on completion
        lines: Order lines in creation order
        pauses: Pause intervals in time order
        events: Applied scan events in time order
        comment: Optional comment recorded on finish
        version: Incremented on every save, used for optimistic concurrency
    """
    id: str
    order_id: str
    kind: SessionKind
    status: SessionStatus
    operator_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    lines: List[OrderLine] = field(default_factory=list)
    pauses: List[PauseInterval] = field(default_factory=list)
    events: List[ScanEvent] = field(default_factory=list)
    comment: Optional[str] = None
    version: int = 0

    @property
    def active_pause(self) -> Optional[PauseInterval]:
        for pause in self.pauses:
            if pause.is_open:
                return pause
        return None

    def line_index(self, line: OrderLine) -> int:
        """Position of a line in this session, by identity."""
        for index, candidate in enumerate(self.lines):
            if candidate is line:
                return index
        raise ValueError(f"Line {line.code} does not belong to session {self.id}")
