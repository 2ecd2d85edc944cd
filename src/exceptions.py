"""
Custom exceptions for the Fulfillment Engine.

Every failed engine operation is reported through one of these exceptions.
None of them is fatal to the process: a failed operation affects only the one
session it targeted, and the caller decides whether to retry or show the
operator a message.

Exception hierarchy:
    FulfillmentError (base)
    ├── CodeNotFound (scanned code is not part of the order)
    ├── ReasonRequired (shortage left without an explanation)
    │   └── UnrecognizedReason (reason not in the configured catalog)
    ├── InvalidQuantity (negative total, zero or non-integer quantity)
    │   └── LineAlreadyComplete (confirmed line has nothing left to add)
    ├── SessionNotActive (action not allowed in the current state)
    ├── CompletionBlocked (finish requested with unresolved lines)
    ├── ConcurrentModification (two writers raced on one session)
    ├── SessionNotFound (unknown session id)
    └── ConfigurationError (invalid config.ini values)
"""

from typing import List, Optional, Tuple


class FulfillmentError(Exception):
    """
    Base exception for all Fulfillment Engine errors.

    Allows catching every engine error with a single except clause:
        try:
            engine.scan(session_id, code)
        except FulfillmentError as e:
            show_message(e.get_display_message())
    """

    def get_display_message(self) -> str:
        """Operator-facing message. Subclasses refine it."""
        return str(self)


class CodeNotFound(FulfillmentError):
    """
    Raised when a scanned code matches no line of the session's order.

    This is recoverable and does not change session state. The operator is
    expected to physically set the item aside.

    Attributes:
        code (str): The raw code as received from the scanner or keyboard
        session_id (str | None): Session the code was scanned into
    """

    def __init__(self, message: str, code: Optional[str] = None, session_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.session_id = session_id

    def get_display_message(self) -> str:
        return (
            f"Code '{self.code}' is not part of this order.\n\n"
            f"Set the item aside and continue with the next product."
        )


class ReasonRequired(FulfillmentError):
    """
    Raised when an adjustment would leave a line short without a reason.

    Attributes:
        code (str | None): Line code the adjustment targeted
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code

    def get_display_message(self) -> str:
        return f"Product {self.code} is short. Please select a reason for the missing units."


class UnrecognizedReason(ReasonRequired):
    """
    Raised when a reason is not in the configured catalog and custom
    reasons are not allowed.

    Attributes:
        reason (str): The rejected reason text
        allowed (List[str]): The configured catalog
    """

    def __init__(self, message: str, code: Optional[str] = None,
                 reason: Optional[str] = None, allowed: Optional[List[str]] = None):
        super().__init__(message, code=code)
        self.reason = reason
        self.allowed = list(allowed or [])

    def get_display_message(self) -> str:
        options = "\n".join(f"  - {r}" for r in self.allowed)
        return f"'{self.reason}' is not a recognized reason. Choose one of:\n{options}"


class InvalidQuantity(FulfillmentError):
    """
    Raised when a quantity is not a usable integer or would drive a line's
    accumulated quantity below zero.

    Attributes:
        code (str | None): Line code the adjustment targeted
        quantity: The rejected quantity as received
    """

    def __init__(self, message: str, code: Optional[str] = None, quantity=None):
        super().__init__(message)
        self.code = code
        self.quantity = quantity


class LineAlreadyComplete(InvalidQuantity):
    """
    Raised when units are scanned for a line whose excess withdrawal was
    already confirmed and whose expected quantity is already reached.
    """

    def get_display_message(self) -> str:
        return f"The required quantity for {self.code} is already complete."


class SessionNotActive(FulfillmentError):
    """
    Raised when an action is attempted in a state that does not accept it,
    e.g. scanning while paused, pausing twice, resuming a running session,
    or touching a finished session.

    Usually indicates the caller or UI is out of sync with the engine.

    Attributes:
        session_id (str | None): Target session
        status (str | None): Session status at the time of the attempt
        action (str | None): Attempted action ("scan", "pause", ...)
    """

    def __init__(self, message: str, session_id: Optional[str] = None,
                 status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id
        self.status = status
        self.action = action

    def get_display_message(self) -> str:
        if self.status == 'paused':
            return "This session is paused. Resume it before continuing."
        return f"Cannot {self.action or 'continue'}: session is {self.status}."


class CompletionBlocked(FulfillmentError):
    """
    Raised when finish is requested but the completion predicate does not hold.

    Attributes:
        issues (List[Tuple[str, str]]): (line code, issue) pairs, where issue
            is one of "pending", "excess", "shortage"
    """

    def __init__(self, message: str, issues: Optional[List[Tuple[str, str]]] = None):
        super().__init__(message)
        self.issues = list(issues or [])

    @property
    def codes(self) -> List[str]:
        return [code for code, _ in self.issues]

    def get_display_message(self) -> str:
        if not self.issues:
            return str(self)

        labels = {
            'pending': 'not scanned yet',
            'excess': 'excess units not withdrawn',
            'shortage': 'missing units without a reason',
        }
        lines = [f"  - {code}: {labels.get(issue, issue)}" for code, issue in self.issues]
        return "The order cannot be finished yet:\n\n" + "\n".join(lines)


class ConcurrentModification(FulfillmentError):
    """
    Raised when two mutations race on the same session. Recoverable by retry.

    Attributes:
        session_id (str | None): Contended session
    """

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id

    def get_display_message(self) -> str:
        return "This order was updated from another station. Please try again."


class SessionNotFound(FulfillmentError):
    """Raised when a session id does not exist in the store."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class ConfigurationError(FulfillmentError):
    """Raised when config.ini contains values the engine cannot use."""
    pass
