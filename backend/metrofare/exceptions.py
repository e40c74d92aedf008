"""Error taxonomy for the metro fare system.

Every error here is recoverable by the caller: the API layer reports it and
the rider retries with different inputs.
"""

from typing import Optional


class MetroError(Exception):
    """Base class for all domain errors."""


class InvalidRoute(MetroError):
    """Unknown station, same-station trip, or no positive-distance route."""


class InsufficientFunds(MetroError):
    """Settlement cannot be completed under the current payment policy."""

    def __init__(self, message: str, shortfall: float = 0.0):
        super().__init__(message)
        self.shortfall = round(max(shortfall, 0.0), 2)


class DuplicateBooking(MetroError):
    """An equivalent active booking or monthly pass already exists."""


class CapacityExceeded(MetroError):
    """Passenger count or active-ticket limit exceeded."""


class AlreadyCancelled(MetroError):
    """Ticket was already cancelled."""


class AccountLocked(MetroError):
    """Username is temporarily locked after repeated failed logins."""

    def __init__(self, username: str, retry_after: Optional[float] = None):
        super().__init__(f"Account '{username}' is locked after repeated failed logins")
        self.username = username
        self.retry_after = retry_after


class PersistenceFailure(MetroError):
    """The storage collaborator rejected or failed a write or read."""


class UnknownRider(MetroError, LookupError):
    """No balance pair is stored for the username."""


class TicketNotFound(MetroError, LookupError):
    """No ticket with the given id belongs to the rider."""
