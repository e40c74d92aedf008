"""Services package for the metro fare system."""

from .station_graph import NO_ROUTE, StationGraph
from .fare_calculator import (
    FareCalculatorInterface,
    DistanceFareCalculator
)
from .account_ledger import AccountLedger
from .ticket_lifecycle import TicketLifecycle
from .monthly_passes import MonthlyPassBook
from .login_throttle import LoginThrottle

__all__ = [
    'NO_ROUTE',
    'StationGraph',
    'FareCalculatorInterface',
    'DistanceFareCalculator',
    'AccountLedger',
    'TicketLifecycle',
    'MonthlyPassBook',
    'LoginThrottle'
]
