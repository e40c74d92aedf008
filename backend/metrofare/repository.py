"""Storage collaborator contract consumed by the services."""

from datetime import datetime
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from metrofare.models import CardState, MonthlyPass, RiderAccount, Station, Ticket


@runtime_checkable
class MetroRepository(Protocol):
    """
    Interface for durable storage (Dependency Inversion Principle).
    Implementations are synchronous and raise PersistenceFailure on failure.
    """

    def load_stations(self) -> List[Station]:
        ...

    def load_station_edges(self) -> List[Tuple[str, str, int]]:
        ...

    def save_station(self, station: Station) -> None:
        ...

    def save_station_edge(self, station_a: str, station_b: str, distance_km: int) -> None:
        ...

    def load_rider_balances(self, username: str) -> Optional[RiderAccount]:
        ...

    def persist_wallet_balance(self, username: str, new_balance: float) -> None:
        ...

    def persist_card_state(self, card: CardState) -> None:
        ...

    def persist_ticket(self, ticket: Ticket) -> int:
        ...

    def persist_ticket_cancellation(self, ticket_id: int) -> None:
        ...

    def load_tickets(self, username: str) -> List[Ticket]:
        ...

    def persist_monthly_pass(self, monthly_pass: MonthlyPass) -> int:
        ...

    def load_active_monthly_passes(self, username: str, as_of: datetime) -> List[MonthlyPass]:
        ...
