"""Application context wiring the services together."""

from datetime import datetime
from typing import Callable, Optional

import structlog

from metrofare.config import settings
from metrofare.database import DatabaseManager
from metrofare.exceptions import InvalidRoute
from metrofare.models import LoginResult, Station
from metrofare.repository import MetroRepository
from metrofare.services import (
    AccountLedger,
    DistanceFareCalculator,
    LoginThrottle,
    MonthlyPassBook,
    StationGraph,
    TicketLifecycle,
)
from metrofare.services.station_graph import validate_edge

logger = structlog.get_logger(__name__)


class AppContext:
    """
    Explicitly constructed holder of the graph, balances and tickets.

    Created on start-up and passed by reference; `close()` tears it down.
    """

    def __init__(self, repository: MetroRepository,
                 clock: Callable[[], datetime] = datetime.now,
                 route_algorithm: Optional[str] = None,
                 lockout_seconds: Optional[float] = None):
        self.repository = repository
        self.clock = clock
        self.graph = StationGraph(
            repository.load_stations(),
            repository.load_station_edges(),
            algorithm=route_algorithm or settings.ROUTE_ALGORITHM
        )
        self.ledger = AccountLedger(repository)
        self.passes = MonthlyPassBook(self.graph, self.ledger, repository, clock=clock)
        self.calculator = DistanceFareCalculator(self.graph, pass_lookup=self.passes.active_passes)
        self.tickets = TicketLifecycle(
            self.graph, self.calculator, self.ledger, repository, clock=clock
        )
        self.login_throttle = LoginThrottle(lockout_seconds=lockout_seconds)
        logger.info("context_started", stations=len(self.graph.stations()),
                    route_algorithm=self.graph.algorithm)

    @classmethod
    def from_database_url(cls, database_url: Optional[str] = None, **kwargs) -> "AppContext":
        """Build a context on a SQLAlchemy database, seeding the demo network."""
        db_manager = DatabaseManager(database_url)
        db_manager.init_default_network()
        return cls(db_manager, **kwargs)

    def save_station(self, station: Station):
        """Admin edit: store a station, then publish it to the graph."""
        self.repository.save_station(station)
        self.graph.add_or_update_station(station)

    def save_edge(self, station_a: str, station_b: str, distance_km: int):
        """Admin edit: store a track segment, then publish it to the graph."""
        validate_edge(station_a, station_b, distance_km)
        for code in (station_a, station_b):
            if not self.graph.is_valid_station(code):
                raise InvalidRoute(f"Unknown station: {code}")
        self.repository.save_station_edge(station_a, station_b, distance_km)
        self.graph.add_or_update_edge(station_a, station_b, distance_km)

    def login(self, username: str, verify: Callable[[], bool]) -> LoginResult:
        """
        Session-start hook: run a credential check through the lockout.

        Credentials live with the caller; `verify` only reports whether
        they matched and is not called while the username is locked.
        """
        return self.login_throttle.attempt(username, verify)

    def close(self):
        """Cancel timers and release storage."""
        self.login_throttle.shutdown()
        dispose = getattr(self.repository, "dispose", None)
        if dispose is not None:
            dispose()
        logger.info("context_closed")
