"""Monthly pass purchase and lookup."""

from datetime import datetime, timedelta
import threading
from typing import Callable, Dict, List

import structlog

from metrofare.config import settings
from metrofare.exceptions import DuplicateBooking, InvalidRoute, PersistenceFailure
from metrofare.models import MonthlyPass
from metrofare.repository import MetroRepository
from metrofare.services.account_ledger import AccountLedger
from metrofare.services.fare_calculator import FareCalculatorInterface
from metrofare.services.station_graph import StationGraph

logger = structlog.get_logger(__name__)


class MonthlyPassBook:
    """Keeps each rider's passes and sells new ones from the wallet."""

    def __init__(self, graph: StationGraph, ledger: AccountLedger,
                 repository: MetroRepository,
                 clock: Callable[[], datetime] = datetime.now):
        self.graph = graph
        self.ledger = ledger
        self.repository = repository
        self.clock = clock
        self._passes: Dict[str, List[MonthlyPass]] = {}
        self._lock = threading.Lock()

    def _passes_for(self, username: str) -> List[MonthlyPass]:
        with self._lock:
            passes = self._passes.get(username)
            if passes is None:
                passes = self._passes[username] = self.repository.load_active_monthly_passes(
                    username, self.clock()
                )
            return list(passes)

    def active_passes(self, username: str, as_of: datetime) -> List[MonthlyPass]:
        """Passes of a rider still valid at `as_of`."""
        return [p for p in self._passes_for(username) if p.is_active(as_of)]

    def active_routes(self, username: str) -> List[str]:
        return [p.route for p in self.active_passes(username, self.clock())]

    def purchase(self, username: str, source: str, destination: str,
                 calculator: FareCalculatorInterface) -> MonthlyPass:
        """
        Buy a 30-day pass for a route, paid from the wallet.

        Raises:
            InvalidRoute: unknown or identical stations
            DuplicateBooking: an active pass already covers the route
            InsufficientFunds: wallet cannot pay the pass price
        """
        if not self.graph.is_valid_station(source) or not self.graph.is_valid_station(destination):
            raise InvalidRoute("Invalid stations.")
        if source == destination:
            raise InvalidRoute("Source and destination stations cannot be the same.")

        with self.ledger.locked(username):
            now = self.clock()
            route = {source, destination}
            if any({p.source, p.destination} == route for p in self.active_passes(username, now)):
                raise DuplicateBooking("You already have an active monthly pass for this route.")

            price = calculator.monthly_pass_price(username, source, destination, now)
            settlement = self.ledger.settle(username, price, prefer_card=False)

            monthly_pass = MonthlyPass(
                username=username,
                source=source,
                destination=destination,
                purchase_date=now,
                expiry_date=now + timedelta(days=settings.MONTHLY_PASS_DAYS),
                price=price
            )
            try:
                monthly_pass.pass_id = self.repository.persist_monthly_pass(monthly_pass)
            except PersistenceFailure:
                self.ledger.revert(settlement)
                raise
            with self._lock:
                self._passes.setdefault(username, []).append(monthly_pass)

        logger.info("monthly_pass_purchased", username=username, route=monthly_pass.route,
                    price=price, pass_id=monthly_pass.pass_id,
                    expiry_date=monthly_pass.expiry_date.isoformat())
        return monthly_pass
