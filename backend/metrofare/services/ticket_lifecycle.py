"""Booking confirmation and cancellation of tickets."""

from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from metrofare.config import settings
from metrofare.exceptions import (
    CapacityExceeded, DuplicateBooking, InvalidRoute, MetroError, PersistenceFailure,
    TicketNotFound,
)
from metrofare.models import CancellationResult, JourneyStats, Ticket, naive_local
from metrofare.repository import MetroRepository
from metrofare.services.account_ledger import AccountLedger
from metrofare.services.fare_calculator import FareCalculatorInterface
from metrofare.services.station_graph import StationGraph

logger = structlog.get_logger(__name__)


class TicketLifecycle:
    """
    Ticket state machine: PENDING -> CONFIRMED | REJECTED, CONFIRMED -> CANCELLED.

    A rider's ticket list is only read or changed while holding that
    rider's ledger lock, so booking checks, payment and the ticket write
    happen as one step per rider.
    """

    def __init__(self, graph: StationGraph, calculator: FareCalculatorInterface,
                 ledger: AccountLedger, repository: MetroRepository,
                 clock: Callable[[], datetime] = datetime.now):
        self.graph = graph
        self.calculator = calculator
        self.ledger = ledger
        self.repository = repository
        self.clock = clock
        self._tickets: Dict[str, List[Ticket]] = {}

    def _tickets_for(self, username: str) -> List[Ticket]:
        # Caller holds the rider lock
        tickets = self._tickets.get(username)
        if tickets is None:
            tickets = self._tickets[username] = self.repository.load_tickets(username)
        return tickets

    def tickets(self, username: str) -> List[Ticket]:
        """All tickets of a rider, oldest first."""
        with self.ledger.locked(username):
            return [t.model_copy() for t in self._tickets_for(username)]

    def book(self, username: str, source: str, destination: str, passengers: int,
             travel_time: datetime, prefer_card: bool = True) -> Ticket:
        """
        Book and pay for a ticket.

        Returns:
            The confirmed ticket with its stored id

        Raises:
            CapacityExceeded: too many passengers or active tickets
            InvalidRoute: unknown stations, same station, or no route
            DuplicateBooking: same route and date already actively booked
            InsufficientFunds: payment could not be settled
            PersistenceFailure: the ticket could not be stored; payment is undone
        """
        if passengers > settings.MAX_PASSENGERS_PER_BOOKING:
            raise CapacityExceeded(
                f"Cannot book more than {settings.MAX_PASSENGERS_PER_BOOKING} "
                f"passengers in a single booking"
            )
        if passengers < 1:
            raise CapacityExceeded("A booking needs at least one passenger")
        travel_time = naive_local(travel_time)

        with self.ledger.locked(username):
            tickets = self._tickets_for(username)
            active = [t for t in tickets if not t.cancelled]
            if len(active) >= settings.MAX_ACTIVE_TICKETS:
                raise CapacityExceeded(
                    f"Only {settings.MAX_ACTIVE_TICKETS} active bookings are allowed; "
                    f"cancel existing tickets to book more"
                )

            if not self.graph.is_valid_station(source) or not self.graph.is_valid_station(destination):
                raise InvalidRoute(f"Invalid source or destination station code: {source}, {destination}")
            if source == destination:
                raise InvalidRoute("Source and destination stations cannot be the same")

            if any(
                t.source == source
                and t.destination == destination
                and t.travel_time.date() == travel_time.date()
                for t in active
            ):
                raise DuplicateBooking(
                    f"Journey {source}-{destination} is already booked for {travel_time.date()}"
                )

            quote = self.calculator.quote(username, source, destination, passengers, travel_time)

            bonus = 0.0
            if (len(tickets) + 1) % settings.LOYALTY_EVERY_N_TICKETS == 0:
                bonus = settings.LOYALTY_BONUS

            try:
                settlement = self.ledger.settle(username, quote.price, prefer_card, bonus=bonus)
            except MetroError as e:
                logger.info("booking_rejected", username=username, source=source,
                            destination=destination, reason=str(e))
                raise

            ticket = Ticket(
                username=username,
                source=source,
                destination=destination,
                passengers=passengers,
                fare=quote.price,
                travel_time=travel_time,
                created_at=self.clock(),
                payment_source=settlement.source
            )
            try:
                ticket.ticket_id = self.repository.persist_ticket(ticket)
            except PersistenceFailure:
                self.ledger.revert(settlement)
                logger.error("booking_rolled_back", username=username, amount=quote.price)
                raise
            tickets.append(ticket)

        logger.info("ticket_confirmed", ticket_id=ticket.ticket_id, username=username,
                    route=ticket.route, passengers=passengers, fare=ticket.fare,
                    payment_source=settlement.source.value)
        if bonus:
            logger.info("loyalty_credited", username=username, amount=bonus,
                        confirmed_tickets=len(tickets))
        return ticket.model_copy()

    def refund_for(self, ticket: Ticket, now: Optional[datetime] = None) -> float:
        """Refund owed if the ticket were cancelled at `now`."""
        now = naive_local(now or self.clock())
        notice = ticket.travel_time - now
        if notice >= timedelta(hours=settings.FULL_REFUND_NOTICE_HOURS):
            rate = settings.EARLY_REFUND_RATE
        else:
            rate = settings.LATE_REFUND_RATE
        return round(ticket.fare * rate, 2)

    def cancel(self, username: str, ticket_id: int, now: Optional[datetime] = None,
               actor: Optional[str] = None) -> CancellationResult:
        """
        Cancel a ticket and refund the wallet.

        Refunds always go to the wallet whatever paid for the ticket. A
        second cancellation is a no-op that refunds nothing.
        """
        with self.ledger.locked(username) as account:
            ticket = next(
                (t for t in self._tickets_for(username) if t.ticket_id == ticket_id),
                None
            )
            if ticket is None:
                raise TicketNotFound(f"No ticket #{ticket_id} for '{username}'")
            if ticket.cancelled:
                logger.info("cancellation_ignored", ticket_id=ticket_id, username=username)
                return CancellationResult(
                    ticket_id=ticket_id,
                    refund=0.0,
                    already_cancelled=True,
                    wallet_balance=account.wallet
                )

            refund = self.refund_for(ticket, now)
            wallet_before = account.wallet
            wallet = self.ledger.credit_wallet(username, refund, reason=f"refund ticket #{ticket_id}")
            try:
                self.repository.persist_ticket_cancellation(ticket_id)
            except PersistenceFailure:
                self.ledger.restore_wallet(username, wallet_before)
                raise
            ticket.cancelled = True

        logger.info("ticket_cancelled", ticket_id=ticket_id, username=username,
                    refund=refund, actor=actor or username)
        return CancellationResult(ticket_id=ticket_id, refund=refund, wallet_balance=wallet)

    def journey_stats(self, username: str) -> JourneyStats:
        """Totals over a rider's booking history."""
        tickets = self.tickets(username)
        active = [t for t in tickets if not t.cancelled]
        routes = Counter(t.route for t in tickets)
        most_frequent = routes.most_common(1)[0][0] if routes else None
        return JourneyStats(
            username=username,
            total_trips=len(tickets),
            active_trips=len(active),
            cancelled_trips=len(tickets) - len(active),
            total_spent=round(sum(t.fare for t in active), 2),
            most_frequent_route=most_frequent
        )
