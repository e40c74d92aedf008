"""Unit tests for monthly pass purchase."""

from datetime import datetime, timedelta

import pytest

from metrofare.exceptions import (
    DuplicateBooking,
    InsufficientFunds,
    InvalidRoute,
    PersistenceFailure,
)
from metrofare.services import (
    AccountLedger,
    DistanceFareCalculator,
    MonthlyPassBook,
    StationGraph,
    TicketLifecycle,
)


class TestMonthlyPassBook:
    """Test buying passes and their effect on fares."""

    @pytest.fixture(autouse=True)
    def setup_book(self, repository, clock):
        """Setup test fixtures."""
        self.repository = repository
        self.clock = clock
        graph = StationGraph(repository.load_stations(), repository.load_station_edges())
        self.ledger = AccountLedger(repository)
        self.passes = MonthlyPassBook(graph, self.ledger, repository, clock=clock)
        self.calculator = DistanceFareCalculator(graph, pass_lookup=self.passes.active_passes)
        self.tickets = TicketLifecycle(graph, self.calculator, self.ledger, repository, clock=clock)

    def test_purchase_charges_wallet(self):
        """Twenty single fares come out of the wallet; the card is untouched."""
        self.repository.add_rider("alice", wallet=500.0, card_balance=1000.0)

        monthly = self.passes.purchase("alice", "a", "b", self.calculator)

        assert monthly.price == 450.0
        assert monthly.pass_id is not None
        assert monthly.expiry_date - monthly.purchase_date == timedelta(days=30)
        assert self.repository.wallets["alice"] == 50.0
        assert self.repository.card_of("alice").balance == 1000.0
        assert self.passes.active_routes("alice") == ["a-b"]

    def test_pass_makes_trips_free(self):
        """Booking on a covered route costs nothing, in either direction."""
        self.repository.add_rider("alice", wallet=500.0)
        self.passes.purchase("alice", "a", "b", self.calculator)

        ticket = self.tickets.book("alice", "b", "a", 3, datetime(2026, 3, 10, 9, 0))

        assert ticket.fare == 0.0
        assert self.repository.wallets["alice"] == 50.0

    def test_duplicate_pass_rejected_in_reverse(self):
        """An active a-b pass also covers b-a."""
        self.repository.add_rider("alice", wallet=2000.0)
        self.passes.purchase("alice", "a", "b", self.calculator)

        with pytest.raises(DuplicateBooking):
            self.passes.purchase("alice", "b", "a", self.calculator)
        assert self.repository.wallets["alice"] == 1550.0

    def test_wallet_must_cover_price(self):
        """Passes are never paid from the card."""
        self.repository.add_rider("alice", wallet=100.0, card_balance=1000.0)

        with pytest.raises(InsufficientFunds):
            self.passes.purchase("alice", "a", "b", self.calculator)
        assert self.passes.active_routes("alice") == []

    def test_invalid_route(self):
        self.repository.add_rider("alice", wallet=1000.0)
        with pytest.raises(InvalidRoute):
            self.passes.purchase("alice", "a", "a", self.calculator)
        with pytest.raises(InvalidRoute):
            self.passes.purchase("alice", "a", "zz", self.calculator)

    def test_write_failure_refunds_price(self):
        """A pass that cannot be stored is not charged."""
        self.repository.add_rider("alice", wallet=500.0)
        self.repository.fail_on.add("persist_monthly_pass")

        with pytest.raises(PersistenceFailure):
            self.passes.purchase("alice", "a", "b", self.calculator)

        assert self.repository.wallets["alice"] == 500.0
        assert self.passes.active_routes("alice") == []

    def test_expired_pass_no_longer_applies(self):
        """After 30 days the route is charged again and can be renewed."""
        self.repository.add_rider("alice", wallet=1000.0)
        self.passes.purchase("alice", "a", "b", self.calculator)

        self.clock.advance(days=31)

        quote = self.calculator.quote("alice", "a", "b", 1, self.clock.now + timedelta(hours=14))
        assert quote.price == 22.50
        assert self.passes.active_routes("alice") == []
        self.passes.purchase("alice", "a", "b", self.calculator)
