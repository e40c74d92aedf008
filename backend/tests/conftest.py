"""Shared fixtures for the metro fare tests."""

import itertools
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import pytest

from metrofare.config import settings
from metrofare.exceptions import PersistenceFailure
from metrofare.models import CardState, MonthlyPass, RiderAccount, Station, Ticket
from metrofare.services import StationGraph


class FixedClock:
    """Settable clock standing in for datetime.now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class InMemoryRepository:
    """MetroRepository kept in dicts; `fail_on` names operations that should fail."""

    def __init__(self):
        self.stations: Dict[str, Station] = {}
        self.edges: Dict[tuple, int] = {}
        self.wallets: Dict[str, float] = {}
        self.cards: Dict[int, CardState] = {}
        self.card_owner: Dict[str, int] = {}
        self.tickets: Dict[int, Ticket] = {}
        self.passes: Dict[int, MonthlyPass] = {}
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []
        self._ids = itertools.count(1)

    def _call(self, name: str):
        self.calls.append(name)
        if name in self.fail_on:
            raise PersistenceFailure(f"{name} failed")

    def seed_demo_network(self):
        for code, name, restrooms, parking, wifi in settings.DEFAULT_STATIONS:
            self.stations[code] = Station(code=code, name=name, has_restrooms=restrooms,
                                          has_parking=parking, has_wifi=wifi)
        for a, b, km in settings.DEFAULT_EDGES:
            self.edges[tuple(sorted((a, b)))] = km
        return self

    def add_rider(self, username: str, wallet: float = 0.0, card_balance: float = 0.0,
                  auto_recharge_enabled: bool = False, min_threshold: float = 50.0):
        card_id = next(self._ids)
        self.wallets[username] = wallet
        self.cards[card_id] = CardState(card_id=card_id, balance=card_balance,
                                        auto_recharge_enabled=auto_recharge_enabled,
                                        min_threshold=min_threshold)
        self.card_owner[username] = card_id

    def card_of(self, username: str) -> CardState:
        return self.cards[self.card_owner[username]]

    def load_stations(self):
        self._call("load_stations")
        return list(self.stations.values())

    def load_station_edges(self):
        self._call("load_station_edges")
        return [(a, b, km) for (a, b), km in self.edges.items()]

    def save_station(self, station):
        self._call("save_station")
        self.stations[station.code] = station

    def save_station_edge(self, station_a, station_b, distance_km):
        self._call("save_station_edge")
        self.edges[tuple(sorted((station_a, station_b)))] = distance_km

    def load_rider_balances(self, username) -> Optional[RiderAccount]:
        self._call("load_rider_balances")
        if username not in self.wallets:
            return None
        return RiderAccount(username=username, wallet=self.wallets[username],
                            card=self.card_of(username).model_copy())

    def persist_wallet_balance(self, username, new_balance):
        self._call("persist_wallet_balance")
        self.wallets[username] = new_balance

    def persist_card_state(self, card):
        self._call("persist_card_state")
        self.cards[card.card_id] = card.model_copy()

    def persist_ticket(self, ticket):
        self._call("persist_ticket")
        ticket_id = next(self._ids)
        self.tickets[ticket_id] = ticket.model_copy(update={"ticket_id": ticket_id})
        return ticket_id

    def persist_ticket_cancellation(self, ticket_id):
        self._call("persist_ticket_cancellation")
        self.tickets[ticket_id].cancelled = True

    def load_tickets(self, username):
        self._call("load_tickets")
        return [t.model_copy() for t in self.tickets.values() if t.username == username]

    def persist_monthly_pass(self, monthly_pass):
        self._call("persist_monthly_pass")
        pass_id = next(self._ids)
        self.passes[pass_id] = monthly_pass.model_copy(update={"pass_id": pass_id})
        return pass_id

    def load_active_monthly_passes(self, username, as_of):
        self._call("load_active_monthly_passes")
        return [p for p in self.passes.values() if p.username == username and p.is_active(as_of)]


@pytest.fixture
def clock():
    """Clock fixed at midnight on an ordinary weekday."""
    return FixedClock(datetime(2026, 3, 2, 0, 0))


@pytest.fixture
def repository():
    return InMemoryRepository().seed_demo_network()


@pytest.fixture
def demo_graph():
    stations = [
        Station(code=code, name=name) for code, name, *_ in settings.DEFAULT_STATIONS
    ]
    return StationGraph(stations, settings.DEFAULT_EDGES)
