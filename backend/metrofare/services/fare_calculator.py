"""Fare calculation service implementing business logic."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, List, Protocol, runtime_checkable

import structlog

from metrofare.config import settings
from metrofare.exceptions import InvalidRoute
from metrofare.models import FareQuote, MonthlyPass, naive_local
from metrofare.services.station_graph import StationGraph

logger = structlog.get_logger(__name__)

PassLookup = Callable[[str, datetime], Iterable[MonthlyPass]]


def _no_passes(username: str, as_of: datetime) -> List[MonthlyPass]:
    return []


@runtime_checkable
class FareCalculatorInterface(Protocol):
    """
    Interface for fare calculation (Dependency Inversion Principle).
    This protocol defines the contract that all fare calculators must follow.
    """

    def quote(self, username: str, source: str, destination: str,
              passengers: int, travel_time: datetime) -> FareQuote:
        """Price one trip request."""
        ...

    def monthly_pass_price(self, username: str, source: str, destination: str,
                           as_of: datetime) -> float:
        """Price a monthly pass for a route."""
        ...


class BaseFareCalculator(ABC):
    """
    Abstract base class for fare calculators (Open/Closed Principle).

    The modifier chain is fixed; subclasses only decide the base fare.
    Each modifier multiplies the running total, so the order matters:
    pass override, base fare, peak/off-peak, special date, group discount.
    """

    def __init__(self, graph: StationGraph, pass_lookup: PassLookup = _no_passes):
        self.graph = graph
        self.pass_lookup = pass_lookup

    @abstractmethod
    def base_fare(self, distance_km: int, passengers: int) -> float:
        """
        Fare before time, calendar and group modifiers.
        Must be implemented by subclasses.
        """
        pass

    def has_pass(self, username: str, source: str, destination: str, as_of: datetime) -> bool:
        """Check for an active pass covering the route in either direction."""
        route = {source, destination}
        return any(
            {p.source, p.destination} == route
            for p in self.pass_lookup(username, as_of)
        )

    def quote(self, username: str, source: str, destination: str,
              passengers: int, travel_time: datetime) -> FareQuote:
        """
        Price a trip.

        Args:
            username: Rider requesting the trip
            source: Origin station code
            destination: Destination station code
            passengers: Number of travellers, at least 1
            travel_time: When the trip happens

        Returns:
            FareQuote with the price rounded to 2 decimals

        Raises:
            InvalidRoute: unknown station, same station or no route
        """
        if passengers < 1:
            raise ValueError(f"Passenger count must be at least 1, got {passengers}")
        travel_time = naive_local(travel_time)

        if self.has_pass(username, source, destination, travel_time):
            logger.info("monthly_pass_applied", username=username, source=source, destination=destination)
            return FareQuote(
                username=username,
                source=source,
                destination=destination,
                passengers=passengers,
                travel_time=travel_time,
                price=0.0,
                monthly_pass_applied=True,
                modifiers=("monthly_pass",)
            )

        distance = self.graph.distance(source, destination)
        if distance <= 0:
            raise InvalidRoute(f"No valid route found between {source} and {destination}")

        total = self.base_fare(distance, passengers)
        modifiers = []

        if settings.is_peak_hour(travel_time.hour):
            total *= settings.PEAK_MULTIPLIER
            modifiers.append("peak")
        else:
            total *= settings.OFF_PEAK_MULTIPLIER
            modifiers.append("off_peak")

        special = settings.special_date_multiplier(travel_time.date())
        if special != 1.0:
            total *= special
            modifiers.append(f"special_date x{special}")

        group = settings.group_multiplier(passengers)
        if group != 1.0:
            total *= group
            modifiers.append(f"group x{group}")

        return FareQuote(
            username=username,
            source=source,
            destination=destination,
            passengers=passengers,
            travel_time=travel_time,
            distance_km=distance,
            price=round(total, 2),
            modifiers=tuple(modifiers)
        )

    def monthly_pass_price(self, username: str, source: str, destination: str,
                           as_of: datetime) -> float:
        """Bulk price of a pass: a single-passenger quote times the trip count."""
        single = self.quote(username, source, destination, 1, as_of)
        return round(single.price * settings.MONTHLY_PASS_TRIPS, 2)


class DistanceFareCalculator(BaseFareCalculator):
    """
    Concrete calculator charging a flat rate per km per passenger.
    Follows Single Responsibility Principle - only handles fare calculation.
    """

    def base_fare(self, distance_km: int, passengers: int) -> float:
        return distance_km * passengers * settings.FARE_PER_KM
