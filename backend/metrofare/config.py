"""Configuration for the metro fare system."""

from datetime import date
from typing import Dict, Tuple
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings."""

    # API Settings
    API_TITLE = "Metro Fare & Payment Engine"
    API_VERSION = "1.0.0"
    API_DESCRIPTION = (
        "Fare computation, route distance and wallet/card settlement for metro bookings"
    )

    # Database Settings
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./metrofare.db")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Route search: "dijkstra" (weighted) or "bfs" (first-reached by hop order)
    ROUTE_ALGORITHM = os.getenv("ROUTE_ALGORITHM", "dijkstra").lower()

    # Fare pipeline
    FARE_PER_KM = 5.0
    PEAK_HOUR_BANDS: Tuple[Tuple[int, int], ...] = ((8, 10), (17, 19))
    PEAK_MULTIPLIER = 1.20
    OFF_PEAK_MULTIPLIER = 0.90
    SPECIAL_DATE_MULTIPLIERS: Dict[date, float] = {
        date(2025, 12, 31): 1.25,  # New Year's Eve surcharge
        date(2025, 8, 15): 0.85,  # Independence Day discount
    }
    # (min passengers, max passengers or None, multiplier)
    GROUP_DISCOUNTS = (
        (5, 9, 0.95),
        (10, None, 0.90),
    )

    # Booking constraints
    MAX_PASSENGERS_PER_BOOKING = 15
    MAX_ACTIVE_TICKETS = 15

    # Refunds
    FULL_REFUND_NOTICE_HOURS = 24
    EARLY_REFUND_RATE = 0.80
    LATE_REFUND_RATE = 0.50

    # Loyalty
    LOYALTY_EVERY_N_TICKETS = 10
    LOYALTY_BONUS = 50.0

    # Monthly passes
    MONTHLY_PASS_TRIPS = 20
    MONTHLY_PASS_DAYS = 30

    # Balances
    MAX_RECHARGE_AMOUNT = 5000.0
    DEFAULT_MIN_THRESHOLD = 50.0

    # Login lockout
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "3"))
    LOCKOUT_SECONDS = float(os.getenv("LOCKOUT_SECONDS", "15"))

    # Demo network loaded on first database init
    DEFAULT_STATIONS = [
        # code, name, has_restrooms, has_parking, has_wifi
        ("a", "Motera Stadium", True, True, True),
        ("b", "Central Market", False, True, False),
        ("c", "Residential Area", True, False, True),
        ("d", "Commercial District", False, True, True),
        ("e", "University Campus", True, True, False),
    ]
    DEFAULT_EDGES = [
        ("a", "b", 5),
        ("b", "c", 3),
        ("c", "d", 7),
        ("d", "e", 4),
        ("a", "e", 12),
    ]

    @classmethod
    def is_peak_hour(cls, hour: int) -> bool:
        """Check whether an hour of day falls inside a peak band."""
        return any(start <= hour <= end for start, end in cls.PEAK_HOUR_BANDS)

    @classmethod
    def special_date_multiplier(cls, travel_date: date) -> float:
        """Multiplier for an exact calendar date, 1.0 when the date is not special."""
        return cls.SPECIAL_DATE_MULTIPLIERS.get(travel_date, 1.0)

    @classmethod
    def group_multiplier(cls, passengers: int) -> float:
        """Group booking discount for a passenger count."""
        for low, high, multiplier in cls.GROUP_DISCOUNTS:
            if passengers >= low and (high is None or passengers <= high):
                return multiplier
        return 1.0


settings = Settings()
