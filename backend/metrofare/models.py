"""Models for the metro fare and payment system."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def naive_local(value: datetime) -> datetime:
    """All timestamps are naive local time; offset-aware ones are converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class Role(str, Enum):
    """Account role; roles share identity fields only."""
    USER = "user"
    ADMIN = "admin"
    SUPPORT = "support"


class PaymentSource(str, Enum):
    """Where the money for a settlement came from."""
    WALLET = "wallet"
    CARD = "card"
    SPLIT = "split"


class TicketStatus(str, Enum):
    """Ticket lifecycle states."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Station(BaseModel):
    """Model representing a metro station."""
    code: str = Field(..., min_length=1, description="Unique station code")
    name: str = Field(..., description="Display name")
    description: str = ""
    has_restrooms: bool = False
    has_parking: bool = False
    has_wifi: bool = False
    neighbors: Dict[str, int] = Field(
        default_factory=dict,
        description="Neighbor station code -> distance in km"
    )


class FareQuote(BaseModel):
    """Immutable price for one trip request."""
    model_config = ConfigDict(frozen=True)

    username: str
    source: str
    destination: str
    passengers: int = Field(..., ge=1)
    travel_time: datetime
    distance_km: int = Field(0, ge=0)
    price: float = Field(..., ge=0, description="Fare rounded to 2 decimals")
    monthly_pass_applied: bool = False
    modifiers: Tuple[str, ...] = ()

    @field_validator("travel_time")
    @classmethod
    def validate_travel_time(cls, v):
        return naive_local(v)


class CardState(BaseModel):
    """Stored-value card half of a rider's balance pair."""
    card_id: int
    balance: float = Field(0.0, ge=0)
    auto_recharge_enabled: bool = False
    min_threshold: float = Field(50.0, ge=0)


class RiderAccount(BaseModel):
    """A rider's balance pair: wallet and card."""
    model_config = ConfigDict(validate_assignment=True)

    username: str
    role: Role = Role.USER
    wallet: float = Field(0.0, ge=0)
    card: CardState


class Settlement(BaseModel):
    """Result of one atomic payment transaction against a balance pair."""
    model_config = ConfigDict(frozen=True)

    username: str
    source: PaymentSource
    amount: float
    card_portion: float = 0.0
    wallet_portion: float = 0.0
    auto_recharge: float = 0.0
    loyalty_credit: float = 0.0
    wallet_before: float
    card_before: float
    wallet_after: float
    card_after: float


class Ticket(BaseModel):
    """Model representing a booked journey."""
    ticket_id: Optional[int] = None
    username: str
    source: str
    destination: str
    passengers: int = Field(..., ge=1)
    fare: float = Field(..., ge=0)
    travel_time: datetime
    cancelled: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    payment_source: Optional[PaymentSource] = None

    @field_validator("travel_time", "created_at")
    @classmethod
    def validate_times(cls, v):
        return naive_local(v)

    @property
    def status(self) -> TicketStatus:
        if self.cancelled:
            return TicketStatus.CANCELLED
        if self.ticket_id is None:
            return TicketStatus.PENDING
        return TicketStatus.CONFIRMED

    @property
    def route(self) -> str:
        return f"{self.source}-{self.destination}"


class MonthlyPass(BaseModel):
    """Prepaid route override that zeroes fares until expiry."""
    pass_id: Optional[int] = None
    username: str
    source: str
    destination: str
    purchase_date: datetime
    expiry_date: datetime
    price: float = Field(..., ge=0)

    @field_validator("purchase_date", "expiry_date")
    @classmethod
    def validate_dates(cls, v):
        return naive_local(v)

    @property
    def route(self) -> str:
        return f"{self.source}-{self.destination}"

    def is_active(self, as_of: datetime) -> bool:
        return self.expiry_date > naive_local(as_of)


class CancellationResult(BaseModel):
    """Outcome of a cancellation request."""
    ticket_id: int
    refund: float
    already_cancelled: bool = False
    wallet_balance: float


class JourneyStats(BaseModel):
    """Summary of a rider's booking history."""
    username: str
    total_trips: int
    active_trips: int
    cancelled_trips: int
    total_spent: float
    most_frequent_route: Optional[str] = None


class LoginAttemptState(BaseModel):
    """Failed-attempt counter and lock expiry for one username."""
    username: str
    attempts: int = Field(0, ge=0)
    locked_until: Optional[datetime] = None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


class LoginResult(BaseModel):
    """Outcome of a single login attempt."""
    username: str
    success: bool
    attempts: int = Field(..., ge=0)
    locked: bool = False


class FareQuoteRequest(BaseModel):
    """Request model for a fare quote."""
    username: str
    source: str
    destination: str
    passengers: int = Field(1, ge=1)
    travel_time: datetime

    @field_validator("travel_time")
    @classmethod
    def validate_travel_time(cls, v):
        return naive_local(v)


class BookingRequest(FareQuoteRequest):
    """Request model for booking a ticket."""
    prefer_card: bool = True


class AmountRequest(BaseModel):
    """Request model for recharges."""
    amount: float = Field(..., gt=0, description="Amount to add")


class AutoRechargeRequest(BaseModel):
    """Request model for card auto-recharge settings."""
    enabled: bool
    min_threshold: Optional[float] = Field(None, ge=0)


class EdgeRequest(BaseModel):
    """Request model for adding or updating a track segment."""
    station_a: str
    station_b: str
    distance_km: int = Field(..., gt=0)

    @model_validator(mode="after")
    def validate_distinct(self):
        if self.station_a == self.station_b:
            raise ValueError("An edge must join two different stations")
        return self


class MonthlyPassRequest(BaseModel):
    """Request model for buying a monthly pass."""
    source: str
    destination: str

    @field_validator("source", "destination")
    @classmethod
    def validate_code(cls, v):
        v = v.strip().lower()
        if not v:
            raise ValueError("Station code must not be empty")
        return v


class BalancesResponse(BaseModel):
    """Response model for a rider's balances."""
    username: str
    wallet: float
    card: CardState
    active_monthly_passes: List[str] = []
