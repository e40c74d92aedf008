"""Database models and setup for the metro fare system."""

from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Tuple
import os

import structlog
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from metrofare.config import settings
from metrofare.exceptions import PersistenceFailure
from metrofare.models import CardState, MonthlyPass, RiderAccount, Role, Station, Ticket

logger = structlog.get_logger(__name__)

Base = declarative_base()


class StationDB(Base):
    """Database model for stations."""
    __tablename__ = "stations"

    code = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    has_restrooms = Column(Boolean, nullable=False, default=False)
    has_parking = Column(Boolean, nullable=False, default=False)
    has_wifi = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Station(code={self.code}, name={self.name})>"


class StationEdgeDB(Base):
    """Database model for an undirected track segment between two stations."""
    __tablename__ = "station_edges"

    id = Column(Integer, primary_key=True, index=True)
    station_a = Column(String, ForeignKey("stations.code"), nullable=False)
    station_b = Column(String, ForeignKey("stations.code"), nullable=False)
    distance_km = Column(Integer, nullable=False)

    # Stored once per pair with station_a < station_b
    __table_args__ = (
        UniqueConstraint('station_a', 'station_b', name='_station_pair_uc'),
    )

    def __repr__(self):
        return f"<StationEdge({self.station_a}<->{self.station_b}, {self.distance_km} km)>"


class RiderDB(Base):
    """Database model for riders and their wallet."""
    __tablename__ = "riders"

    username = Column(String, primary_key=True)
    role = Column(String, nullable=False, default=Role.USER.value)
    wallet_balance = Column(Float, nullable=False, default=0.0)


class MetroCardDB(Base):
    """Database model for stored-value cards."""
    __tablename__ = "metro_cards"

    card_id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, ForeignKey("riders.username"), unique=True, nullable=False)
    balance = Column(Float, nullable=False, default=0.0)
    auto_recharge_enabled = Column(Boolean, nullable=False, default=False)
    min_threshold = Column(Float, nullable=False, default=settings.DEFAULT_MIN_THRESHOLD)


class TicketDB(Base):
    """Database model for tickets."""
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, ForeignKey("riders.username"), nullable=False, index=True)
    source = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    passengers = Column(Integer, nullable=False)
    fare = Column(Float, nullable=False)
    travel_time = Column(DateTime, nullable=False)
    cancelled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    payment_source = Column(String, nullable=True)


class MonthlyPassDB(Base):
    """Database model for monthly passes."""
    __tablename__ = "monthly_passes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, ForeignKey("riders.username"), nullable=False, index=True)
    source = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    purchase_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    price = Column(Float, nullable=False)


class DatabaseManager:
    """Manager class for database operations; implements MetroRepository."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or os.getenv(
            "DATABASE_URL",
            settings.DATABASE_URL
        )

        # Create engine with appropriate settings for SQLite
        engine_kwargs = {}
        if "sqlite" in self.database_url:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if self.database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.database_url, **engine_kwargs)

        # Create session factory
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def _session_scope(self, action: str):
        """Session that commits on success and maps driver errors to PersistenceFailure."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("persistence_failed", action=action, error=str(e))
            raise PersistenceFailure(f"{action} failed: {e}") from e
        finally:
            session.close()

    def dispose(self):
        """Release pooled connections."""
        self.engine.dispose()

    def init_default_network(self):
        """Initialize database with the demo station network."""
        with self._session_scope("init_default_network") as session:
            if session.query(StationDB).count() == 0:
                for code, name, restrooms, parking, wifi in settings.DEFAULT_STATIONS:
                    session.add(StationDB(
                        code=code,
                        name=name,
                        has_restrooms=restrooms,
                        has_parking=parking,
                        has_wifi=wifi
                    ))
                session.flush()
                for station_a, station_b, distance in settings.DEFAULT_EDGES:
                    a, b = sorted([station_a, station_b])
                    session.add(StationEdgeDB(station_a=a, station_b=b, distance_km=distance))
                logger.info(
                    "default_network_initialized",
                    stations=len(settings.DEFAULT_STATIONS),
                    edges=len(settings.DEFAULT_EDGES)
                )

    # Stations

    def load_stations(self) -> List[Station]:
        """Retrieve all stations without neighbor data."""
        with self._session_scope("load_stations") as session:
            return [
                Station(
                    code=row.code,
                    name=row.name,
                    description=row.description or "",
                    has_restrooms=row.has_restrooms,
                    has_parking=row.has_parking,
                    has_wifi=row.has_wifi
                )
                for row in session.query(StationDB).order_by(StationDB.code).all()
            ]

    def load_station_edges(self) -> List[Tuple[str, str, int]]:
        """Retrieve every edge once as (station_a, station_b, distance_km)."""
        with self._session_scope("load_station_edges") as session:
            return [
                (edge.station_a, edge.station_b, edge.distance_km)
                for edge in session.query(StationEdgeDB).order_by(StationEdgeDB.id).all()
            ]

    def save_station(self, station: Station) -> None:
        """Insert or update a station's catalogue entry."""
        with self._session_scope("save_station") as session:
            row = session.get(StationDB, station.code)
            if row is None:
                row = StationDB(code=station.code)
                session.add(row)
            row.name = station.name
            row.description = station.description
            row.has_restrooms = station.has_restrooms
            row.has_parking = station.has_parking
            row.has_wifi = station.has_wifi

    def save_station_edge(self, station_a: str, station_b: str, distance_km: int) -> None:
        """Insert or update an undirected edge."""
        a, b = sorted([station_a, station_b])
        with self._session_scope("save_station_edge") as session:
            edge = session.query(StationEdgeDB).filter_by(station_a=a, station_b=b).first()
            if edge:
                edge.distance_km = distance_km
            else:
                session.add(StationEdgeDB(station_a=a, station_b=b, distance_km=distance_km))

    # Riders and balances

    def create_rider(self, username: str, wallet: float = 0.0, card_balance: float = 0.0,
                     auto_recharge_enabled: bool = False,
                     min_threshold: Optional[float] = None,
                     role: Role = Role.USER) -> RiderAccount:
        """Create a rider together with their card."""
        threshold = settings.DEFAULT_MIN_THRESHOLD if min_threshold is None else min_threshold
        with self._session_scope("create_rider") as session:
            session.add(RiderDB(username=username, role=role.value, wallet_balance=wallet))
            card = MetroCardDB(
                username=username,
                balance=card_balance,
                auto_recharge_enabled=auto_recharge_enabled,
                min_threshold=threshold
            )
            session.add(card)
            session.flush()
            card_id = card.card_id
        logger.info("rider_created", username=username, card_id=card_id)
        return RiderAccount(
            username=username,
            role=role,
            wallet=wallet,
            card=CardState(
                card_id=card_id,
                balance=card_balance,
                auto_recharge_enabled=auto_recharge_enabled,
                min_threshold=threshold
            )
        )

    def load_rider_balances(self, username: str) -> Optional[RiderAccount]:
        """Load a rider's wallet and card, or None when the rider is unknown."""
        with self._session_scope("load_rider_balances") as session:
            rider = session.get(RiderDB, username)
            if rider is None:
                return None
            card = session.query(MetroCardDB).filter_by(username=username).first()
            if card is None:
                return None
            return RiderAccount(
                username=rider.username,
                role=Role(rider.role),
                wallet=rider.wallet_balance,
                card=CardState(
                    card_id=card.card_id,
                    balance=card.balance,
                    auto_recharge_enabled=card.auto_recharge_enabled,
                    min_threshold=card.min_threshold
                )
            )

    def persist_wallet_balance(self, username: str, new_balance: float) -> None:
        """Write a rider's wallet balance."""
        with self._session_scope("persist_wallet_balance") as session:
            updated = session.query(RiderDB).filter_by(username=username).update(
                {RiderDB.wallet_balance: new_balance}
            )
            if updated == 0:
                raise PersistenceFailure(f"No rider '{username}' to update")

    def persist_card_state(self, card: CardState) -> None:
        """Write a card's balance and auto-recharge settings."""
        with self._session_scope("persist_card_state") as session:
            updated = session.query(MetroCardDB).filter_by(card_id=card.card_id).update({
                MetroCardDB.balance: card.balance,
                MetroCardDB.auto_recharge_enabled: card.auto_recharge_enabled,
                MetroCardDB.min_threshold: card.min_threshold,
            })
            if updated == 0:
                raise PersistenceFailure(f"No card #{card.card_id} to update")

    # Tickets

    def persist_ticket(self, ticket: Ticket) -> int:
        """Insert a confirmed ticket and return its generated id."""
        with self._session_scope("persist_ticket") as session:
            row = TicketDB(
                username=ticket.username,
                source=ticket.source,
                destination=ticket.destination,
                passengers=ticket.passengers,
                fare=ticket.fare,
                travel_time=ticket.travel_time,
                cancelled=ticket.cancelled,
                created_at=ticket.created_at,
                payment_source=ticket.payment_source.value if ticket.payment_source else None
            )
            session.add(row)
            session.flush()
            return row.id

    def persist_ticket_cancellation(self, ticket_id: int) -> None:
        """Mark a ticket as cancelled."""
        with self._session_scope("persist_ticket_cancellation") as session:
            updated = session.query(TicketDB).filter_by(id=ticket_id).update(
                {TicketDB.cancelled: True}
            )
            if updated == 0:
                raise PersistenceFailure(f"No ticket #{ticket_id} to cancel")

    def load_tickets(self, username: str) -> List[Ticket]:
        """Retrieve all tickets of a rider, oldest first."""
        with self._session_scope("load_tickets") as session:
            rows = session.query(TicketDB).filter_by(username=username).order_by(TicketDB.id).all()
            return [
                Ticket(
                    ticket_id=row.id,
                    username=row.username,
                    source=row.source,
                    destination=row.destination,
                    passengers=row.passengers,
                    fare=row.fare,
                    travel_time=row.travel_time,
                    cancelled=row.cancelled,
                    created_at=row.created_at,
                    payment_source=row.payment_source
                )
                for row in rows
            ]

    # Monthly passes

    def persist_monthly_pass(self, monthly_pass: MonthlyPass) -> int:
        """Insert a monthly pass and return its generated id."""
        with self._session_scope("persist_monthly_pass") as session:
            row = MonthlyPassDB(
                username=monthly_pass.username,
                source=monthly_pass.source,
                destination=monthly_pass.destination,
                purchase_date=monthly_pass.purchase_date,
                expiry_date=monthly_pass.expiry_date,
                price=monthly_pass.price
            )
            session.add(row)
            session.flush()
            return row.id

    def load_active_monthly_passes(self, username: str, as_of: datetime) -> List[MonthlyPass]:
        """Retrieve passes of a rider that have not expired at `as_of`."""
        with self._session_scope("load_active_monthly_passes") as session:
            rows = session.query(MonthlyPassDB).filter(
                MonthlyPassDB.username == username,
                MonthlyPassDB.expiry_date > as_of
            ).order_by(MonthlyPassDB.id).all()
            return [
                MonthlyPass(
                    pass_id=row.id,
                    username=row.username,
                    source=row.source,
                    destination=row.destination,
                    purchase_date=row.purchase_date,
                    expiry_date=row.expiry_date,
                    price=row.price
                )
                for row in rows
            ]
