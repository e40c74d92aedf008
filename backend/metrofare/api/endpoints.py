"""API endpoints for fares, bookings and balances."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from metrofare.context import AppContext
from metrofare.exceptions import AlreadyCancelled, InvalidRoute
from metrofare.models import (
    AmountRequest,
    AutoRechargeRequest,
    BalancesResponse,
    BookingRequest,
    CancellationResult,
    CardState,
    EdgeRequest,
    FareQuote,
    FareQuoteRequest,
    JourneyStats,
    MonthlyPass,
    MonthlyPassRequest,
    Station,
    Ticket,
)
from metrofare.services import NO_ROUTE

router = APIRouter(prefix="/api", tags=["Metro Fares"])


def get_context(request: Request) -> AppContext:
    """
    Dependency injection for the application context.
    The context is created in the app lifespan and stored on app.state.
    """
    return request.app.state.context


@router.get("/stations", response_model=List[Station])
def list_stations(ctx: AppContext = Depends(get_context)) -> List[Station]:
    """List stations with amenities and neighbor distances."""
    return ctx.graph.stations()


@router.put("/stations", response_model=Station)
def save_station(station: Station, ctx: AppContext = Depends(get_context)) -> Station:
    """Add a station or update its details (admin)."""
    ctx.save_station(station)
    return ctx.graph.get_station(station.code)


@router.put("/stations/edges")
def save_edge(edge: EdgeRequest, ctx: AppContext = Depends(get_context)):
    """
    Add or reweight the track segment between two stations (admin).

    Args:
        edge: Both station codes and the distance in km

    Returns:
        The stored edge
    """
    ctx.save_edge(edge.station_a, edge.station_b, edge.distance_km)
    return {
        "station_a": edge.station_a,
        "station_b": edge.station_b,
        "distance_km": edge.distance_km,
        "message": "Edge saved"
    }


@router.get("/distance")
def get_distance(
    source: str = Query(...),
    destination: str = Query(...),
    ctx: AppContext = Depends(get_context)
):
    """Route distance between two stations."""
    distance = ctx.graph.distance(source, destination)
    if distance == NO_ROUTE:
        raise InvalidRoute(f"No route between {source} and {destination}")
    return {
        "source": source,
        "destination": destination,
        "distance_km": distance,
        "algorithm": ctx.graph.algorithm
    }


@router.post("/fares/quote", response_model=FareQuote)
def quote_fare(request: FareQuoteRequest, ctx: AppContext = Depends(get_context)) -> FareQuote:
    """
    Price a trip without booking it.

    Args:
        request: Rider, route, passenger count and travel time

    Returns:
        FareQuote with applied modifiers
    """
    try:
        return ctx.calculator.quote(
            request.username,
            request.source,
            request.destination,
            request.passengers,
            request.travel_time
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/tickets", response_model=Ticket)
def book_ticket(request: BookingRequest, ctx: AppContext = Depends(get_context)) -> Ticket:
    """Book and pay for a ticket."""
    return ctx.tickets.book(
        request.username,
        request.source,
        request.destination,
        request.passengers,
        request.travel_time,
        prefer_card=request.prefer_card
    )


@router.post("/riders/{username}/tickets/{ticket_id}/cancel", response_model=CancellationResult)
def cancel_ticket(username: str, ticket_id: int,
                  ctx: AppContext = Depends(get_context)) -> CancellationResult:
    """Cancel a ticket; the refund is credited to the wallet."""
    result = ctx.tickets.cancel(username, ticket_id)
    if result.already_cancelled:
        raise AlreadyCancelled(f"Ticket #{ticket_id} is already cancelled")
    return result


@router.post("/admin/riders/{username}/tickets/{ticket_id}/cancel",
             response_model=CancellationResult)
def admin_cancel_ticket(username: str, ticket_id: int,
                        ctx: AppContext = Depends(get_context)) -> CancellationResult:
    """Cancel any rider's ticket on their behalf (admin)."""
    result = ctx.tickets.cancel(username, ticket_id, actor="admin")
    if result.already_cancelled:
        raise AlreadyCancelled(f"Ticket #{ticket_id} is already cancelled")
    return result


@router.get("/riders/{username}/tickets", response_model=List[Ticket])
def list_tickets(username: str, ctx: AppContext = Depends(get_context)) -> List[Ticket]:
    """All tickets of a rider."""
    return ctx.tickets.tickets(username)


@router.get("/riders/{username}/stats", response_model=JourneyStats)
def journey_stats(username: str, ctx: AppContext = Depends(get_context)) -> JourneyStats:
    """Booking history summary."""
    return ctx.tickets.journey_stats(username)


@router.get("/riders/{username}/balances", response_model=BalancesResponse)
def get_balances(username: str, ctx: AppContext = Depends(get_context)) -> BalancesResponse:
    """Wallet, card and active monthly passes of a rider."""
    account = ctx.ledger.balances(username)
    return BalancesResponse(
        username=username,
        wallet=account.wallet,
        card=account.card,
        active_monthly_passes=ctx.passes.active_routes(username)
    )


@router.post("/riders/{username}/wallet/recharge")
def recharge_wallet(username: str, request: AmountRequest,
                    ctx: AppContext = Depends(get_context)):
    """Add money to the wallet."""
    try:
        wallet = ctx.ledger.recharge_wallet(username, request.amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"username": username, "wallet": wallet}


@router.post("/riders/{username}/card/recharge")
def recharge_card(username: str, request: AmountRequest,
                  ctx: AppContext = Depends(get_context)):
    """Add money to the card."""
    try:
        balance = ctx.ledger.recharge_card(username, request.amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"username": username, "card_balance": balance}


@router.put("/riders/{username}/card/auto-recharge", response_model=CardState)
def configure_auto_recharge(username: str, request: AutoRechargeRequest,
                            ctx: AppContext = Depends(get_context)) -> CardState:
    """Enable or disable card auto-recharge."""
    return ctx.ledger.configure_auto_recharge(username, request.enabled, request.min_threshold)


@router.post("/riders/{username}/monthly-passes", response_model=MonthlyPass)
def buy_monthly_pass(username: str, request: MonthlyPassRequest,
                     ctx: AppContext = Depends(get_context)) -> MonthlyPass:
    """Buy a 30-day monthly pass, paid from the wallet."""
    return ctx.passes.purchase(username, request.source, request.destination, ctx.calculator)


@router.get("/health")
def health_check(ctx: AppContext = Depends(get_context)):
    """Health check endpoint including station network status."""
    return {
        "status": "healthy",
        "service": "Metro Fare & Payment Engine",
        "stations": len(ctx.graph.stations()),
        "route_algorithm": ctx.graph.algorithm
    }
