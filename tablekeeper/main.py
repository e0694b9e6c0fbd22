"""
FastAPI Application Entry Point

TableKeeper - restaurant orders and reservations on a primary database
with a local fallback store.

Endpoints:
    - GET  /health: System health check
    - POST /api/orders, GET /api/orders, GET /api/orders/{id}
    - POST /api/orders/{id}/status, PATCH /api/orders/{id}
    - GET  /api/sales: Revenue of completed orders
    - POST /api/reservations, GET /api/reservations, GET /api/reservations/{id}
    - POST /api/reservations/{id}/status
    - GET/PUT /api/availability/{date}
    - POST /api/availability/{date}/block, POST /api/availability/{date}/unblock
    - GET  /api/clients
    - POST /admin/reconcile: Run a reconciliation pass now

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tablekeeper.container import Services, get_services
from tablekeeper.core.config import get_settings, setup_logging
from tablekeeper.core.errors import TableKeeperError
from tablekeeper.schemas import (
    AvailabilityResponse,
    BlockDateRequest,
    Client,
    DateConfiguration,
    ErrorResponse,
    HealthResponse,
    Order,
    OrderCreate,
    OrderCreateResponse,
    OrderFilter,
    OrderListResponse,
    OrderStatus,
    OrderTransitionRequest,
    OrderUpdate,
    ReconciliationReport,
    Reservation,
    ReservationCreate,
    ReservationCreateResponse,
    ReservationFilter,
    ReservationListResponse,
    ReservationStatus,
    ReservationTransitionRequest,
    SalesSummary,
)
from tablekeeper.services.notifications import get_notification_service

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Fallback store: {settings.data_directory}")
    logger.info("=" * 60)

    services = get_services()
    await services.start()
    logger.info(f"Menu Service: {services.menu.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await services.close()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Orders and table reservations that keep working through primary "
        "database outages and reconcile once it returns."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


def _ping_redis() -> None:
    client = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
    try:
        client.ping()
    finally:
        client.close()


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """Report the state of both stores and the collaborators."""
    store_health = await services.stores["orders"].health()
    primary_status = "healthy" if store_health["primary"] else "unreachable"
    fallback_status = "healthy" if store_health["fallback"] else "unreachable"

    redis_status = "healthy"
    try:
        await asyncio.to_thread(_ping_redis)
    except redis.RedisError as e:
        redis_status = f"unhealthy: {e}"
        logger.error(f"Redis health check failed: {e}")

    menu_status = "healthy" if await services.menu.health_check() else "unhealthy"
    notifications = get_notification_service()
    notification_status = "healthy" if await notifications.health_check() else "unhealthy"

    if not store_health["primary"] and not store_health["fallback"]:
        overall = "unavailable"
    elif all(s == "healthy" for s in [primary_status, fallback_status, redis_status, menu_status]):
        overall = "operational"
    else:
        overall = "degraded"

    return HealthResponse(
        status=overall,
        primary_store=primary_status,
        fallback_store=fallback_status,
        redis=redis_status,
        menu_service=menu_status,
        notification_service=notification_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    services: Services = Depends(get_services),
) -> OrderCreateResponse:
    """Place an order; prices are taken from the menu."""
    logger.info(f"Creating order for: {order_data.customer_name}")
    order = await services.orders.create_order(order_data)
    return OrderCreateResponse(
        message=f"Order #{order.id} received",
        order_id=order.id,
        total=order.total,
        status=order.status.value,
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    status: Optional[OrderStatus] = Query(None, description="Filter by status"),
    customer_email: Optional[str] = Query(None),
    active_only: bool = Query(False, description="Only pending and confirmed orders"),
    services: Services = Depends(get_services),
) -> OrderListResponse:
    orders = await services.orders.list_orders(
        OrderFilter(status=status, customer_email=customer_email, active_only=active_only)
    )
    return OrderListResponse(total=len(orders), orders=orders)


@app.get(
    "/api/orders/{order_id}",
    response_model=Order,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(order_id: int, services: Services = Depends(get_services)) -> Order:
    return await services.orders.get_order(order_id)


@app.post(
    "/api/orders/{order_id}/status",
    response_model=Order,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Change Order Status",
)
async def transition_order(
    order_id: int,
    body: OrderTransitionRequest,
    services: Services = Depends(get_services),
) -> Order:
    return await services.orders.transition_order(order_id, body.status, discount=body.discount)


@app.patch(
    "/api/orders/{order_id}",
    response_model=Order,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Edit Order",
)
async def update_order(
    order_id: int,
    changes: OrderUpdate,
    services: Services = Depends(get_services),
) -> Order:
    return await services.orders.update_order(order_id, changes)


@app.get(
    "/api/sales",
    response_model=SalesSummary,
    tags=["Orders"],
    summary="Sales Summary",
)
async def sales_summary(services: Services = Depends(get_services)) -> SalesSummary:
    return await services.reports.sales_summary()


# =============================================================================
# RESERVATION API ENDPOINTS
# =============================================================================

@app.post(
    "/api/reservations",
    response_model=ReservationCreateResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Reservations"],
    summary="Book a Table",
)
async def create_reservation(
    data: ReservationCreate,
    services: Services = Depends(get_services),
) -> ReservationCreateResponse:
    reservation = await services.reservations.create_reservation(data)
    return ReservationCreateResponse(
        message=f"Reservation #{reservation.id} requested",
        reservation_id=reservation.id,
        status=reservation.status.value,
    )


@app.get(
    "/api/reservations",
    response_model=ReservationListResponse,
    tags=["Reservations"],
)
async def list_reservations(
    status: Optional[ReservationStatus] = Query(None),
    reservation_date: Optional[date] = Query(None),
    customer_email: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> ReservationListResponse:
    reservations = await services.reservations.list_reservations(
        ReservationFilter(
            status=status,
            reservation_date=reservation_date,
            customer_email=customer_email,
        )
    )
    return ReservationListResponse(total=len(reservations), reservations=reservations)


@app.get(
    "/api/reservations/{reservation_id}",
    response_model=Reservation,
    responses=ERROR_RESPONSES,
    tags=["Reservations"],
)
async def get_reservation(
    reservation_id: int,
    services: Services = Depends(get_services),
) -> Reservation:
    return await services.reservations.get_reservation(reservation_id)


@app.post(
    "/api/reservations/{reservation_id}/status",
    response_model=Reservation,
    responses=ERROR_RESPONSES,
    tags=["Reservations"],
    summary="Change Reservation Status",
)
async def transition_reservation(
    reservation_id: int,
    body: ReservationTransitionRequest,
    services: Services = Depends(get_services),
) -> Reservation:
    return await services.reservations.transition_reservation(
        reservation_id, body.status, table_number=body.table_number
    )


# =============================================================================
# AVAILABILITY API ENDPOINTS
# =============================================================================

@app.get(
    "/api/availability/{day}",
    response_model=AvailabilityResponse,
    tags=["Availability"],
)
async def get_availability(day: date, services: Services = Depends(get_services)) -> AvailabilityResponse:
    return await services.availability.get_availability(day)


@app.put(
    "/api/availability/{day}",
    response_model=AvailabilityResponse,
    responses=ERROR_RESPONSES,
    tags=["Availability"],
    summary="Set Opening Hours and Capacity",
)
async def configure_date(
    day: date,
    config: DateConfiguration,
    services: Services = Depends(get_services),
) -> AvailabilityResponse:
    await services.availability.configure_date(day, config)
    return await services.availability.get_availability(day)


@app.post(
    "/api/availability/{day}/block",
    response_model=AvailabilityResponse,
    responses=ERROR_RESPONSES,
    tags=["Availability"],
)
async def block_date(
    day: date,
    body: BlockDateRequest,
    services: Services = Depends(get_services),
) -> AvailabilityResponse:
    await services.availability.block_date(day, body.reason)
    return await services.availability.get_availability(day)


@app.post(
    "/api/availability/{day}/unblock",
    response_model=AvailabilityResponse,
    responses=ERROR_RESPONSES,
    tags=["Availability"],
)
async def unblock_date(day: date, services: Services = Depends(get_services)) -> AvailabilityResponse:
    await services.availability.unblock_date(day)
    return await services.availability.get_availability(day)


# =============================================================================
# CLIENTS & ADMIN
# =============================================================================

@app.get("/api/clients", response_model=list[Client], tags=["Clients"])
async def list_clients(services: Services = Depends(get_services)) -> list[Client]:
    return await services.clients.list_clients()


@app.post(
    "/admin/reconcile",
    response_model=ReconciliationReport,
    tags=["Admin"],
    summary="Run Reconciliation Now",
)
async def reconcile(services: Services = Depends(get_services)) -> ReconciliationReport:
    """Replay pending fallback writes and collapse duplicated records."""
    return await services.reconciliation.run()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(TableKeeperError)
async def domain_exception_handler(request: Request, exc: TableKeeperError) -> JSONResponse:
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    body: dict[str, Any] = {
        "success": False,
        "error": "Internal Server Error",
        "detail": str(exc) if settings.debug else "An unexpected error occurred",
    }
    return JSONResponse(status_code=500, content=body)
