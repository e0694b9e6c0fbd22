"""
Pydantic Schemas

Domain entities stored by both repositories, plus the request and
response bodies of the API.

Entities round-trip unchanged through both stores: the primary keeps
them as table rows, the fallback as JSON produced by model_dump(mode="json").

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, List, Optional
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


EMAIL_PATTERN = re.compile(r'^[\w\.\+-]+@[\w\.-]+\.\w+$')


def _validate_email(v: str) -> str:
    v = v.strip()
    if not EMAIL_PATTERN.match(v):
        raise ValueError('Invalid email format')
    return v


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle: pending -> confirmed -> completed, or cancelled."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ReservationStatus(str, Enum):
    """Reservation lifecycle, identical in shape to OrderStatus."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    DINE_IN = "dine-in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"


# =============================================================================
# ENTITIES
# =============================================================================

class Entity(BaseModel):
    """Fields shared by every stored record."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., ge=1)
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        # SQLite hands back naive datetimes
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class OrderItem(BaseModel):
    """One order line with the menu name and price captured at creation."""

    model_config = ConfigDict(from_attributes=True)

    menu_item_id: int
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1, le=99)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class Order(Entity):
    items: List[OrderItem]
    customer_name: str
    customer_email: str
    order_type: OrderType = OrderType.DINE_IN
    table_number: Optional[str] = None
    notes: Optional[str] = None
    marketing_consent: bool = False
    discount: float = Field(default=0.0, ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING


class Reservation(Entity):
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    party_size: int = Field(..., ge=1)
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str] = None
    marketing_consent: bool = False
    table_number: Optional[str] = None
    status: ReservationStatus = ReservationStatus.PENDING


class AvailabilityRule(Entity):
    """Per-date override of the default opening and capacity."""

    rule_date: date
    is_available: bool = True
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    max_reservations: int = Field(default=50, ge=0)
    blocked_reason: Optional[str] = None


class Client(Entity):
    """Marketing ledger entry, keyed by exact email."""

    email: str
    name: str
    phone: Optional[str] = None
    marketing_consent: bool = True
    total_orders: int = 0
    total_spent: float = 0.0
    total_reservations: int = 0


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemRequest(BaseModel):
    """A line as sent by the caller; price comes from the menu."""
    menu_item_id: int = Field(..., ge=1, examples=[1])
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""

    items: List[OrderItemRequest] = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=100, examples=["John Doe"])
    customer_email: str = Field(..., examples=["john@example.com"])
    order_type: OrderType = Field(default=OrderType.DINE_IN)
    table_number: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)
    marketing_consent: bool = False
    discount: float = Field(default=0.0, ge=0)

    @field_validator('customer_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)


class OrderUpdate(BaseModel):
    """Admin edit of a pending or confirmed order."""

    customer_name: Optional[str] = Field(None, min_length=1, max_length=100)
    customer_email: Optional[str] = None
    order_type: Optional[OrderType] = None
    table_number: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=500)
    items: Optional[List[OrderItemRequest]] = Field(None, min_length=1)
    discount: Optional[float] = Field(None, ge=0)

    @field_validator('customer_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_email(v)


class OrderTransitionRequest(BaseModel):
    status: OrderStatus
    discount: Optional[float] = Field(None, ge=0)


class OrderFilter(BaseModel):
    status: Optional[OrderStatus] = None
    customer_email: Optional[str] = None
    active_only: bool = False

    def to_filters(self) -> dict[str, Any]:
        filters: dict[str, Any] = {}
        if self.status is not None:
            filters["status"] = self.status.value
        if self.customer_email is not None:
            filters["customer_email"] = self.customer_email
        return filters


class ReservationCreate(BaseModel):
    """Request schema for booking a table."""

    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: str
    customer_phone: Optional[str] = Field(None, max_length=20)
    party_size: int = Field(..., ge=1, le=50)
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str] = Field(None, max_length=500)
    marketing_consent: bool = False

    @field_validator('customer_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)

    @field_validator('customer_phone')
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        cleaned = re.sub(r'[^\d]', '', v)
        if len(cleaned) < 7:
            raise ValueError('Phone number must have at least 7 digits')
        return v


class ReservationTransitionRequest(BaseModel):
    status: ReservationStatus
    table_number: Optional[str] = Field(None, max_length=20)


class ReservationFilter(BaseModel):
    status: Optional[ReservationStatus] = None
    reservation_date: Optional[date] = None
    customer_email: Optional[str] = None

    def to_filters(self) -> dict[str, Any]:
        filters: dict[str, Any] = {}
        if self.status is not None:
            filters["status"] = self.status.value
        if self.reservation_date is not None:
            filters["reservation_date"] = self.reservation_date
        if self.customer_email is not None:
            filters["customer_email"] = self.customer_email
        return filters


class BlockDateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=200, examples=["holiday"])


class DateConfiguration(BaseModel):
    """Opening hours and capacity for one date."""

    open_time: Optional[time] = None
    close_time: Optional[time] = None
    max_reservations: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_hours(self) -> "DateConfiguration":
        if (self.open_time is None) != (self.close_time is None):
            raise ValueError("open_time and close_time must be given together")
        if self.open_time is not None and self.open_time > self.close_time:
            raise ValueError("open_time must not be after close_time")
        return self


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderCreateResponse(BaseModel):
    success: bool = True
    message: str
    order_id: int
    total: float
    status: str


class OrderListResponse(BaseModel):
    total: int
    orders: List[Order]


class ReservationCreateResponse(BaseModel):
    success: bool = True
    message: str
    reservation_id: int
    status: str


class ReservationListResponse(BaseModel):
    total: int
    reservations: List[Reservation]


class AvailabilityResponse(BaseModel):
    date: date
    is_available: bool
    blocked_reason: Optional[str] = None
    open_time: Optional[time] = None
    close_time: Optional[time] = None
    max_reservations: int
    booked: int
    remaining: int


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    primary_available: bool = True
    duplicates_found: int = 0
    records_removed: int = 0
    records_synced: int = 0
    conflicts_resolved: int = 0
    skipped: bool = False
    entities: dict[str, dict[str, int]] = Field(default_factory=dict)


class SalesSummary(BaseModel):
    total: float
    daily: float
    weekly: float
    monthly: float
    yearly: float
    completed_orders: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    primary_store: str
    fallback_store: str
    redis: str
    menu_service: str
    notification_service: str
    timestamp: datetime
