"""
SQLAlchemy Database Models

Primary store tables. Every table carries two identifiers:
- pk: store-assigned surrogate key, used to break ties between duplicates
- id: caller-visible logical id, indexed but deliberately not unique

Duplicated logical ids can appear when records written to the fallback
store during an outage are replayed into the primary. The reconciliation
engine collapses them.

Author: Khalil Bannouri
Version: 1.0.0
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Time, Text, Boolean, JSON

from tablekeeper.database import Base


class RecordMixin:
    """Identifier and timestamp columns shared by every table."""

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(Integer, nullable=False, index=True)

    # Set by the application so both stores hold identical values
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)


class OrderRecord(RecordMixin, Base):
    """
    Main Order table.

    Line items keep the menu name and price captured when the order was
    placed, so later menu edits never change an existing total.
    """
    __tablename__ = "orders"

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    marketing_consent = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    order_type = Column(String(20), default="dine-in", nullable=False)
    table_number = Column(String(20), nullable=True)
    items = Column(JSON, nullable=False)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(String(20), default="pending", nullable=False, index=True)

    def __repr__(self):
        return f"<Order #{self.id} (pk={self.pk}) - {self.customer_name} - {self.status}>"


class ReservationRecord(RecordMixin, Base):
    """Table reservations."""
    __tablename__ = "reservations"

    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=True)
    marketing_consent = Column(Boolean, default=False, nullable=False)

    party_size = Column(Integer, nullable=False)
    reservation_date = Column(Date, nullable=False, index=True)
    reservation_time = Column(Time, nullable=False)
    special_requests = Column(Text, nullable=True)
    table_number = Column(String(20), nullable=True)

    status = Column(String(20), default="pending", nullable=False, index=True)

    def __repr__(self):
        return f"<Reservation #{self.id} (pk={self.pk}) - {self.reservation_date} {self.status}>"


class AvailabilityRuleRecord(RecordMixin, Base):
    """Per-date opening hours, capacity and blocks."""
    __tablename__ = "availability_rules"

    rule_date = Column(Date, nullable=False, index=True)
    is_available = Column(Boolean, default=True, nullable=False)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    max_reservations = Column(Integer, nullable=False, default=50)
    blocked_reason = Column(String(200), nullable=True)

    def __repr__(self):
        return f"<AvailabilityRule {self.rule_date} available={self.is_available}>"


class ClientRecord(RecordMixin, Base):
    """Marketing-consented customers, one row per email."""
    __tablename__ = "clients"

    email = Column(String(255), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    marketing_consent = Column(Boolean, default=True, nullable=False)
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(Float, nullable=False, default=0.0)
    total_reservations = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<Client {self.email} orders={self.total_orders}>"
