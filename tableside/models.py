"""
SQLAlchemy Database Models

Orders with their line items, payment sub-record and lifecycle status,
plus the dining tables and menu items that orders reference.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Text,
    Enum,
    Boolean,
    JSON,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from tableside.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PLACED = "placed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELED = "canceled"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    """Payment state of an order, set by staff."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Orders in these states can no longer be canceled
NON_CANCELABLE_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELED)


class DiningTable(Base):
    """
    A physical table in the restaurant.

    Guests reach the menu by scanning the table's QR code, which carries
    ``qr_slug``; the resolved table id is then attached to their orders.
    """
    __tablename__ = "dining_tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    table_number = Column(Integer, nullable=False, unique=True)
    qr_slug = Column(String(64), nullable=False, unique=True, index=True)
    seats = Column(Integer, nullable=False, default=4)
    occupied = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<DiningTable #{self.table_number} ({self.qr_slug})>"


class MenuItem(Base):
    """Menu entry referenced by order line items. Managed outside this service."""
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    category = Column(String(50), nullable=True, index=True)
    available = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<MenuItem #{self.id} {self.name} {self.price:.2f}>"


class Order(Base):
    """
    Main Order table.

    ``items`` holds the ordered line items as placed: menu item id, a name
    snapshot, unit price, quantity and note. The totals columns are derived
    from them once, at creation.
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)

    # =========================================================================
    # ATTRIBUTION
    # =========================================================================
    table_id = Column(
        Integer,
        ForeignKey("dining_tables.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    customer_id = Column(String(64), nullable=True, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False, default=list)
    meta = Column(JSON, nullable=False, default=dict)

    # =========================================================================
    # TOTALS
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PLACED,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(String(30), nullable=True)  # cash, card, ...
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    table = relationship(DiningTable)

    @property
    def totals(self) -> dict[str, float]:
        return {"subtotal": self.subtotal, "tax": self.tax, "total": self.total}

    @property
    def payment(self) -> dict:
        return {
            "status": self.payment_status,
            "method": self.payment_method,
            "paid_at": self.paid_at,
            "refunded_at": self.refunded_at,
        }

    @property
    def line_items(self) -> list[dict]:
        details = getattr(self, "menu_item_details", {})
        return [{**item, "menu_item": details.get(item.get("menu_item_id"))} for item in self.items or []]

    def __repr__(self):
        return f"<Order #{self.id} {self.order_number} - {self.status.value}>"
