"""
Pydantic Schemas for Request/Response Validation

Request bodies are deliberately lenient about line items: names, prices and
quantities are checked by the order service so that every problem in an
order is reported at once.
"""

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tableside.models import OrderStatus, PaymentStatus

T = TypeVar("T")


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class LineItemIn(BaseModel):
    """Single item in an order, as sent by the client."""
    menu_item_id: int = Field(..., ge=1, examples=[3])
    name: Optional[str] = Field(default="", max_length=100, examples=["Margherita"])
    price: Optional[float] = Field(default=None, examples=[12.5])
    quantity: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("quantity", "qty"),
        examples=[2],
    )
    note: Optional[str] = Field(default=None, max_length=200)


class OrderCreate(BaseModel):
    """Request schema for placing an order."""
    table_id: Optional[int] = Field(default=None, ge=1, examples=[4])
    items: Optional[list[LineItemIn]] = Field(default=None)
    meta: Optional[dict[str, Any]] = Field(default=None)


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., examples=["preparing"])


class OrderPaymentUpdate(BaseModel):
    status: str = Field(..., examples=["paid"])
    method: Optional[str] = Field(default=None, max_length=30, examples=["card"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class Totals(BaseModel):
    subtotal: float
    tax: float
    total: float


class PaymentOut(BaseModel):
    status: PaymentStatus
    method: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class TableSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    table_number: int
    qr_slug: str


class TableOut(TableSummary):
    seats: int
    occupied: bool


class MenuItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    price: float
    category: Optional[str]
    available: bool
    image_url: Optional[str]


class LineItemOut(BaseModel):
    menu_item_id: int
    name: str
    price: float
    quantity: int
    note: str = ""
    menu_item: Optional[MenuItemOut] = None


class OrderOut(BaseModel):
    """Full order representation."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    table_id: Optional[int]
    customer_id: Optional[str]
    items: list[LineItemOut] = Field(validation_alias=AliasChoices("line_items", "items"))
    totals: Totals
    status: OrderStatus
    payment: PaymentOut
    meta: dict[str, Any]
    created_at: datetime
    updated_at: Optional[datetime]
    table: Optional[TableSummary] = None


class OrderPlaced(BaseModel):
    """Summary returned right after an order is placed."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    status: OrderStatus
    totals: Totals
    created_at: datetime


class OrderStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: OrderStatus


class OrderPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment: PaymentOut
    status: OrderStatus


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


# =============================================================================
# ENVELOPES
# =============================================================================

class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope."""
    success: bool = True
    message: Optional[str] = None
    data: T


class OrderListResponse(ApiResponse[list[OrderOut]]):
    pagination: Pagination


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    message: str
    errors: Optional[list[dict[str, Any]]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    timestamp: datetime
