"""
Order Service

Business logic for the order lifecycle:

    placed -> preparing -> ready -> served -> completed
       \\________________________________/
                        |
                     canceled

Staff may set any status directly; the only automatic transition is
served -> completed when payment is marked paid. Cancellation is refused
once an order is completed or canceled.

Totals are computed from the line items when the order is placed and are
never recomputed afterwards.
"""

import logging
import math
import secrets
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tableside.core.config import get_settings
from tableside.core.exceptions import (
    AuthenticationRequired,
    NotFound,
    PermissionDenied,
    PersistenceError,
    ValidationFailed,
)
from tableside.models import (
    NON_CANCELABLE_STATUSES,
    DiningTable,
    MenuItem,
    Order,
    OrderStatus,
    PaymentStatus,
    utcnow,
)
from tableside.schemas import LineItemIn, MenuItemOut, OrderCreate
from tableside.security import CurrentUser

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


# =============================================================================
# HELPERS
# =============================================================================

def normalize_line_items(items: list[LineItemIn]) -> tuple[list[dict[str, Any]], list[str]]:
    """
    Normalize raw line items and collect validation errors.

    Names are trimmed, a missing quantity defaults to 1 and a missing
    note to "". Every invalid field produces one message; the caller
    rejects the order if any were produced.

    Returns:
        (normalized items, error messages)
    """
    normalized = []
    errors = []

    for i, item in enumerate(items):
        name = (item.name or "").strip()
        quantity = 1 if item.quantity is None else item.quantity
        label = name or f"at index {i}"

        if not name:
            errors.append(f"Item at index {i} is missing a name")
        if item.price is None or not math.isfinite(item.price) or item.price <= 0:
            errors.append(f"Item '{label}' has an invalid price")
        if quantity < 1:
            errors.append(f"Item '{label}' has an invalid quantity")

        normalized.append({
            "menu_item_id": item.menu_item_id,
            "name": name,
            "price": item.price,
            "quantity": quantity,
            "note": item.note or "",
        })

    return normalized, errors


def calculate_order_totals(items: list[dict[str, Any]], tax_rate: float = 0.0) -> dict[str, float]:
    """Calculate order subtotal, tax, and total."""
    subtotal = sum(item["price"] * item["quantity"] for item in items)
    tax = round(subtotal * tax_rate, 2)
    total = round(subtotal + tax, 2)

    return {
        "subtotal": round(subtotal, 2),
        "tax": tax,
        "total": total,
    }


def generate_order_number(prefix: str = "ORD", now: Optional[datetime] = None) -> str:
    """Build a human-readable order number, e.g. ``ORD-20261019-4F1A9C``."""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def is_order_number_collision(error: IntegrityError) -> bool:
    """True if the insert failed on the unique order number, not on another constraint."""
    return "order_number" in str(error.orig)


async def attach_menu_items(db: AsyncSession, orders: list[Order]) -> None:
    """
    Look up the menu items referenced by the orders' line items and
    attach their current details for serialization. Items whose menu
    entry no longer exists get no details.
    """
    ids = {item.get("menu_item_id") for order in orders for item in order.items or []}
    ids.discard(None)

    summaries: dict[int, MenuItemOut] = {}
    if ids:
        result = await db.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
        summaries = {mi.id: MenuItemOut.model_validate(mi) for mi in result.scalars()}

    for order in orders:
        order.menu_item_details = summaries


def parse_order_status(value: Optional[str]) -> Optional[OrderStatus]:
    """Return the matching status, or None if ``value`` is not a valid one."""
    if not value:
        return None
    try:
        return OrderStatus(value.strip().lower())
    except ValueError:
        return None


def build_export_payload(order: Order) -> dict[str, Any]:
    """Flatten an order into the row shape expected by the Excel export task."""
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "table_id": order.table_id,
        "customer_id": order.customer_id,
        "items": order.items,
        "subtotal": order.subtotal,
        "tax": order.tax,
        "total": order.total,
        "order_status": order.status.value,
        "payment_status": order.payment_status.value,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


# =============================================================================
# OPERATIONS
# =============================================================================

async def create_order(
    db: AsyncSession,
    order_data: OrderCreate,
    user: Optional[CurrentUser] = None,
) -> Order:
    """
    Validate, price and persist a new order with status ``placed``.

    Raises:
        ValidationFailed: No items, invalid items or unknown table
        PersistenceError: The order could not be saved
    """
    settings = get_settings()

    if not order_data.items:
        raise ValidationFailed("Order must contain at least one item")

    items, errors = normalize_line_items(order_data.items)
    if errors:
        raise ValidationFailed.from_messages(errors)

    if order_data.table_id is not None:
        table = await db.get(DiningTable, order_data.table_id)
        if table is None:
            raise ValidationFailed.from_messages(["Invalid table ID"])

    totals = calculate_order_totals(items, settings.tax_rate)
    if not all(math.isfinite(value) for value in totals.values()):
        raise ValidationFailed.from_messages(["Order total is out of range: items have an invalid price"])

    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order = Order(
            table_id=order_data.table_id,
            customer_id=user.id if user else None,
            order_number=generate_order_number(settings.order_number_prefix),
            items=items,
            meta=order_data.meta or {},
            subtotal=totals["subtotal"],
            tax=totals["tax"],
            total=totals["total"],
            status=OrderStatus.PLACED,
            payment_status=PaymentStatus.PENDING,
        )
        db.add(order)
        try:
            await db.commit()
            break
        except IntegrityError as e:
            await db.rollback()
            if not is_order_number_collision(e):
                logger.exception("Error saving order")
                raise PersistenceError("Failed to place order")
            logger.warning(f"Order number collision on attempt {attempt}: {order.order_number}")
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Error saving order")
            raise PersistenceError("Failed to place order")
    else:
        raise PersistenceError("Failed to place order")

    logger.info(
        f"Order {order.order_number} placed "
        f"(id={order.id}, items={len(items)}, total={order.total:.2f})"
    )
    return order


async def update_order_status(db: AsyncSession, order_id: int, status: str) -> Order:
    """
    Set an order's status (staff action).

    Raises:
        ValidationFailed: Unknown status
        NotFound: No such order
    """
    new_status = parse_order_status(status)
    if new_status is None:
        valid = ", ".join(s.value for s in OrderStatus)
        raise ValidationFailed(
            "Invalid order status",
            errors=[{"msg": f"Order status must be one of: {valid}"}],
        )

    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")

    previous = order.status
    order.status = new_status
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Error updating status of Order #{order_id}")
        raise PersistenceError("Failed to update order status")

    logger.info(f"Order #{order_id} status {previous.value} -> {new_status.value}")
    return order


async def update_order_payment(
    db: AsyncSession,
    order_id: int,
    status: str,
    method: Optional[str] = None,
) -> Order:
    """
    Record a payment state change (staff action).

    Marking a served order as paid completes it in the same transaction.

    Raises:
        ValidationFailed: Unknown payment status
        NotFound: No such order
        PersistenceError: The update could not be saved
    """
    normalized = (status or "").strip().lower()
    method = method.strip().lower() if method and method.strip() else None

    try:
        payment_status = PaymentStatus(normalized)
    except ValueError:
        valid = ", ".join(s.value for s in PaymentStatus)
        raise ValidationFailed(
            "Invalid payment status",
            errors=[{"msg": f"Payment status must be one of: {valid}"}],
        )

    result = await db.execute(
        select(Order).where(Order.id == order_id).with_for_update()
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")

    order.payment_status = payment_status
    if payment_status == PaymentStatus.PAID:
        order.paid_at = utcnow()
    elif payment_status == PaymentStatus.REFUNDED:
        order.refunded_at = utcnow()
    if method:
        order.payment_method = method

    if payment_status == PaymentStatus.PAID and order.status == OrderStatus.SERVED:
        order.status = OrderStatus.COMPLETED

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception(f"Error updating payment of Order #{order_id}")
        raise PersistenceError("Failed to update payment", errors=[{"msg": str(e)}])

    logger.info(
        f"Order #{order_id} payment -> {payment_status.value} "
        f"(method={order.payment_method}, status={order.status.value})"
    )
    return order


async def list_orders(
    db: AsyncSession,
    user: CurrentUser,
    page: int = 1,
    limit: Optional[int] = None,
    table_id: Optional[int] = None,
    status: Optional[str] = None,
) -> tuple[list[Order], dict[str, int]]:
    """
    List orders visible to ``user``, newest first.

    Staff and admins see every order and may filter by table and status;
    an unrecognized status filter is ignored. Customers only ever see
    their own orders and their filters are not applied.

    Returns:
        (orders on the requested page, pagination info)
    """
    settings = get_settings()
    page = max(page, 1)
    limit = min(limit or settings.default_page_size, settings.max_page_size)

    conditions = []
    if user.is_staff:
        if table_id is not None:
            conditions.append(Order.table_id == table_id)
        status_filter = parse_order_status(status)
        if status_filter is not None:
            conditions.append(Order.status == status_filter)
    else:
        conditions.append(Order.customer_id == user.id)

    count_query = select(func.count(Order.id)).where(*conditions)
    query = (
        select(Order)
        .options(selectinload(Order.table))
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    try:
        total = (await db.execute(count_query)).scalar() or 0
        orders = list((await db.execute(query)).scalars().all())
        await attach_menu_items(db, orders)
    except SQLAlchemyError:
        logger.exception("Error fetching orders")
        raise PersistenceError("Failed to retrieve orders")

    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }
    return orders, pagination


async def get_order(
    db: AsyncSession,
    order_id: int,
    user: Optional[CurrentUser] = None,
) -> Order:
    """
    Fetch one order, enforcing visibility.

    Staff see everything, customers see their own orders, and anonymous
    callers may only read guest orders.

    Raises:
        NotFound: No such order
        AuthenticationRequired: Anonymous caller, order belongs to a customer
        PermissionDenied: Authenticated caller is neither staff nor owner
    """
    result = await db.execute(
        select(Order).options(selectinload(Order.table)).where(Order.id == order_id)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")

    if user is not None:
        if not (user.is_staff or user.owns(order.customer_id)):
            raise PermissionDenied("Access denied to this order")
    elif order.customer_id is not None:
        raise AuthenticationRequired()

    await attach_menu_items(db, [order])
    return order


async def cancel_order(db: AsyncSession, order_id: int, user: CurrentUser) -> Order:
    """
    Cancel an order unless it is already completed or canceled.

    The status precondition is checked by the UPDATE itself, so two
    concurrent requests cannot both cancel, and a cancel cannot overwrite
    a completion that landed in between.

    Raises:
        NotFound: No such order, or the order can no longer be canceled
        PermissionDenied: Customer canceling somebody else's order
    """
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if not (user.is_staff or user.owns(order.customer_id)):
        raise PermissionDenied("Access denied to this order")

    statement = (
        update(Order)
        .where(Order.id == order_id, Order.status.notin_(NON_CANCELABLE_STATUSES))
        .values(status=OrderStatus.CANCELED, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(statement)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Error canceling Order #{order_id}")
        raise PersistenceError("Failed to cancel order")

    if result.rowcount == 0:
        raise NotFound("Order not found or cannot be canceled")

    await db.refresh(order)
    logger.info(f"Order #{order_id} canceled by {user.role.value} {user.id}")
    return order
