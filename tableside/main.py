"""
FastAPI Application Entry Point

Tableside Orders - order management for dine-in restaurant ordering.

Endpoints:
    - POST   /api/orders: Place an order (guest or authenticated)
    - GET    /api/orders: List orders (staff: all, customers: their own)
    - GET    /api/orders/{id}: Get one order
    - PATCH  /api/orders/{id}/status: Update order status (staff/admin)
    - PATCH  /api/orders/{id}/payment: Update payment state (staff/admin)
    - POST   /api/orders/{id}/cancel: Cancel an order (owner or staff/admin)
    - GET    /api/tables/{qr_slug}: Resolve a table from its QR slug
    - GET    /api/menu/items: Browse the menu
    - GET    /health: System health check
"""

import logging
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from kombu.exceptions import OperationalError as BrokerError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from tableside.core.config import get_settings, setup_logging
from tableside.core.exceptions import TablesideError
from tableside.database import get_db, init_db, engine
from tableside.models import Order
from tableside.schemas import (
    ApiResponse,
    ErrorResponse,
    HealthResponse,
    MenuItemOut,
    OrderCreate,
    OrderListResponse,
    OrderOut,
    OrderPaymentOut,
    OrderPaymentUpdate,
    OrderPlaced,
    OrderStatusOut,
    OrderStatusUpdate,
    Pagination,
    TableOut,
)
from tableside.security import CurrentUser, get_optional_user, require_staff, require_user
from tableside.services import catalog, orders as order_service
from tableside.tasks import export_order_to_excel

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description="Order placement, kitchen status and payment tracking for dine-in ordering.",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def queue_order_export(order: Order) -> None:
    """Hand the order to the Excel export worker. A down broker must not fail the request."""
    try:
        export_order_to_excel.delay(order_service.build_export_payload(order))
    except BrokerError as e:
        logger.warning(f"Could not queue export for Order #{order.id}: {e}")


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


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify the database and the task broker are reachable."""

    db_status = "healthy"
    try:
        await db.execute(select(func.now()))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if db_status == redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# CATALOG ENDPOINTS
# =============================================================================

@app.get(
    "/api/tables/{qr_slug}",
    response_model=ApiResponse[TableOut],
    responses=ERROR_RESPONSES,
    tags=["Catalog"],
)
async def get_table(
    qr_slug: str,
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[TableOut]:
    """Resolve a table from the slug in its QR code."""
    table = await catalog.get_table_by_slug(db, qr_slug)
    return ApiResponse[TableOut](data=TableOut.model_validate(table))


@app.get(
    "/api/menu/items",
    response_model=ApiResponse[list[MenuItemOut]],
    tags=["Catalog"],
)
async def list_menu_items(
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None),
    available: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[list[MenuItemOut]]:
    items = await catalog.list_menu_items(db, search, category, available, limit)
    return ApiResponse[list[MenuItemOut]](
        data=[MenuItemOut.model_validate(item) for item in items],
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    status_code=201,
    response_model=ApiResponse[OrderPlaced],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_optional_user),
) -> ApiResponse[OrderPlaced]:
    """
    Place an order. Guests may order without a token; authenticated
    customers get the order attributed to them.
    """
    order = await order_service.create_order(db, order_data, user)
    queue_order_export(order)

    return ApiResponse[OrderPlaced](
        message="Order placed successfully",
        data=OrderPlaced.model_validate(order),
    )


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    table_id: Optional[int] = Query(None, ge=1),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_user),
) -> OrderListResponse:
    """Retrieve a page of orders, newest first."""
    orders, pagination = await order_service.list_orders(
        db, user, page=page, limit=limit, table_id=table_id, status=status,
    )
    return OrderListResponse(
        message="Orders retrieved",
        data=[OrderOut.model_validate(order) for order in orders],
        pagination=Pagination(**pagination),
    )


@app.get(
    "/api/orders/{order_id}",
    response_model=ApiResponse[OrderOut],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: Optional[CurrentUser] = Depends(get_optional_user),
) -> ApiResponse[OrderOut]:
    """Get a specific order by ID."""
    order = await order_service.get_order(db, order_id, user)
    return ApiResponse[OrderOut](data=OrderOut.model_validate(order))


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=ApiResponse[OrderStatusOut],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    staff: CurrentUser = Depends(require_staff),
) -> ApiResponse[OrderStatusOut]:
    """Move an order through the kitchen workflow (staff/admin)."""
    order = await order_service.update_order_status(db, order_id, body.status)
    return ApiResponse[OrderStatusOut](
        message="Order status updated",
        data=OrderStatusOut.model_validate(order),
    )


@app.patch(
    "/api/orders/{order_id}/payment",
    response_model=ApiResponse[OrderPaymentOut],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def update_order_payment(
    order_id: int,
    body: OrderPaymentUpdate,
    db: AsyncSession = Depends(get_db),
    staff: CurrentUser = Depends(require_staff),
) -> ApiResponse[OrderPaymentOut]:
    """Record payment state (staff/admin). Paying a served order completes it."""
    order = await order_service.update_order_payment(db, order_id, body.status, body.method)
    return ApiResponse[OrderPaymentOut](
        message="Order payment updated successfully",
        data=OrderPaymentOut.model_validate(order),
    )


@app.post(
    "/api/orders/{order_id}/cancel",
    response_model=ApiResponse[OrderStatusOut],
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def cancel_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(require_user),
) -> ApiResponse[OrderStatusOut]:
    """Cancel an order that is not yet completed or canceled."""
    order = await order_service.cancel_order(db, order_id, user)
    return ApiResponse[OrderStatusOut](
        message="Order canceled",
        data=OrderStatusOut.model_validate(order),
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(TablesideError)
async def tableside_error_handler(request: Request, exc: TablesideError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 with one entry per problem."""
    errors: list[dict[str, Any]] = [
        {
            "msg": error.get("msg", "Invalid value"),
            "loc": [str(part) for part in error.get("loc", ())],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tableside.main:app", host=settings.api_host, port=settings.api_port)
