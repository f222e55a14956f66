"""
Catalog Lookups

Read-only access to dining tables and menu items for the ordering
front-end. Both are maintained outside this service.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tableside.core.exceptions import NotFound
from tableside.models import DiningTable, MenuItem


async def get_table_by_slug(db: AsyncSession, qr_slug: str) -> DiningTable:
    """Resolve the slug printed in a table's QR code."""
    result = await db.execute(
        select(DiningTable).where(DiningTable.qr_slug == qr_slug.strip().lower())
    )
    table = result.scalar_one_or_none()
    if table is None:
        raise NotFound("Table not found")
    return table


async def list_menu_items(
    db: AsyncSession,
    search: Optional[str] = None,
    category: Optional[str] = None,
    available: Optional[bool] = None,
    limit: int = 100,
) -> list[MenuItem]:
    query = select(MenuItem)

    if search:
        query = query.where(MenuItem.name.ilike(f"%{search.strip()}%"))
    if category:
        query = query.where(MenuItem.category == category)
    if available is not None:
        query = query.where(MenuItem.available == available)

    result = await db.execute(query.order_by(MenuItem.name).limit(limit))
    return list(result.scalars().all())
