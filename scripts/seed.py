"""
Seed Script

Creates the schema and loads demo dining tables and menu items.
Existing rows are left untouched.
Run from project root: python scripts/seed.py --tables 12
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select  # noqa: E402

from tableside.core.config import setup_logging  # noqa: E402
from tableside.database import async_session_maker, engine, init_db  # noqa: E402
from tableside.models import DiningTable, MenuItem  # noqa: E402

MENU = [
    ("Margherita", "Tomato, mozzarella, basil", 12.50, "pizza"),
    ("Diavola", "Spicy salami, chili oil", 14.00, "pizza"),
    ("Caesar Salad", "Romaine, parmesan, croutons", 8.90, "starters"),
    ("Garlic Bread", None, 4.50, "starters"),
    ("Tiramisu", "House-made", 6.00, "desserts"),
    ("Sparkling Water", "0.75l", 2.80, "drinks"),
]


async def seed(tables: int) -> None:
    await init_db()

    async with async_session_maker() as session:
        existing = set((await session.execute(select(DiningTable.table_number))).scalars())
        for number in range(1, tables + 1):
            if number not in existing:
                session.add(DiningTable(table_number=number, qr_slug=f"table-{number}"))

        names = set((await session.execute(select(MenuItem.name))).scalars())
        for name, description, price, category in MENU:
            if name not in names:
                session.add(MenuItem(name=name, description=description, price=price, category=category))

        await session.commit()

    await engine.dispose()
    print(f"Seeded {tables} tables and {len(MENU)} menu items")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed tables and menu items")
    parser.add_argument("--tables", type=int, default=12, help="Number of dining tables")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(seed(args.tables))
