"""Seed the database with demo products and print a token for checkout.

Creates the tables if they do not exist (handy before the migrations have
been applied), inserts a few products when the catalog is empty and prints a
bearer token for a demo user.

Usage:
    python scripts/seed_demo.py

The script reads DATABASE_URL from the environment; default matches docker-compose.
"""
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

from sqlalchemy import func, select

# Ensure project root is on sys.path so we can import the storefront package
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.auth import create_access_token
from storefront.database import async_session_maker, create_tables, engine
from storefront.models import Product

DEMO_PRODUCTS = [
    ("Linen Shirt", Decimal("2500"), 20),
    ("Denim Jacket", Decimal("6800"), 8),
    ("Wool Scarf", Decimal("1200.50"), 35),
    ("Leather Boots", Decimal("9999"), 5),
]


async def seed():
    await create_tables(engine)

    async with async_session_maker() as session:
        count = (await session.execute(select(func.count()).select_from(Product))).scalar_one()
        if count:
            print(f"Catalog already has {count} products, leaving it alone.")
        else:
            session.add_all([Product(name=n, price=p, stock=s) for n, p, s in DEMO_PRODUCTS])
            await session.commit()
            print(f"Inserted {len(DEMO_PRODUCTS)} demo products.")

        res = await session.execute(select(Product).order_by(Product.id))
        for product in res.scalars().all():
            print(f"  #{product.id} {product.name}: Rs. {product.price} (stock {product.stock})")

    await engine.dispose()


def main():
    asyncio.run(seed())
    token = create_access_token({"sub": "demo-user"})
    print("\nBearer token for user 'demo-user':")
    print(token)
    print("\nExample checkout body for POST /api/orders:")
    print('{"items": [{"product_id": 1, "quantity": 1}]}')


if __name__ == "__main__":
    main()
