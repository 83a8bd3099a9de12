"""
Product catalogue and admin counters.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.models import Account, Order, Product, Reservation


class CatalogService:
    """Read-only queries over products and aggregate counts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_products(self) -> list[Product]:
        result = await self.db.execute(
            select(Product)
            .where(Product.active.is_(True))
            .order_by(Product.created_at.desc(), Product.id.desc())
        )
        return list(result.scalars().all())

    async def _count(self, model) -> int:
        result = await self.db.execute(select(func.count(model.id)))
        return result.scalar() or 0

    async def stats(self) -> dict[str, int]:
        """Counts of orders, reservations and accounts."""
        return {
            "orders": await self._count(Order),
            "reservations": await self._count(Reservation),
            "accounts": await self._count(Account),
        }
