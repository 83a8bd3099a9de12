"""
Happy-Hour Promotion Feed

The banner shown in the app. Every update inserts a new row and the most
recent row is the current banner, so the table doubles as a change log.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.core.config import get_settings
from milkcafe.models import Promotion
from milkcafe.services.realtime import BaseEventBroker, PROMOTION_UPDATED

logger = logging.getLogger(__name__)
settings = get_settings()


def default_promotion() -> dict:
    """Banner value used when nothing has been published yet."""
    return {"text": "", "active": False, "location": settings.default_promotion_location}


class PromotionService:

    def __init__(self, db: AsyncSession, broker: BaseEventBroker):
        self.db = db
        self.broker = broker

    async def set_promotion(
        self,
        text: Optional[str],
        active: bool,
        location: Optional[str] = None,
    ) -> Promotion:
        """Publish a new banner state."""
        promotion = Promotion(
            text=str(text or "").strip(),
            active=bool(active),
            location=str(location or "").strip() or settings.default_promotion_location,
        )
        self.db.add(promotion)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(promotion)

        logger.info(f"Promotion #{promotion.id} set (active={promotion.active}, location={promotion.location})")

        await self.broker.publish(PROMOTION_UPDATED, {
            "text": promotion.text,
            "active": promotion.active,
            "location": promotion.location,
        })
        return promotion

    async def get_current(self) -> Optional[Promotion]:
        """Most recently created banner, or None."""
        result = await self.db.execute(
            select(Promotion)
            .order_by(Promotion.created_at.desc(), Promotion.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
