"""
Order & Reservation Intake

Persists orders and table reservations sent by the app, copies a short
summary into the customer's account history, and announces them to
connected staff screens.

The account history write is a separate transaction after the order or
reservation is committed. If it fails the submission still succeeds; the
failure is logged.
"""

import logging
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.core.config import get_settings
from milkcafe.core.security import normalize_email
from milkcafe.models import Account, Order, Reservation
from milkcafe.schemas import OrderCreate, ReservationCreate
from milkcafe.services.realtime import BaseEventBroker, NEW_ORDER, NEW_RESERVATION

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_ROW_ID = 2**63 - 1


def _iso(value) -> str:
    return value.isoformat() if value is not None else ""


class IntakeService:
    """Creates and lists orders and reservations."""

    def __init__(self, db: AsyncSession, broker: BaseEventBroker):
        self.db = db
        self.broker = broker

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, data: OrderCreate) -> Order:
        """
        Persist an order and announce it.

        The total sent by the client is kept as-is; when it is missing the
        total is computed from the line items.
        """
        email = normalize_email(data.user.email)
        total = data.total
        if total is None:
            total = round(sum(item.line_total for item in data.items), 2)

        order = Order(
            source=(data.source or "").strip() or settings.default_source,
            pickup_time=data.pickup_time,
            pickup_location=data.pickup_location,
            notes=data.notes,
            items=[item.model_dump() for item in data.items],
            total=total,
            status=(data.status or "").strip() or settings.default_order_status,
            customer_email=email,
            customer_name=data.user.name,
            customer_phone=data.user.phone,
            loyalty_id=(data.loyalty_id or "").strip(),
        )

        self.db.add(order)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(order)

        logger.info(f"Order #{order.id} created ({len(order.items)} items, total {order.total:.2f})")

        await self._prepend_history(email, "orders_history", {
            "orderId": str(order.id),
            "total": order.total,
            "status": order.status,
            "createdAt": _iso(order.created_at),
        })

        await self.broker.publish(NEW_ORDER, {
            "id": str(order.id),
            "total": order.total,
            "pickupTime": order.pickup_time,
            "pickupLocation": order.pickup_location,
        })

        return order

    async def list_my_orders(self, email: Optional[str]) -> list[Order]:
        """Orders placed with ``email``, newest first. Blank email → []."""
        email = normalize_email(email)
        if not email:
            return []

        result = await self.db.execute(
            select(Order)
            .where(Order.customer_email == email)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(settings.orders_page_limit)
        )
        return list(result.scalars().all())

    # =========================================================================
    # RESERVATIONS
    # =========================================================================

    async def create_reservation(self, data: ReservationCreate) -> Reservation:
        """Persist a reservation and announce it."""
        email = normalize_email(data.user.email)

        reservation = Reservation(
            name=data.name,
            phone=data.phone,
            date=data.date,
            time=data.time,
            guests=data.guests,
            room=data.room,
            notes=data.notes,
            source=(data.source or "").strip() or settings.default_source,
            customer_email=email,
            loyalty_id=(data.loyalty_id or "").strip(),
        )

        self.db.add(reservation)
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        await self.db.refresh(reservation)

        logger.info(f"Reservation #{reservation.id} created for {reservation.date} {reservation.time}")

        await self._prepend_history(email, "reservations_history", {
            "reservationId": str(reservation.id),
            "date": reservation.date,
            "time": reservation.time,
            "guests": reservation.guests,
            "room": reservation.room,
            "createdAt": _iso(reservation.created_at),
        })

        await self.broker.publish(NEW_RESERVATION, {
            "id": str(reservation.id),
            "date": reservation.date,
            "time": reservation.time,
            "name": reservation.name,
            "phone": reservation.phone,
        })

        return reservation

    async def list_reservations(self) -> list[Reservation]:
        result = await self.db.execute(
            select(Reservation)
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
            .limit(settings.reservations_page_limit)
        )
        return list(result.scalars().all())

    async def delete_reservation(self, reservation_id: Any) -> bool:
        """
        Delete a reservation by id.

        Unknown or malformed ids are a no-op.

        Returns:
            True if a row was deleted
        """
        try:
            rid = int(str(reservation_id).strip())
        except ValueError:
            return False
        if not 0 < rid <= MAX_ROW_ID:
            return False

        try:
            result = await self.db.execute(delete(Reservation).where(Reservation.id == rid))
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Reservation #{rid} deleted")
        return deleted

    # =========================================================================
    # ACCOUNT HISTORY
    # =========================================================================

    async def _prepend_history(self, email: str, field: str, summary: dict[str, Any]) -> bool:
        """Best-effort: add ``summary`` to the front of an account history list."""
        if not email:
            return False

        try:
            result = await self.db.execute(
                select(Account)
                .where(Account.email == email)
                .execution_options(populate_existing=True)
            )
            account = result.scalar_one_or_none()
            if account is None:
                return False

            # Reassign so the JSON column is flagged dirty
            setattr(account, field, [summary, *(getattr(account, field) or [])])
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Could not update {field} of {email}: {e}")
            return False

        return True
