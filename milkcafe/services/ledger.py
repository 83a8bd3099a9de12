"""
Points Ledger Service

Keeps the "Milkosy" balance of every loyalty id.

The ledger row is the source of truth. An adjustment is a single
``INSERT ... ON CONFLICT DO UPDATE SET points = points + delta`` statement
plus an appended event row, committed together, so concurrent adjustments
of the same loyalty id never lose updates and an unknown loyalty id gets a
zero-balance ledger on first use.

The account's cached ``points``/``points_history`` are a projection,
rebuilt from the ledger by ``sync_account_mirror``. The rebuild is
idempotent: running it twice, late, or out of order leaves the account
matching the ledger. When the inline rebuild fails it is handed to the
``reconcile_account_mirror`` Celery task.

Usage:
    service = LedgerService(db, broker)
    result = await service.adjust_points("123456", 10, "Coffee bonus")
    print(result.points)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from kombu.exceptions import OperationalError
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DataError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.core.config import get_settings
from milkcafe.core.exceptions import Internal, InvalidInput, NotFound
from milkcafe.models import Account, Ledger, LedgerEvent
from milkcafe.services.realtime import BaseEventBroker, POINTS_UPDATED
from milkcafe.tasks import reconcile_account_mirror

logger = logging.getLogger(__name__)
settings = get_settings()

# Ledger.points is a 32-bit INTEGER column
MAX_DELTA = 2**31 - 1
MAX_LOYALTY_ID_LENGTH = Ledger.__table__.c.loyalty_id.type.length
MAX_TEXT_LENGTH = LedgerEvent.__table__.c.text.type.length


@dataclass
class LedgerSnapshot:
    """Balance and newest-first history of one loyalty id."""
    loyalty_id: str
    points: int
    history: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AdjustmentResult:
    """Outcome of AdjustPoints."""
    loyalty_id: str
    points: int
    mirrored: bool = False


# =============================================================================
# HELPERS
# =============================================================================

def display_timestamp(now: Optional[datetime] = None) -> str:
    """Human-readable timestamp stored with history entries."""
    return (now or datetime.now()).strftime(settings.display_timestamp_format)


def normalize_loyalty_id(loyalty_id: Optional[str]) -> str:
    return str(loyalty_id or "").strip()


def require_loyalty_id(loyalty_id: Optional[str]) -> str:
    """
    Normalized loyalty id that fits the ledger column.

    Raises:
        InvalidInput: Blank or longer than the column allows
    """
    lid = normalize_loyalty_id(loyalty_id)
    if not lid:
        raise InvalidInput("loyaltyId is required")
    if len(lid) > MAX_LOYALTY_ID_LENGTH:
        raise InvalidInput(f"loyaltyId must be at most {MAX_LOYALTY_ID_LENGTH} characters")
    return lid


def normalize_delta(delta: Any) -> int:
    """
    Validate a points delta.

    Raises:
        InvalidInput: delta is missing, not a number, not finite, zero,
            has a fractional part, or does not fit a 32-bit balance
    """
    if delta is None or isinstance(delta, bool):
        raise InvalidInput("delta must be a non-zero number")
    try:
        value = float(delta)
    except (TypeError, ValueError):
        raise InvalidInput("delta must be a non-zero number")

    if not math.isfinite(value) or value == 0:
        raise InvalidInput("delta must be a non-zero number")
    if not value.is_integer():
        raise InvalidInput("delta must be a whole number")
    if abs(value) > MAX_DELTA:
        raise InvalidInput(f"delta must be between -{MAX_DELTA} and {MAX_DELTA}")

    return int(value)


def upsert_increment_statement(dialect_name: str, loyalty_id: str, delta: int):
    """
    Build the atomic upsert-and-increment for a ledger row.

    Returns the ledger id and the new balance.
    """
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        raise Internal(f"Unsupported database dialect: {dialect_name}")

    stmt = insert(Ledger).values(loyalty_id=loyalty_id, points=delta, linked_email="")
    return stmt.on_conflict_do_update(
        index_elements=[Ledger.loyalty_id],
        set_={"points": Ledger.points + delta, "updated_at": func.now()},
    ).returning(Ledger.id, Ledger.points)


async def fetch_ledger(db: AsyncSession, loyalty_id: str) -> Optional[Ledger]:
    """Load a ledger row fresh from the database."""
    result = await db.execute(
        select(Ledger)
        .where(Ledger.loyalty_id == loyalty_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def fetch_history(db: AsyncSession, ledger_id: int) -> list[LedgerEvent]:
    """Events of a ledger, newest first."""
    result = await db.execute(
        select(LedgerEvent)
        .where(LedgerEvent.ledger_id == ledger_id)
        .order_by(LedgerEvent.id.desc())
    )
    return list(result.scalars().all())


async def sync_account_mirror(db: AsyncSession, loyalty_id: str) -> bool:
    """
    Rebuild the cached balance and points history of the account holding
    ``loyalty_id`` from its ledger.

    Returns:
        True if an account was updated, False if no account holds the id
    """
    result = await db.execute(
        select(Account)
        .where(Account.loyalty_id == loyalty_id)
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        return False

    ledger = await fetch_ledger(db, loyalty_id)
    events = await fetch_history(db, ledger.id) if ledger else []

    account.points = ledger.points if ledger else 0
    account.points_history = [
        {"text": event.text, "delta": event.delta, "date": event.date}
        for event in events
    ]
    await db.commit()

    logger.debug(f"Account {account.email} mirrored from ledger {loyalty_id} ({account.points} pts)")
    return True


def schedule_reconciliation(loyalty_id: str) -> bool:
    """Queue a background rebuild of the account mirror."""
    try:
        reconcile_account_mirror.delay(loyalty_id)
    except OperationalError as e:
        logger.error(f"Could not queue mirror reconciliation for {loyalty_id}: {e}")
        return False

    logger.info(f"Mirror reconciliation queued for {loyalty_id}")
    return True


# =============================================================================
# SERVICE
# =============================================================================

class LedgerService:
    """Reads and adjusts loyalty ledgers, and fans out balance changes."""

    def __init__(self, db: AsyncSession, broker: BaseEventBroker):
        self.db = db
        self.broker = broker

    async def adjust_points(
        self,
        loyalty_id: Optional[str],
        delta: Any,
        text: Optional[str] = None,
        meta: Any = None,
    ) -> AdjustmentResult:
        """
        Apply a signed delta to a loyalty id's balance.

        Args:
            loyalty_id: Target loyalty id (ledger created if unknown)
            delta: Non-zero whole number of points
            text: History description (defaults by sign)
            meta: Arbitrary JSON stored with the ledger event

        Returns:
            AdjustmentResult with the new authoritative balance

        Raises:
            InvalidInput: Invalid loyalty id, delta or text, or a balance
                that would leave the INTEGER range
        """
        lid = require_loyalty_id(loyalty_id)
        amount = normalize_delta(delta)

        description = str(text or "").strip()
        if not description:
            description = settings.points_added_text if amount > 0 else settings.points_deducted_text
        if len(description) > MAX_TEXT_LENGTH:
            raise InvalidInput(f"text must be at most {MAX_TEXT_LENGTH} characters")

        stmt = upsert_increment_statement(self.db.get_bind().dialect.name, lid, amount)
        try:
            result = await self.db.execute(stmt)
            ledger_id, points = result.one()
            self.db.add(LedgerEvent(
                ledger_id=ledger_id,
                text=description,
                delta=amount,
                date=display_timestamp(),
                meta=meta,
            ))
            await self.db.commit()
        except DataError as e:
            # Resulting balance outside the INTEGER range
            await self.db.rollback()
            logger.warning(f"Ledger {lid}: adjustment {amount:+d} rejected: {e.orig}")
            raise InvalidInput("Resulting balance out of range")
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Ledger {lid}: {amount:+d} → {points} pts ({description})")

        mirrored = await self._mirror(lid)
        await self.broker.publish(POINTS_UPDATED, {"loyaltyId": lid, "points": points})

        return AdjustmentResult(loyalty_id=lid, points=points, mirrored=mirrored)

    async def _mirror(self, loyalty_id: str) -> bool:
        """Best-effort inline mirror; failures go to the background task."""
        try:
            return await sync_account_mirror(self.db, loyalty_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Account mirror for {loyalty_id} failed: {e}")
            schedule_reconciliation(loyalty_id)
            return False

    async def get_ledger(self, loyalty_id: Optional[str]) -> LedgerSnapshot:
        """
        Balance and history of a loyalty id.

        Raises:
            InvalidInput: Blank or overlong loyalty id
            NotFound: No ledger exists for the id
        """
        lid = require_loyalty_id(loyalty_id)

        ledger = await fetch_ledger(self.db, lid)
        if ledger is None:
            raise NotFound()

        events = await fetch_history(self.db, ledger.id)
        return LedgerSnapshot(
            loyalty_id=ledger.loyalty_id,
            points=ledger.points,
            history=[event.to_history_entry() for event in events],
        )

    async def get_balance(self, loyalty_id: str) -> int:
        """Authoritative balance; 0 when the id has no ledger yet."""
        ledger = await fetch_ledger(self.db, normalize_loyalty_id(loyalty_id))
        return ledger.points if ledger else 0
