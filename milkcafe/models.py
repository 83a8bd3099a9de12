"""
SQLAlchemy Database Models

Tables for the café loyalty backend:
- Accounts with cached points and embedded history summaries
- Points ledgers keyed by loyalty id, with append-only event rows
- Orders, reservations, happy-hour promotions and the product catalogue
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.sql import func

from milkcafe.database import Base


class Account(Base):
    """
    Customer account.

    ``points`` and ``points_history`` are a projection of the account's
    ledger, rebuilt by ``sync_account_mirror``; the ledger is authoritative.
    History lists are stored newest first.
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # IDENTITY
    # =========================================================================
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False, default="")  # "" = no password
    phone = Column(String(40), nullable=False, default="")
    full_name = Column(String(200), nullable=False, default="")
    loyalty_id = Column(String(6), nullable=False, unique=True, index=True)

    # =========================================================================
    # LEDGER MIRROR
    # =========================================================================
    points = Column(Integer, nullable=False, default=0)
    points_history = Column(JSON, nullable=False, default=list)

    # =========================================================================
    # ACTIVITY SUMMARIES
    # =========================================================================
    orders_history = Column(JSON, nullable=False, default=list)
    reservations_history = Column(JSON, nullable=False, default=list)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def __repr__(self):
        return f"<Account #{self.id} - {self.email} - {self.loyalty_id}>"


class Ledger(Base):
    """
    Authoritative points balance for one loyalty id.

    ``points`` is only ever changed by an atomic increment together with
    an inserted LedgerEvent; it may go negative.
    """
    __tablename__ = "ledgers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    loyalty_id = Column(String(32), nullable=False, unique=True, index=True)
    points = Column(Integer, nullable=False, default=0)
    linked_email = Column(String(255), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Ledger {self.loyalty_id} - {self.points} pts>"


class LedgerEvent(Base):
    """One applied adjustment. Rows are never updated or deleted."""
    __tablename__ = "ledger_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    ledger_id = Column(Integer, ForeignKey("ledgers.id"), nullable=False, index=True)
    text = Column(String(500), nullable=False, default="")
    delta = Column(Integer, nullable=False)
    date = Column(String(40), nullable=False)  # display timestamp
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_history_entry(self) -> dict:
        return {"text": self.text, "delta": self.delta, "date": self.date, "meta": self.meta}


class Order(Base):
    """Pickup order placed from the app or the counter."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    source = Column(String(50), nullable=False, default="app")
    pickup_time = Column(String(50), nullable=False, default="")
    pickup_location = Column(String(100), nullable=False, default="")
    notes = Column(Text, nullable=False, default="")

    items = Column(JSON, nullable=False, default=list)  # [{title, qty, price}]
    total = Column(Float, nullable=False, default=0.0)
    status = Column(String(50), nullable=False)

    # =========================================================================
    # CUSTOMER
    # =========================================================================
    customer_email = Column(String(255), nullable=False, default="", index=True)
    customer_name = Column(String(200), nullable=False, default="")
    customer_phone = Column(String(40), nullable=False, default="")
    loyalty_id = Column(String(32), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Order #{self.id} - {self.customer_email or 'guest'} - {self.status}>"


class Reservation(Base):
    """Table reservation. Date and time are kept as the client sent them."""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False, default="")
    phone = Column(String(40), nullable=False, default="")
    date = Column(String(20), nullable=False, default="")  # YYYY-MM-DD
    time = Column(String(10), nullable=False, default="")  # HH:mm
    guests = Column(String(20), nullable=False, default="")
    room = Column(String(100), nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    source = Column(String(50), nullable=False, default="app")

    customer_email = Column(String(255), nullable=False, default="", index=True)
    loyalty_id = Column(String(32), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Reservation #{self.id} - {self.date} {self.time} - {self.name}>"


class Promotion(Base):
    """Happy-hour banner. Each update is a new row; the newest one is current."""
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    text = Column(Text, nullable=False, default="")
    active = Column(Boolean, nullable=False, default=False)
    location = Column(String(50), nullable=False, default="all")

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    image = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
