"""
Pydantic Schemas for Request/Response Validation

Field names are snake_case in Python and camelCase on the wire
(``fullName``, ``loyaltyId``, ``pickupTime``). Request models are lenient
about missing fields: the services decide what is required, so clients get
the same ``{"ok": false, "message": ...}`` errors whichever field is wrong.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from milkcafe.models import Order, Reservation


LOYALTY_ID_ALIASES = AliasChoices("loyaltyId", "milkId", "loyaltyCode", "loyalty_id")


class CamelModel(BaseModel):
    """Base model with camelCase aliases and ORM attribute loading."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        coerce_numbers_to_str=True,
    )


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class RegisterRequest(CamelModel):
    email: Optional[str] = Field(None, examples=["ala@example.com"])
    password: Optional[str] = Field(None, examples=["kawa123"])
    phone: Optional[str] = Field(None, examples=["+48 600 100 200"])
    full_name: Optional[str] = Field(None, examples=["Ala Kowalska"])


class LoginRequest(CamelModel):
    email: Optional[str] = Field(None, examples=["ala@example.com"])
    password: Optional[str] = None


class ProfileUpdateRequest(CamelModel):
    """Only the fields present in the body are changed."""
    full_name: Optional[str] = None
    phone: Optional[str] = None


class PointsAdjustRequest(CamelModel):
    """Signed adjustment of a loyalty id's balance (e.g. at the till)."""
    loyalty_id: Optional[str] = Field(None, validation_alias=LOYALTY_ID_ALIASES, examples=["123456"])
    delta: Optional[float] = Field(None, examples=[10, -3])
    text: Optional[str] = Field(None, examples=["Coffee bonus"])
    meta: Optional[Any] = None


class OrderItem(CamelModel):
    """Single line of an order."""
    title: str = Field(default="", max_length=200, examples=["Flat white"])
    qty: int = Field(default=1, ge=0, examples=[2])
    price: float = Field(default=0.0, ge=0, examples=[14.5])

    @property
    def line_total(self) -> float:
        return round(self.qty * self.price, 2)


class CustomerContact(CamelModel):
    email: str = ""
    name: str = ""
    phone: str = ""


class OrderCreate(CamelModel):
    """Request schema for placing an order."""
    source: Optional[str] = None
    pickup_time: str = Field(default="", examples=["14:30"])
    pickup_location: str = Field(default="", examples=["slupsk"])
    notes: str = ""
    items: List[OrderItem] = Field(default_factory=list)
    total: Optional[float] = Field(None, ge=0)
    status: Optional[str] = None
    user: CustomerContact = Field(default_factory=CustomerContact)
    loyalty_id: Optional[str] = Field(None, max_length=32, validation_alias=LOYALTY_ID_ALIASES)


class ReservationContact(CamelModel):
    email: str = ""


class ReservationCreate(CamelModel):
    """Request schema for booking a table."""
    name: str = ""
    phone: str = ""
    date: str = Field(default="", examples=["2026-10-24"])
    time: str = Field(default="", examples=["18:00"])
    guests: str = Field(default="", examples=["4"])
    room: str = Field(default="", examples=["garden"])
    notes: str = ""
    source: Optional[str] = None
    user: ReservationContact = Field(default_factory=ReservationContact)
    loyalty_id: Optional[str] = Field(None, max_length=32, validation_alias=LOYALTY_ID_ALIASES)


class PromotionUpdate(CamelModel):
    text: str = Field(default="", examples=["Happy hour: -20% on iced lattes"])
    active: bool = False
    location: Optional[str] = Field(None, examples=["all", "slupsk", "rowy"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OkResponse(CamelModel):
    ok: bool = True


class UserSummary(CamelModel):
    """Account summary returned after login/registration."""
    email: str
    name: str
    phone: str
    loyalty_id: str


class AuthResponse(CamelModel):
    ok: bool = True
    token: str
    user: UserSummary


class ProfileFields(CamelModel):
    email: str
    full_name: str
    phone: str
    loyalty_id: str


class ProfileView(ProfileFields):
    points: int = 0


class ProfileResponse(CamelModel):
    ok: bool = True
    user: ProfileView


class ProfileUpdateResponse(CamelModel):
    ok: bool = True
    user: ProfileFields


class LedgerHistoryEntry(CamelModel):
    text: str
    delta: int
    date: str
    meta: Optional[Any] = None


class LedgerResponse(CamelModel):
    ok: bool = True
    loyalty_id: str
    points: int
    history: List[LedgerHistoryEntry]


class PointsAdjustResponse(CamelModel):
    ok: bool = True
    loyalty_id: str
    points: int


class PromotionView(CamelModel):
    text: str
    active: bool
    location: str
    created_at: Optional[datetime] = None


class PromotionResponse(CamelModel):
    ok: bool = True
    happy: Optional[PromotionView] = None


class ProductView(CamelModel):
    id: int
    title: str
    price: float
    category: Optional[str] = None
    description: Optional[str] = Field(None, serialization_alias="desc")
    icon: Optional[str] = None
    image: Optional[str] = None
    active: bool = True


class ProductListResponse(CamelModel):
    ok: bool = True
    products: List[ProductView]


class OrderView(CamelModel):
    """Order as returned to clients; customer fields nest under ``user``."""
    id: int
    source: str
    pickup_time: str
    pickup_location: str
    notes: str
    items: List[OrderItem]
    total: float
    status: str
    user: CustomerContact
    loyalty_id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderView":
        return cls(
            id=order.id,
            source=order.source,
            pickup_time=order.pickup_time,
            pickup_location=order.pickup_location,
            notes=order.notes,
            items=[OrderItem.model_validate(item) for item in order.items or []],
            total=order.total,
            status=order.status,
            user=CustomerContact(
                email=order.customer_email,
                name=order.customer_name,
                phone=order.customer_phone,
            ),
            loyalty_id=order.loyalty_id,
            created_at=order.created_at,
        )


class OrderResponse(CamelModel):
    ok: bool = True
    order: OrderView


class OrderListResponse(CamelModel):
    ok: bool = True
    orders: List[OrderView]


class ReservationView(CamelModel):
    id: int
    name: str
    phone: str
    date: str
    time: str
    guests: str
    room: str
    notes: str
    source: str
    user: ReservationContact
    loyalty_id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ReservationView":
        return cls(
            id=reservation.id,
            name=reservation.name,
            phone=reservation.phone,
            date=reservation.date,
            time=reservation.time,
            guests=reservation.guests,
            room=reservation.room,
            notes=reservation.notes,
            source=reservation.source,
            user=ReservationContact(email=reservation.customer_email),
            loyalty_id=reservation.loyalty_id,
            created_at=reservation.created_at,
        )


class ReservationResponse(CamelModel):
    ok: bool = True
    reservation: ReservationView


class ReservationListResponse(CamelModel):
    ok: bool = True
    reservations: List[ReservationView]


class StatsResponse(CamelModel):
    ok: bool = True
    orders: int
    reservations: int
    accounts: int


class HealthResponse(CamelModel):
    """Liveness check response."""
    ok: bool
    ts: int
    database: str
    realtime: str


class ErrorResponse(CamelModel):
    """Standard error response."""
    ok: bool = False
    message: str
