"""
FastAPI Application Entry Point

Milk Café loyalty & ordering backend.

Endpoints:
    - /api/auth/*: Registration, login, own profile
    - /api/user/profile: Profile update
    - /api/milkpoints/*: Loyalty points ledger
    - /api/happy, /api/data: Happy-hour banner
    - /api/products: Product catalogue
    - /api/rezerwacje: Table reservations
    - /api/orders: Order intake and "my orders"
    - /api/admin/stats: Aggregate counts
    - /api/health: Liveness
    - /ws: Real-time events (points, orders, reservations, banner)
"""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.core.config import get_settings, setup_logging
from milkcafe.core.exceptions import MilkError
from milkcafe.core.security import SessionClaims, get_current_session
from milkcafe.database import engine, get_db, init_db
from milkcafe.schemas import (
    AuthResponse,
    ErrorResponse,
    HealthResponse,
    LedgerHistoryEntry,
    LedgerResponse,
    LoginRequest,
    OkResponse,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    OrderView,
    PointsAdjustRequest,
    PointsAdjustResponse,
    ProductListResponse,
    ProductView,
    ProfileFields,
    ProfileResponse,
    ProfileUpdateRequest,
    ProfileUpdateResponse,
    ProfileView,
    PromotionResponse,
    PromotionUpdate,
    PromotionView,
    RegisterRequest,
    ReservationCreate,
    ReservationListResponse,
    ReservationResponse,
    ReservationView,
    StatsResponse,
    UserSummary,
)
from milkcafe.services import (
    AccountService,
    CatalogService,
    IntakeService,
    LedgerService,
    PromotionService,
)
from milkcafe.services.accounts import AuthResult
from milkcafe.services.promotions import default_promotion
from milkcafe.services.realtime import BaseEventBroker, get_event_broker

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    broker = get_event_broker()
    await broker.start()
    logger.info(f"✅ Event Broker: {broker.provider_name}")

    problems = settings.validate_production_config()
    if problems:
        logger.warning(f"⚠️ Unsafe production config: {problems}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await broker.close()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Loyalty points (Milkosy), accounts, orders, table reservations and "
        "the happy-hour banner, with live updates over WebSocket."
    ),
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
# DEPENDENCIES
# =============================================================================

def get_account_service(db: AsyncSession = Depends(get_db)) -> AccountService:
    return AccountService(db)


def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> LedgerService:
    return LedgerService(db, broker)


def get_intake_service(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> IntakeService:
    return IntakeService(db, broker)


def get_promotion_service(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> PromotionService:
    return PromotionService(db, broker)


def get_catalog_service(db: AsyncSession = Depends(get_db)) -> CatalogService:
    return CatalogService(db)


def auth_response(result: AuthResult) -> AuthResponse:
    account = result.account
    return AuthResponse(
        token=result.token,
        user=UserSummary(
            email=account.email,
            name=account.full_name or "User",
            phone=account.phone,
            loyalty_id=account.loyalty_id,
        ),
    )


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


# =============================================================================
# HEALTH
# =============================================================================

@app.get(
    "/api/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Liveness Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    broker: BaseEventBroker = Depends(get_event_broker),
) -> HealthResponse:
    """Report database and event broker status."""

    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    realtime_status = "healthy" if await broker.health_check() else "unhealthy"

    return HealthResponse(
        ok=True,
        ts=int(time.time() * 1000),
        database=db_status,
        realtime=realtime_status,
    )


# =============================================================================
# AUTH & ACCOUNTS
# =============================================================================

@app.post(
    "/api/auth/register",
    response_model=AuthResponse,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}},
    tags=["Auth"],
    summary="Register Account",
)
async def register(
    body: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """Create an account (password optional) with a new loyalty id."""
    result = await accounts.register(
        email=body.email,
        password=body.password,
        phone=body.phone,
        full_name=body.full_name,
    )
    return auth_response(result)


@app.post(
    "/api/auth/login",
    response_model=AuthResponse,
    responses={**ERROR_RESPONSES, 401: {"model": ErrorResponse}},
    tags=["Auth"],
    summary="Log In",
)
async def login(
    body: LoginRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """
    Log in by email (and password when the account has one).

    An unknown email gets a passwordless account on the spot.
    """
    result = await accounts.login(email=body.email, password=body.password)
    return auth_response(result)


@app.get(
    "/api/auth/me",
    response_model=ProfileResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Auth"],
    summary="Own Profile",
)
async def me(
    session: SessionClaims = Depends(get_current_session),
    accounts: AccountService = Depends(get_account_service),
) -> ProfileResponse:
    """Profile of the token's account with its ledger balance."""
    account, points = await accounts.get_profile(session)
    return ProfileResponse(
        user=ProfileView(
            email=account.email,
            full_name=account.full_name,
            phone=account.phone,
            loyalty_id=account.loyalty_id,
            points=points,
        )
    )


@app.post(
    "/api/user/profile",
    response_model=ProfileUpdateResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Auth"],
    summary="Update Profile",
)
async def update_profile(
    body: ProfileUpdateRequest,
    session: SessionClaims = Depends(get_current_session),
    accounts: AccountService = Depends(get_account_service),
) -> ProfileUpdateResponse:
    account = await accounts.update_profile(
        session,
        full_name=body.full_name,
        phone=body.phone,
    )
    return ProfileUpdateResponse(user=ProfileFields.model_validate(account))


# =============================================================================
# LOYALTY POINTS
# =============================================================================

@app.get(
    "/api/milkpoints/{loyalty_id}",
    response_model=LedgerResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}},
    tags=["Points"],
    summary="Ledger Balance & History",
)
async def get_ledger(
    loyalty_id: str,
    ledger: LedgerService = Depends(get_ledger_service),
) -> LedgerResponse:
    snapshot = await ledger.get_ledger(loyalty_id)
    return LedgerResponse(
        loyalty_id=snapshot.loyalty_id,
        points=snapshot.points,
        history=[LedgerHistoryEntry(**entry) for entry in snapshot.history],
    )


@app.post(
    "/api/milkpoints/adjust",
    response_model=PointsAdjustResponse,
    responses=ERROR_RESPONSES,
    tags=["Points"],
    summary="Adjust Points",
)
async def adjust_points(
    body: PointsAdjustRequest,
    ledger: LedgerService = Depends(get_ledger_service),
) -> PointsAdjustResponse:
    """
    Add (positive delta) or deduct (negative delta) points.

    Unknown loyalty ids get a ledger on first adjustment.
    """
    result = await ledger.adjust_points(
        loyalty_id=body.loyalty_id,
        delta=body.delta,
        text=body.text,
        meta=body.meta,
    )
    return PointsAdjustResponse(loyalty_id=result.loyalty_id, points=result.points)


# =============================================================================
# HAPPY HOUR BANNER
# =============================================================================

@app.get("/api/data", response_model=PromotionResponse, tags=["Promotions"])
async def get_banner(
    promotions: PromotionService = Depends(get_promotion_service),
) -> PromotionResponse:
    """Current banner, or the inactive default when none was ever set."""
    current = await promotions.get_current()
    if current is None:
        return PromotionResponse(happy=PromotionView(**default_promotion()))
    return PromotionResponse(happy=PromotionView.model_validate(current))


@app.get("/api/happy", response_model=PromotionResponse, tags=["Promotions"])
async def get_happy(
    promotions: PromotionService = Depends(get_promotion_service),
) -> PromotionResponse:
    """Current banner record, or null."""
    current = await promotions.get_current()
    return PromotionResponse(
        happy=PromotionView.model_validate(current) if current else None
    )


@app.post("/api/happy", response_model=PromotionResponse, tags=["Promotions"])
@app.post("/api/data", response_model=PromotionResponse, tags=["Promotions"])
async def set_happy(
    body: PromotionUpdate,
    promotions: PromotionService = Depends(get_promotion_service),
) -> PromotionResponse:
    promotion = await promotions.set_promotion(
        text=body.text,
        active=body.active,
        location=body.location,
    )
    return PromotionResponse(happy=PromotionView.model_validate(promotion))


# =============================================================================
# PRODUCTS
# =============================================================================

@app.get("/api/products", response_model=ProductListResponse, tags=["Products"])
async def list_products(
    catalog: CatalogService = Depends(get_catalog_service),
) -> ProductListResponse:
    products = await catalog.list_active_products()
    return ProductListResponse(
        products=[ProductView.model_validate(p) for p in products]
    )


# =============================================================================
# RESERVATIONS
# =============================================================================

@app.get("/api/rezerwacje", response_model=ReservationListResponse, tags=["Reservations"])
async def list_reservations(
    intake: IntakeService = Depends(get_intake_service),
) -> ReservationListResponse:
    reservations = await intake.list_reservations()
    return ReservationListResponse(
        reservations=[ReservationView.from_reservation(r) for r in reservations]
    )


@app.post(
    "/api/rezerwacje",
    response_model=ReservationResponse,
    responses=ERROR_RESPONSES,
    tags=["Reservations"],
)
async def create_reservation(
    body: ReservationCreate,
    intake: IntakeService = Depends(get_intake_service),
) -> ReservationResponse:
    reservation = await intake.create_reservation(body)
    return ReservationResponse(reservation=ReservationView.from_reservation(reservation))


@app.delete("/api/rezerwacje/{reservation_id}", response_model=OkResponse, tags=["Reservations"])
async def delete_reservation(
    reservation_id: str,
    intake: IntakeService = Depends(get_intake_service),
) -> OkResponse:
    """Delete a reservation; deleting an unknown id also succeeds."""
    await intake.delete_reservation(reservation_id)
    return OkResponse()


# =============================================================================
# ORDERS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def create_order(
    body: OrderCreate,
    intake: IntakeService = Depends(get_intake_service),
) -> OrderResponse:
    logger.info(f"Creating order for: {body.user.email or 'guest'}")
    order = await intake.create_order(body)
    return OrderResponse(order=OrderView.from_order(order))


@app.get("/api/orders/my", response_model=OrderListResponse, tags=["Orders"])
async def my_orders(
    email: Optional[str] = Query(None),
    intake: IntakeService = Depends(get_intake_service),
) -> OrderListResponse:
    """Orders placed with the given email, newest first."""
    orders = await intake.list_my_orders(email)
    return OrderListResponse(orders=[OrderView.from_order(o) for o in orders])


# =============================================================================
# ADMIN
# =============================================================================

@app.get("/api/admin/stats", response_model=StatsResponse, tags=["Admin"])
async def admin_stats(
    catalog: CatalogService = Depends(get_catalog_service),
) -> StatsResponse:
    return StatsResponse(**await catalog.stats())


# =============================================================================
# REAL-TIME
# =============================================================================

@app.websocket("/ws")
async def events_socket(
    websocket: WebSocket,
    broker: BaseEventBroker = Depends(get_event_broker),
) -> None:
    """
    Push channel for live updates.

    Messages are ``{"event", "data", "timestamp"}``; anything the client
    sends is ignored.
    """
    await broker.register(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broker.unregister(websocket)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(MilkError)
async def milk_error_handler(request: Request, exc: MilkError) -> JSONResponse:
    """Known failures: taxonomy status and message."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are reported as invalid input."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid input"
    return JSONResponse(status_code=400, content={"ok": False, "message": message})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={"ok": False, "message": str(exc)},
    )


# =============================================================================
# STATIC ASSETS
# =============================================================================

if Path(settings.public_directory).is_dir():
    app.mount("/", StaticFiles(directory=settings.public_directory, html=True), name="public")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("milkcafe.main:app", host=settings.api_host, port=settings.api_port)
