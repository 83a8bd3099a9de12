"""
                        Services Module

Business logic, one service class per area. Services receive the request's
database session and, where they announce changes, the event broker.

Services:
    - accounts: registration, login, profiles
    - ledger: loyalty points ledger and account mirror
    - intake: orders and reservations
    - promotions: happy-hour banner
    - catalog: products and admin counters
    - realtime: WebSocket fan-out (in-memory or Redis)
"""

from milkcafe.services.accounts import AccountService
from milkcafe.services.catalog import CatalogService
from milkcafe.services.intake import IntakeService
from milkcafe.services.ledger import LedgerService
from milkcafe.services.promotions import PromotionService

__all__ = [
    "AccountService",
    "CatalogService",
    "IntakeService",
    "LedgerService",
    "PromotionService",
]
