"""
Account Service

Registration, login and profile management.

Every account is created together with an empty ledger for its freshly
minted 6-digit loyalty id, in one transaction. Login with an unknown email
provisions such an account without a password (``provision_account``), so
older clients that only ask for an email keep working. Accounts with a
password require it on every login.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from milkcafe.core.config import get_settings
from milkcafe.core.exceptions import (
    DuplicateAccount,
    Internal,
    InvalidCredentials,
    InvalidInput,
    MissingPassword,
    NotFound,
)
from milkcafe.core.security import (
    SessionClaims,
    create_session_token,
    hash_password,
    normalize_email,
    password_too_long,
    verify_password,
)
from milkcafe.models import Account, Ledger
from milkcafe.services.ledger import fetch_ledger

logger = logging.getLogger(__name__)
settings = get_settings()

LOYALTY_ID_ATTEMPTS = 20


def generate_loyalty_id() -> str:
    """Random 6-digit loyalty id (100000-999999)."""
    return str(100000 + secrets.randbelow(900000))


@dataclass
class AuthResult:
    """Issued session for an account."""
    token: str
    account: Account


class AccountService:
    """Credential, session and profile operations on accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_by_email(self, email: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def _loyalty_id_in_use(self, loyalty_id: str) -> bool:
        account = await self.db.execute(
            select(Account.id).where(Account.loyalty_id == loyalty_id)
        )
        if account.first() is not None:
            return True
        ledger = await self.db.execute(
            select(Ledger.id).where(Ledger.loyalty_id == loyalty_id)
        )
        return ledger.first() is not None

    async def mint_loyalty_id(self) -> str:
        """
        Draw a loyalty id not used by any account or ledger.

        Raises:
            Internal: No free id found within the attempt budget
        """
        for _ in range(LOYALTY_ID_ATTEMPTS):
            candidate = generate_loyalty_id()
            if not await self._loyalty_id_in_use(candidate):
                return candidate
        raise Internal("Could not allocate a loyalty id")

    # =========================================================================
    # CREATION
    # =========================================================================

    async def _create_account(
        self,
        email: str,
        password_hash: str = "",
        phone: str = "",
        full_name: str = "",
    ) -> Account:
        """Insert an account and its empty ledger in one transaction."""
        loyalty_id = await self.mint_loyalty_id()

        account = Account(
            email=email,
            password_hash=password_hash,
            phone=phone,
            full_name=full_name,
            loyalty_id=loyalty_id,
            points=0,
            points_history=[],
            orders_history=[],
            reservations_history=[],
        )
        self.db.add(account)
        self.db.add(Ledger(loyalty_id=loyalty_id, points=0, linked_email=email))

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise

        await self.db.refresh(account)
        logger.info(f"Account created: {email} (loyalty id {loyalty_id})")
        return account

    async def register(
        self,
        email: Optional[str],
        password: Optional[str] = None,
        phone: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> AuthResult:
        """
        Create an account and issue a session.

        Raises:
            InvalidInput: Missing email, or password shorter than the minimum
                or longer than bcrypt accepts
            DuplicateAccount: Email already registered
        """
        email = normalize_email(email)
        password = str(password or "").strip()

        if not email:
            raise InvalidInput("Email is required")
        if password and len(password) < settings.min_password_length:
            raise InvalidInput("Password too short")
        if password_too_long(password):
            raise InvalidInput("Password too long")

        if await self.get_by_email(email) is not None:
            raise DuplicateAccount()

        try:
            account = await self._create_account(
                email=email,
                password_hash=hash_password(password) if password else "",
                phone=str(phone or "").strip(),
                full_name=str(full_name or "").strip(),
            )
        except IntegrityError:
            # Lost a race against a concurrent registration
            if await self.get_by_email(email) is not None:
                raise DuplicateAccount()
            raise

        return self._issue(account)

    async def provision_account(self, email: str) -> Account:
        """
        Return the account for ``email``, creating a passwordless one
        (with its ledger) if none exists.

        Concurrent calls for the same email end up with the same account.
        """
        email = normalize_email(email)
        if not email:
            raise InvalidInput("Email is required")

        account = await self.get_by_email(email)
        if account is not None:
            return account

        try:
            return await self._create_account(email=email)
        except IntegrityError:
            account = await self.get_by_email(email)
            if account is None:
                raise
            return account

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def login(self, email: Optional[str], password: Optional[str] = None) -> AuthResult:
        """
        Log in, provisioning the account on first use.

        Raises:
            InvalidInput: Missing email
            MissingPassword: Account has a password and none was sent
            InvalidCredentials: Password does not match
        """
        email = normalize_email(email)
        password = str(password or "").strip()
        if not email:
            raise InvalidInput("Email is required")

        account = await self.provision_account(email)

        if account.has_password:
            if not password:
                raise MissingPassword()
            if not verify_password(password, account.password_hash):
                logger.info(f"Rejected login for {email}: wrong password")
                raise InvalidCredentials()

        return self._issue(account)

    @staticmethod
    def _issue(account: Account) -> AuthResult:
        token = create_session_token(
            email=account.email,
            account_id=str(account.id),
            loyalty_id=account.loyalty_id,
        )
        return AuthResult(token=token, account=account)

    # =========================================================================
    # PROFILE
    # =========================================================================

    async def _require_account(self, claims: SessionClaims) -> Account:
        account = await self.get_by_email(claims.email)
        if account is None:
            raise NotFound()
        return account

    async def get_profile(self, claims: SessionClaims) -> tuple[Account, int]:
        """
        The authenticated account and its ledger balance.

        The balance always comes from the ledger; an account without a
        ledger row has 0 points.
        """
        account = await self._require_account(claims)
        ledger = await fetch_ledger(self.db, account.loyalty_id)
        return account, ledger.points if ledger else 0

    async def update_profile(
        self,
        claims: SessionClaims,
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Account:
        """Set the supplied profile fields of the authenticated account."""
        account = await self._require_account(claims)

        if full_name is not None:
            account.full_name = full_name.strip()
        if phone is not None:
            account.phone = phone.strip()

        await self.db.commit()
        logger.info(f"Profile updated: {account.email}")
        return account
