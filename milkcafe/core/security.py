"""
Credentials & Session Tokens

Password hashing (bcrypt) and bearer token issuance/verification (JWT).
A token carries the account's email, id and loyalty id and lives for
``token_lifetime_days`` (30 by default); there is no refresh flow.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from milkcafe.core.config import get_settings
from milkcafe.core.exceptions import Unauthenticated

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried by a verified session token."""
    email: str
    account_id: str
    loyalty_id: str


def normalize_email(email: Optional[str]) -> str:
    """Trim and lower-case an email; None becomes an empty string."""
    return str(email or "").strip().lower()


# =============================================================================
# PASSWORDS
# =============================================================================

def password_too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    """Hash a password with bcrypt using the configured cost factor."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a password against a stored bcrypt hash.

    An empty or malformed hash never matches.
    """
    if not password or not password_hash or password_too_long(password):
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# =============================================================================
# SESSION TOKENS
# =============================================================================

def create_session_token(
    email: str,
    account_id: str,
    loyalty_id: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Issue a signed session token.

    Args:
        email: Normalized account email
        account_id: Account primary key (as string)
        loyalty_id: Loyalty id assigned to the account
        now: Issue time (defaults to current UTC time)

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "email": email,
        "uid": account_id,
        "loyaltyId": loyalty_id,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(days=settings.token_lifetime_days)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: Optional[str]) -> SessionClaims:
    """
    Verify a session token's signature and expiry.

    Raises:
        Unauthenticated: Token is missing, malformed, forged or expired
    """
    if not token:
        raise Unauthenticated("Missing token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Rejected session token: {e}")
        raise Unauthenticated("Invalid token")

    email = payload.get("email")
    if not email:
        raise Unauthenticated("Invalid token")

    return SessionClaims(
        email=normalize_email(email),
        account_id=str(payload.get("uid", "")),
        loyalty_id=str(payload.get("loyaltyId", "")),
    )


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionClaims:
    """FastAPI dependency resolving the bearer token of the request."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Missing token")
    return decode_session_token(credentials.credentials)
