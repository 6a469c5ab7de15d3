"""
Auth guard: PIN hashing, the shared PIN check and bearer-token verification.

The transfer engine never sees tokens. Routes resolve the caller's account id
through AuthGuard.authenticate() and pass that id in.
"""

import hashlib
import hmac
import secrets
from typing import Any, Dict, Optional
from uuid import UUID

import jwt

from upi_bank import config
from upi_bank.core.errors import AccountLocked, InvalidPin, TokenExpired, Unauthenticated
from upi_bank.core.sessions import SessionStore
from upi_bank.core.store import AccountStore
from upi_bank.db.models import Account
from upi_bank.db.session import utcnow
from upi_bank.logging_config import get_logger

logger = get_logger("upi_bank.core.auth")

PIN_HASH_SCHEME = "pbkdf2_sha256"


def hash_pin(pin: str, iterations: Optional[int] = None, salt: Optional[str] = None) -> str:
    """
    Salted PBKDF2 digest in the form ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``.
    """
    iterations = iterations or config.PIN_HASH_ITERATIONS
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", pin.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{PIN_HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_pin(pin: str, pin_hash: str) -> bool:
    try:
        scheme, iterations, salt, expected = pin_hash.split("$")
    except (AttributeError, ValueError):
        return False
    if scheme != PIN_HASH_SCHEME:
        return False
    candidate = hash_pin(pin, iterations=int(iterations), salt=salt)
    return hmac.compare_digest(candidate.rsplit("$", 1)[1], expected)


class AuthGuard:
    """
    Issues and verifies HS256 bearer tokens backed by a SessionStore.
    """

    def __init__(
        self,
        sessions: SessionStore,
        secret: str = config.JWT_SECRET,
        algorithm: str = config.JWT_ALGORITHM,
    ):
        self.sessions = sessions
        self.secret = secret
        self.algorithm = algorithm

    def issue_token(self, account_id: UUID) -> Dict[str, Any]:
        session = self.sessions.create(str(account_id))
        payload = {
            "sub": str(account_id),
            "sid": session["session_id"],
            "iat": session["created_at"],
            "exp": session["expires_at"],
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_at": session["expires_at"],
        }

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "sid", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired()
        except jwt.InvalidTokenError:
            raise Unauthenticated("Invalid authentication token")

    def authenticate(self, authorization: Optional[str]) -> UUID:
        """
        Resolve an ``Authorization: Bearer <token>`` header to the caller's account id.
        """
        if not authorization:
            raise Unauthenticated()
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthenticated("Expected a bearer token")
        claims = self.decode(token.strip())
        if not self.sessions.is_active(claims["sid"], claims["sub"]):
            raise TokenExpired("Session has ended, please log in again")
        try:
            return UUID(claims["sub"])
        except ValueError:
            raise Unauthenticated("Invalid authentication token")

    def logout(self, authorization: Optional[str]) -> bool:
        if not authorization:
            return False
        _, _, token = authorization.partition(" ")
        try:
            claims = self.decode(token.strip())
        except Unauthenticated:
            return False
        return self.sessions.revoke(claims["sid"])


async def check_pin(store: AccountStore, account: Account, pin: str) -> None:
    """
    PIN check shared by login and payment for an already loaded account.

    A locked account is refused before the PIN is looked at. A wrong PIN is
    counted and committed before InvalidPin is raised, and the account locks
    once the counter reaches ``store.max_pin_attempts``. A correct PIN clears
    the counter.
    """
    if account.is_locked:
        raise AccountLocked()

    if not verify_pin(pin, account.pin_hash):
        attempts = await store.record_failed_auth(account.account_id)
        await store.db.commit()
        remaining = max(store.max_pin_attempts - attempts, 0)
        logger.warning("Invalid PIN account_id=%s attempts=%s", account.account_id, attempts)
        if remaining == 0:
            raise InvalidPin(
                "Invalid PIN. Account locked after too many failed attempts",
                attempts_remaining=0,
                account_locked=True,
            )
        raise InvalidPin(attempts_remaining=remaining, account_locked=False)

    if account.failed_pin_attempts:
        await store.reset_failed_auth(account.account_id)
        await store.db.commit()
