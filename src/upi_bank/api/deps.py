from typing import AsyncGenerator
from uuid import UUID

from fastapi import Depends, Header, Request

from upi_bank import config
from upi_bank.core.auth import AuthGuard
from upi_bank.core.engine import TransferEngine
from upi_bank.core.errors import Forbidden
from upi_bank.db.session import AsyncSessionLocal


async def get_db() -> AsyncGenerator:
    """
    Async DB session dependency for FastAPI routes.
    """
    async with AsyncSessionLocal() as session:
        yield session


def get_auth_guard(request: Request) -> AuthGuard:
    return request.app.state.auth_guard


def get_current_account_id(
    authorization: str = Header(None),
    guard: AuthGuard = Depends(get_auth_guard),
) -> UUID:
    """
    Caller's account id from the bearer token; 401 otherwise.
    """
    return guard.authenticate(authorization)


def get_transfer_engine(db=Depends(get_db)) -> TransferEngine:
    return TransferEngine(db)


def require_admin(x_admin_token: str = Header(None)) -> None:
    if x_admin_token != config.SIMPLE_ADMIN_TOKEN:
        raise Forbidden("Admin token required")
