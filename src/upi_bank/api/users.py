from fastapi import APIRouter, Depends, Header
from sqlalchemy.exc import IntegrityError

from upi_bank.core.auth import AuthGuard, check_pin, hash_pin
from upi_bank.core.errors import (
    Conflict,
    RecipientNotFound,
    Unauthenticated,
    ValidationError,
)
from upi_bank.core.resolver import IdentityResolver
from upi_bank.core.store import AccountStore
from upi_bank.core.validators import validate_phone, validate_pin, validate_registration
from upi_bank.logging_config import get_logger
from .deps import get_auth_guard, get_current_account_id, get_db
from .schemas import AccountOut, LoginIn, LookupOut, RegisterIn, TokenOut
from .serializers import serialize_account

logger = get_logger("upi_bank.api.users")

router = APIRouter(tags=["users"])


async def _token_response(guard: AuthGuard, store: AccountStore, account) -> dict:
    token = guard.issue_token(account.account_id)
    identifiers = await store.identifiers_for(account.account_id)
    return {
        "success": True,
        "access_token": token["access_token"],
        "token_type": token["token_type"],
        "expires_at": token["expires_at"].isoformat(),
        "account": serialize_account(account, identifiers),
    }


@router.post("/auth/register", response_model=TokenOut, status_code=201)
async def register(payload: RegisterIn, db=Depends(get_db), guard=Depends(get_auth_guard)):
    """
    Create an account with the starting balance and a default <phone>@<domain> UPI ID.
    """
    check = validate_registration(payload.name, payload.phone, payload.email, payload.pin)
    if not check:
        raise ValidationError(check.reason)

    store = AccountStore(db)
    if await store.get_by_phone(payload.phone):
        raise Conflict("Phone number is already registered")
    if await store.get_by_email(payload.email):
        raise Conflict("Email is already registered")

    try:
        account = await store.create(
            display_name=payload.name,
            phone=payload.phone,
            email=payload.email,
            pin_hash=hash_pin(payload.pin),
        )
        await db.commit()
    except IntegrityError:
        # lost a race with a concurrent registration for the same phone/email
        await db.rollback()
        raise Conflict("Phone number or email is already registered")

    logger.info("Registered account_id=%s", account.account_id)
    return await _token_response(guard, store, account)


@router.post("/auth/login", response_model=TokenOut)
async def login(payload: LoginIn, db=Depends(get_db), guard=Depends(get_auth_guard)):
    """
    Phone + PIN login. Wrong PINs count toward the same lock threshold as payments.
    """
    if not validate_phone(payload.phone) or not validate_pin(payload.pin):
        raise ValidationError("Phone number and a 4-6 digit PIN are required")

    store = AccountStore(db)
    account = await store.get_by_phone(payload.phone)
    if account is None:
        logger.warning("Login failed - unknown phone=%s", payload.phone)
        raise Unauthenticated("Invalid phone number or PIN")
    await check_pin(store, account, payload.pin)

    logger.info("Login success account_id=%s", account.account_id)
    return await _token_response(guard, store, account)


@router.post("/auth/logout")
async def logout(authorization: str = Header(None), guard=Depends(get_auth_guard)):
    return {"success": True, "revoked": guard.logout(authorization)}


@router.get("/me", response_model=AccountOut)
async def me(account_id=Depends(get_current_account_id), db=Depends(get_db)):
    """
    Profile of the authenticated caller, including the current balance.
    """
    store = AccountStore(db)
    account = await store.get(account_id)
    if account is None:
        raise Unauthenticated("Account no longer exists")
    return serialize_account(account, await store.identifiers_for(account_id))


@router.get("/users/lookup/{identifier}", response_model=LookupOut)
async def lookup(identifier: str, _caller=Depends(get_current_account_id), db=Depends(get_db)):
    """
    Resolve a UPI ID or phone number to the payee's display name before paying.
    """
    store = AccountStore(db)
    account = await IdentityResolver(store).resolve(identifier)
    if account is None:
        raise RecipientNotFound("No account found for this UPI ID")
    identifiers = await store.identifiers_for(account.account_id)
    default = next((p.identifier for p in identifiers if p.is_default), None)
    return {"identifier": identifier, "display_name": account.display_name, "upi_id": default}
