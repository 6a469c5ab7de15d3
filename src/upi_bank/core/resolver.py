"""
Identity Resolver
Maps a payment identifier to an account.
"""

from typing import FrozenSet, Iterable, Optional

from upi_bank import config
from upi_bank.core.store import AccountStore
from upi_bank.core.validators import PHONE_PATTERN
from upi_bank.db.models import Account
from upi_bank.logging_config import get_logger

logger = get_logger("upi_bank.core.resolver")

# Handles of other UPI apps whose local part is the payer's bare phone number
KNOWN_PROVIDER_SUFFIXES = (
    "paytm",
    "phonepe",
    "gpay",
    "upi",
    "ybl",
    "okaxis",
    "oksbi",
    "okhdfcbank",
    "okicici",
)


def provider_suffixes(extra: Iterable[str] = ()) -> FrozenSet[str]:
    return frozenset(s.lower() for s in (config.UPI_DOMAIN, *KNOWN_PROVIDER_SUFFIXES, *extra))


class IdentityResolver:
    """
    Resolution order:
    1. exact match on a registered payment identifier
    2. ``<phone>@<known provider>`` -> account with that phone
    3. a bare phone number -> account with that phone

    Returns None when nothing matches; never raises for a missing account.
    """

    def __init__(self, accounts: AccountStore, suffixes: Optional[Iterable[str]] = None):
        self.accounts = accounts
        self.suffixes = frozenset(s.lower() for s in suffixes) if suffixes is not None else provider_suffixes()

    def phone_candidate(self, identifier: str) -> Optional[str]:
        """
        The bare phone number an identifier stands for, if it has one.
        """
        local, sep, domain = identifier.strip().lower().rpartition("@")
        if not sep:
            local = domain
        elif domain not in self.suffixes:
            return None
        return local if PHONE_PATTERN.fullmatch(local) else None

    async def resolve(self, identifier: str) -> Optional[Account]:
        if not identifier or not identifier.strip():
            return None

        account = await self.accounts.get_by_identifier(identifier)
        if account is not None:
            return account

        phone = self.phone_candidate(identifier)
        if phone is not None:
            account = await self.accounts.get_by_phone(phone)
            if account is not None:
                logger.info("Resolved %s via phone fallback", identifier)
                return account

        logger.info("Identifier did not resolve: %s", identifier)
        return None
