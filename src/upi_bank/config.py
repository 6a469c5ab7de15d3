"""
Runtime configuration for the upi-bank service.

Everything is read from the environment once, at import time. A local .env
file is honoured but never overrides variables that are already set.
"""

import os
from decimal import Decimal

from dotenv import find_dotenv, load_dotenv

load_dotenv(find_dotenv(usecwd=True), override=False)


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default)).quantize(Decimal("0.01"))


# Storage
DATABASE_URL = os.getenv("DATABASE_URL")
SQL_ECHO = _bool_env("SQL_ECHO")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")

# Auth guard
JWT_SECRET = os.getenv("JWT_SECRET", "upi-bank-dev-secret-change-me-before-deploying")
JWT_ALGORITHM = "HS256"
TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES", "60"))
PIN_HASH_ITERATIONS = int(os.getenv("PIN_HASH_ITERATIONS", "120000"))
SIMPLE_ADMIN_TOKEN = os.getenv("SIMPLE_ADMIN_TOKEN", "letmein")

# Money rules
STARTING_BALANCE = _decimal_env("STARTING_BALANCE", "10000.00")
MAX_TRANSACTION_AMOUNT = _decimal_env("MAX_TRANSACTION_AMOUNT", "100000.00")
DAILY_TRANSFER_LIMIT = _decimal_env("DAILY_TRANSFER_LIMIT", "200000.00")
MAX_PIN_ATTEMPTS = int(os.getenv("MAX_PIN_ATTEMPTS", "3"))
MAX_DESCRIPTION_LENGTH = 100

# Payment identifiers issued by this service look like <phone>@<UPI_DOMAIN>
UPI_DOMAIN = os.getenv("UPI_DOMAIN", "payease").strip().lower()
