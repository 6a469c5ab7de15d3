"""
upi_bank/app.py

FastAPI application entrypoint for the UPI payment simulator.

This module wires together:
- Logging configuration (file-based under LOG_DIR)
- CORS and request-logging middleware
- The auth guard and its session store
- Domain routers under upi_bank/api/ (users, transactions, admin)
- A single handler that renders PaymentError subclasses as JSON
"""

import time

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from upi_bank import __version__, config
from upi_bank.api.admin import router as admin_router
from upi_bank.api.transactions import router as transactions_router
from upi_bank.api.users import router as users_router
from upi_bank.core.auth import AuthGuard
from upi_bank.core.errors import PaymentError, ValidationError
from upi_bank.core.sessions import SessionStore
from upi_bank.db.session import create_tables, engine
from upi_bank.logging_config import get_logger, setup_logging

# Configure logging before creating the app
setup_logging()
logger = get_logger("upi_bank")

app = FastAPI(title="UPI Payment Simulator API", version=__version__)

# Session store is owned by the app and injected into the guard
app.state.sessions = SessionStore(ttl_minutes=config.TOKEN_TTL_MINUTES)
app.state.auth_guard = AuthGuard(app.state.sessions)

# CORS (open for demo)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Request logger. Bodies are not logged: payment and login bodies carry PINs.
    """
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "HTTP %s %s from %s -> %s (%.1fms)",
        request.method,
        request.url.path,
        request.client.host if request.client else "?",
        response.status_code,
        elapsed_ms,
    )
    return response


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = None
    return JSONResponse(status_code=400, content=ValidationError(message).to_dict())


@app.get("/api/health")
async def health():
    """
    Simple health check endpoint.
    """
    return {"status": "healthy", "version": __version__}


# Include domain routers
app.include_router(users_router, prefix="/api")
app.include_router(transactions_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.on_event("startup")
async def on_startup():
    await create_tables()
    logger.info("upi-bank starting up")


@app.on_event("shutdown")
async def on_shutdown():
    try:
        await engine.dispose()
    except Exception:
        logger.exception("Error disposing engine on shutdown")
    logger.info("upi-bank shutting down")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=config.LOG_LEVEL.lower())
