from decimal import Decimal

import httpx
import pytest
from fastapi import Depends

from upi_bank import config
from upi_bank.api.deps import get_db, get_transfer_engine
from upi_bank.app import app
from upi_bank.client import PaymentClient, PaymentClientError
from upi_bank.core.engine import TransferEngine

ADMIN = {"X-Admin-Token": config.SIMPLE_ADMIN_TOKEN}


def _pay(to="9876543211@payease", amount="100", pin="1234", **extra):
    return {"to_identifier": to, "amount": amount, "pin": pin, **extra}


async def _balance(client, headers):
    resp = await client.get("/api/me", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["balance"]


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# --- accounts and sessions -------------------------------------------------


async def test_register_returns_token_and_default_upi_id(client):
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Asha Rao", "phone": "9876543210", "email": "asha@example.com", "pin": "1234"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["token_type"] == "bearer"
    account = body["account"]
    assert account["balance"] == float(config.STARTING_BALANCE)
    assert account["upi_id"] == f"9876543210@{config.UPI_DOMAIN}"
    assert account["is_locked"] is False


async def test_register_duplicate_phone(client, auth_headers):
    await auth_headers(phone="9876543210")
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Other", "phone": "9876543210", "email": "other@example.com", "pin": "1234"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "CONFLICT"


async def test_register_rejects_bad_phone(client):
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Asha", "phone": "12345", "email": "asha@example.com", "pin": "1234"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "VALIDATION_ERROR"


async def test_login_and_me(client, auth_headers):
    account_id, _ = await auth_headers()
    resp = await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "1234"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["account_id"] == account_id


async def test_login_wrong_pin(client, auth_headers):
    await auth_headers()
    resp = await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "0000"})
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"] == "INVALID_PIN"
    assert body["attempts_remaining"] == 2


async def test_me_requires_token(client):
    resp = await client.get("/api/me")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


async def test_logout_revokes_token(client, auth_headers):
    _, headers = await auth_headers()
    resp = await client.post("/api/auth/logout", headers=headers)
    assert resp.json() == {"success": True, "revoked": True}
    assert (await client.get("/api/me", headers=headers)).status_code == 401


async def test_lookup_recipient(client, auth_headers):
    _, headers = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")

    resp = await client.get("/api/users/lookup/9876543211@phonepe", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Ravi Kumar"
    assert resp.json()["upi_id"] == f"9876543211@{config.UPI_DOMAIN}"

    missing = await client.get("/api/users/lookup/nobody@payease", headers=headers)
    assert missing.status_code == 404


# --- payments ----------------------------------------------------------------


@pytest.mark.parametrize("path", ["/api/payment", "/api/transactions"])
async def test_payment_success(client, auth_headers, path):
    _, sender = await auth_headers()
    _, receiver = await auth_headers(name="Ravi Kumar", phone="9876543211")

    resp = await client.post(path, json=_pay(amount="250.50", description="rent share"), headers=sender)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "SUCCESS"
    assert body["new_balance"] == 9749.50
    assert body["recipient_name"] == "Ravi Kumar"
    assert body["reference_id"].startswith("TXN")

    assert await _balance(client, sender) == 9749.50
    assert await _balance(client, receiver) == 10250.50


async def test_payment_accepts_camel_case_recipient(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")
    resp = await client.post(
        "/api/payment", json={"toUpiId": "9876543211@payease", "amount": 10, "pin": "1234"}, headers=sender
    )
    assert resp.status_code == 200, resp.text


@pytest.mark.parametrize(
    "payload",
    [
        _pay(amount="100001"),
        _pay(amount="1e40"),
        _pay(amount="-5"),
        _pay(amount="10.001"),
        _pay(to="not-an-upi-id"),
        _pay(pin="12"),
        _pay(pin=1234),
        {"to_identifier": "9876543211@payease", "pin": "1234"},
    ],
)
async def test_payment_validation_errors(client, auth_headers, payload):
    account_id, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")

    resp = await client.post("/api/payment", json=payload, headers=sender)
    assert resp.status_code == 400
    assert resp.json()["error"] == "VALIDATION_ERROR"
    assert await _balance(client, sender) == 10000.0

    history = await client.get(f"/api/transactions/{account_id}", headers=sender)
    assert history.json()["total"] == 0


async def test_payment_requires_token(client):
    resp = await client.post("/api/payment", json=_pay())
    assert resp.status_code == 401


async def test_payment_to_unknown_recipient_is_recorded(client, auth_headers):
    account_id, sender = await auth_headers()
    resp = await client.post("/api/payment", json=_pay(to="nonexistent@domain"), headers=sender)
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "RECIPIENT_NOT_FOUND"
    assert body["debited"] is False
    assert await _balance(client, sender) == 10000.0

    history = (await client.get(f"/api/transactions/{account_id}", headers=sender)).json()
    assert history["total"] == 1
    row = history["items"][0]
    assert row["status"] == "FAILED"
    assert row["reference_id"] == body["reference_id"]
    assert row["to_account_id"] is None


async def test_payment_insufficient_balance(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")
    resp = await client.post("/api/payment", json=_pay(amount="10000.01"), headers=sender)
    assert resp.status_code == 400
    assert resp.json()["error"] == "INSUFFICIENT_BALANCE"


async def test_wrong_pin_then_locked(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")

    for remaining in (2, 1, 0):
        resp = await client.post("/api/payment", json=_pay(pin="9999"), headers=sender)
        assert resp.status_code == 401
        assert resp.json()["attempts_remaining"] == remaining

    resp = await client.post("/api/payment", json=_pay(), headers=sender)
    assert resp.status_code == 423
    assert resp.json()["error"] == "ACCOUNT_LOCKED"
    assert await _balance(client, sender) == 10000.0


async def test_login_and_payment_share_the_pin_counter(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")

    for remaining in (2, 1):
        resp = await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "0000"})
        assert resp.json()["attempts_remaining"] == remaining
    resp = await client.post("/api/payment", json=_pay(pin="9999"), headers=sender)
    assert resp.status_code == 401
    assert resp.json()["account_locked"] is True

    locked = await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "1234"})
    assert locked.status_code == 423


async def test_daily_limit(client, auth_headers):
    def limited_engine(db=Depends(get_db)):
        return TransferEngine(db, daily_limit=Decimal("150"))

    app.dependency_overrides[get_transfer_engine] = limited_engine
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")

    assert (await client.post("/api/payment", json=_pay(amount="100"), headers=sender)).status_code == 200
    resp = await client.post("/api/payment", json=_pay(amount="60"), headers=sender)
    assert resp.status_code == 403
    assert resp.json()["error"] == "DAILY_LIMIT_EXCEEDED"


async def test_idempotency_key_header(client, auth_headers):
    account_id, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")
    headers = {**sender, "Idempotency-Key": "order-42"}

    first = await client.post("/api/payment", json=_pay(), headers=headers)
    second = await client.post("/api/payment", json=_pay(), headers=headers)
    assert first.status_code == second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["reference_id"] == first.json()["reference_id"]
    assert await _balance(client, sender) == 9900.0

    clash = await client.post("/api/payment", json=_pay(amount="5"), headers=headers)
    assert clash.status_code == 409


# --- history -----------------------------------------------------------------


async def test_history_pagination_and_direction(client, auth_headers):
    sender_id, sender = await auth_headers()
    receiver_id, receiver = await auth_headers(name="Ravi Kumar", phone="9876543211")
    for amount in ("1", "2", "3"):
        assert (await client.post("/api/payment", json=_pay(amount=amount), headers=sender)).status_code == 200

    page1 = (await client.get(f"/api/transactions/{sender_id}?page=1&limit=2", headers=sender)).json()
    page2 = (await client.get(f"/api/transactions/{sender_id}?page=2&limit=2", headers=sender)).json()
    assert page1["total"] == 3
    assert [t["amount"] for t in page1["items"]] == [3.0, 2.0]
    assert [t["amount"] for t in page2["items"]] == [1.0]
    assert {t["direction"] for t in page1["items"]} == {"sent"}

    received = (await client.get(f"/api/transactions/{receiver_id}", headers=receiver)).json()
    assert received["total"] == 3
    assert {t["direction"] for t in received["items"]} == {"received"}


async def test_history_of_another_account_is_forbidden(client, auth_headers):
    _, sender = await auth_headers()
    other_id, _ = await auth_headers(name="Ravi Kumar", phone="9876543211")
    resp = await client.get(f"/api/transactions/{other_id}", headers=sender)
    assert resp.status_code == 403


async def test_history_limit_is_capped(client, auth_headers):
    account_id, sender = await auth_headers()
    resp = await client.get(f"/api/transactions/{account_id}?limit=1000", headers=sender)
    assert resp.status_code == 400


async def test_lookup_by_reference(client, auth_headers):
    _, sender = await auth_headers()
    _, receiver = await auth_headers(name="Ravi Kumar", phone="9876543211")
    _, stranger = await auth_headers(name="Amit Kumar", phone="9876543212")
    ref = (await client.post("/api/payment", json=_pay(), headers=sender)).json()["reference_id"]

    mine = await client.get(f"/api/transactions/reference/{ref}", headers=sender)
    assert mine.status_code == 200
    assert mine.json()["direction"] == "sent"
    theirs = await client.get(f"/api/transactions/reference/{ref}", headers=receiver)
    assert theirs.json()["direction"] == "received"

    assert (await client.get(f"/api/transactions/reference/{ref}", headers=stranger)).status_code == 404
    assert (await client.get("/api/transactions/reference/TXN0", headers=sender)).status_code == 404


async def test_my_stats(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")
    await client.post("/api/payment", json=_pay(amount="100"), headers=sender)
    await client.post("/api/payment", json=_pay(amount="50"), headers=sender)
    await client.post("/api/payment", json=_pay(to="ghost@payease"), headers=sender)

    stats = (await client.get("/api/transactions/stats", headers=sender)).json()
    assert stats["total_transactions"] == 3
    assert stats["successful_transactions"] == 2
    assert stats["failed_transactions"] == 1
    assert stats["total_amount"] == 150.0
    assert stats["average_amount"] == 75.0


# --- admin -------------------------------------------------------------------


async def test_admin_requires_token(client):
    assert (await client.get("/api/admin/stats")).status_code == 403
    assert (await client.get("/api/admin/stats", headers={"X-Admin-Token": "nope"})).status_code == 403


async def test_admin_seed_is_idempotent(client):
    first = (await client.post("/api/admin/seed", headers=ADMIN)).json()
    second = (await client.post("/api/admin/seed", headers=ADMIN)).json()
    assert first["seeded_accounts_created"] == 5
    assert second["seeded_accounts_created"] == 0

    login = await client.post("/api/auth/login", json={"phone": "9876543210", "pin": first["demo_pin"]})
    assert login.status_code == 200

    accounts = (await client.get("/api/admin/accounts", headers=ADMIN)).json()["accounts"]
    assert len(accounts) == 5


async def test_admin_unlock(client, auth_headers):
    account_id, _ = await auth_headers()
    for _ in range(3):
        await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "0000"})

    locked = (await client.get("/api/admin/locked-accounts", headers=ADMIN)).json()
    assert locked["count"] == 1
    assert locked["accounts"][0]["account_id"] == account_id
    assert (await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "1234"})).status_code == 423

    resp = await client.post(f"/api/admin/unlock/{account_id}", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["is_locked"] is False
    assert (await client.post("/api/auth/login", json={"phone": "9876543210", "pin": "1234"})).status_code == 200


async def test_admin_unlock_unknown_account(client):
    resp = await client.post("/api/admin/unlock/00000000-0000-0000-0000-000000000000", headers=ADMIN)
    assert resp.status_code == 404


async def test_admin_stats_and_transactions(client, auth_headers):
    _, sender = await auth_headers()
    await auth_headers(name="Ravi Kumar", phone="9876543211")
    await client.post("/api/payment", json=_pay(amount="40"), headers=sender)
    await client.post("/api/payment", json=_pay(to="ghost@payease"), headers=sender)

    stats = (await client.get("/api/admin/stats", headers=ADMIN)).json()
    assert stats["total_accounts"] == 2
    assert stats["locked_accounts"] == 0
    assert stats["total_transactions"] == 2
    assert stats["total_amount"] == 40.0

    page = (await client.get("/api/admin/transactions", headers=ADMIN)).json()
    assert page["total"] == 2
    assert {t["status"] for t in page["items"]} == {"SUCCESS", "FAILED"}


async def test_admin_reset(client, auth_headers):
    _, headers = await auth_headers()
    refused = (await client.post("/api/admin/reset", headers=ADMIN)).json()
    assert refused["success"] is False

    resp = await client.post("/api/admin/reset?confirm=true", headers=ADMIN)
    assert resp.json()["success"] is True
    assert (await client.get("/api/admin/accounts", headers=ADMIN)).json()["accounts"] == []
    # sessions are dropped with the data
    assert (await client.get("/api/me", headers=headers)).status_code == 401


# --- client ------------------------------------------------------------------


async def test_payment_client(client):
    async with PaymentClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app)) as payee:
        await payee.register("Ravi Kumar", "9876543211", "ravi@example.com", "1234")

    async with PaymentClient(base_url="http://testserver", transport=httpx.ASGITransport(app=app)) as payer:
        registered = await payer.register("Asha Rao", "9876543210", "asha@example.com", "1234")
        account_id = registered["account"]["account_id"]

        paid = await payer.pay("9876543211@payease", Decimal("75.25"), "1234", idempotency_key="cli-1")
        assert paid["new_balance"] == 9924.75
        again = await payer.pay("9876543211@payease", Decimal("75.25"), "1234", idempotency_key="cli-1")
        assert again["replayed"] is True

        history = await payer.history(account_id)
        assert history["total"] == 1
        assert (await payer.me())["balance"] == 9924.75

        with pytest.raises(PaymentClientError) as info:
            await payer.pay("nobody@payease", "10", "1234")
        assert info.value.status_code == 404
        assert info.value.code == "RECIPIENT_NOT_FOUND"

        await payer.logout()
        with pytest.raises(PaymentClientError) as info:
            await payer.me()
        assert info.value.status_code == 401
