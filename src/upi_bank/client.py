"""
Payment Client
Async HTTP client for the upi-bank API.
"""

from typing import Any, Dict, Optional

import httpx


class PaymentClientError(Exception):
    def __init__(self, status_code: int, body: Dict[str, Any]):
        self.status_code = status_code
        self.body = body
        self.code = body.get("error")
        self.retryable = bool(body.get("retryable"))
        super().__init__(f"{status_code} {self.code}: {body.get('message')}")


class PaymentClient:
    """
    Thin wrapper over the HTTP surface. Keeps the bearer token from the last
    login/register call and raises PaymentClientError for non-2xx responses.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.token: Optional[str] = None

    async def __aenter__(self) -> "PaymentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, path: str, headers=None, **kwargs) -> Dict[str, Any]:
        response = await self.client.request(method, path, headers=self._headers(headers), **kwargs)
        body = response.json()
        if response.is_error:
            raise PaymentClientError(response.status_code, body)
        return body

    async def register(self, name: str, phone: str, email: str, pin: str) -> Dict[str, Any]:
        body = await self._request(
            "POST", "/api/auth/register", json={"name": name, "phone": phone, "email": email, "pin": pin}
        )
        self.token = body["access_token"]
        return body

    async def login(self, phone: str, pin: str) -> Dict[str, Any]:
        body = await self._request("POST", "/api/auth/login", json={"phone": phone, "pin": pin})
        self.token = body["access_token"]
        return body

    async def logout(self) -> None:
        await self._request("POST", "/api/auth/logout")
        self.token = None

    async def me(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/me")

    async def pay(
        self,
        to_identifier: str,
        amount: Any,
        pin: str,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        payload = {"to_identifier": to_identifier, "amount": str(amount), "pin": pin}
        if description is not None:
            payload["description"] = description
        return await self._request("POST", "/api/payment", headers=headers, json=payload)

    async def history(self, account_id: str, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        return await self._request(
            "GET", f"/api/transactions/{account_id}", params={"page": page, "limit": limit}
        )
