import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ZohoApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}


class ZohoClient:
    """Zoho CRM and Zoho Books over one OAuth refresh-token grant."""

    # refresh this long before Zoho says the token expires
    TOKEN_EXPIRY_MARGIN_SECONDS = 60

    def __init__(
        self,
        accounts_domain: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        crm_base_url: str,
        books_base_url: str,
        books_organization_id: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._accounts_domain = accounts_domain.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._crm_base_url = crm_base_url.rstrip("/")
        self._books_base_url = books_base_url.rstrip("/")
        self._books_organization_id = books_organization_id
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def start(self):
        """Open the underlying HTTP connection pool"""
        self._client = httpx.AsyncClient(
            timeout=self._timeout_seconds, transport=self._transport
        )

    async def stop(self):
        """Close the underlying HTTP connection pool"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def _get_access_token(self, force_refresh: bool = False) -> str:
        if (
            not force_refresh
            and self._access_token
            and time.monotonic() < self._token_expires_at
        ):
            return self._access_token

        response = await self._client.post(
            f"{self._accounts_domain}/oauth/v2/token",
            data={
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
            },
        )
        body = _json_or_empty(response)
        if response.is_error or "access_token" not in body:
            raise ZohoApiError(
                f"Failed to refresh Zoho access token: {body.get('error', response.status_code)}",
                status_code=response.status_code,
                details=body,
            )

        self._access_token = body["access_token"]
        expires_in = int(body.get("expires_in", 3600))
        self._token_expires_at = (
            time.monotonic() + expires_in - self.TOKEN_EXPIRY_MARGIN_SECONDS
        )
        logger.info("Refreshed Zoho access token")
        return self._access_token

    async def _request(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self._client:
            raise RuntimeError("Client is not started. Call start() first.")

        token = await self._get_access_token()
        response = await self._client.request(
            method,
            url,
            json=json,
            params=params,
            headers={"Authorization": f"Zoho-oauthtoken {token}"},
        )
        if response.status_code == httpx.codes.UNAUTHORIZED:
            # token revoked or expired early; one forced refresh
            token = await self._get_access_token(force_refresh=True)
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Zoho-oauthtoken {token}"},
            )

        body = _json_or_empty(response)
        if response.is_error:
            raise ZohoApiError(
                f"Zoho API error: {response.status_code} - "
                f"{body.get('message', response.reason_phrase)}",
                status_code=response.status_code,
                details=body,
            )
        return body

    # CRM

    @staticmethod
    def _check_crm(body: dict[str, Any]) -> dict[str, Any]:
        entries = body.get("data") or []
        if not entries or entries[0].get("status") != "success":
            message = entries[0].get("message") if entries else "empty response"
            raise ZohoApiError(f"Zoho CRM rejected record: {message}", details=body)
        return body

    async def create_crm_record(
        self, module: str, record: dict[str, Any]
    ) -> dict[str, Any]:
        body = await self._request(
            "POST",
            f"{self._crm_base_url}/{module}",
            json={"data": [record], "trigger": ["workflow"]},
        )
        return self._check_crm(body)

    async def update_crm_record(
        self, module: str, record_id: str, record: dict[str, Any]
    ) -> dict[str, Any]:
        body = await self._request(
            "PUT",
            f"{self._crm_base_url}/{module}/{record_id}",
            json={"data": [record]},
        )
        return self._check_crm(body)

    async def delete_crm_record(self, module: str, record_id: str) -> dict[str, Any]:
        body = await self._request("DELETE", f"{self._crm_base_url}/{module}/{record_id}")
        return self._check_crm(body)

    # Books

    async def _books(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        body = await self._request(
            method,
            f"{self._books_base_url}{path}",
            json=json,
            params={"organization_id": self._books_organization_id, **(params or {})},
        )
        if body.get("code") != 0:
            raise ZohoApiError(
                f"Zoho Books error: {body.get('message', 'unknown error')}",
                details=body,
            )
        return body

    async def find_books_contact(self, email: str) -> str | None:
        body = await self._books("GET", "/contacts", params={"email": email})
        contacts = body.get("contacts") or []
        return contacts[0]["contact_id"] if contacts else None

    async def create_books_contact(self, contact: dict[str, Any]) -> str:
        body = await self._books("POST", "/contacts", json=contact)
        return body["contact"]["contact_id"]

    async def create_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        return await self._books("POST", "/invoices", json=invoice)

    async def update_invoice(
        self, invoice_id: str, invoice: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._books("PUT", f"/invoices/{invoice_id}", json=invoice)

    async def delete_invoice(self, invoice_id: str) -> dict[str, Any]:
        return await self._books("DELETE", f"/invoices/{invoice_id}")
