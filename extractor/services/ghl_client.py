from typing import Optional

import httpx

from extractor.logging_config import get_logger

logger = get_logger("ghl_client")


class GHLAPIError(Exception):
    """Non-2xx answer from the CRM (contacts, OAuth or wallet endpoints)."""

    def __init__(self, status_code: int, body: str, operation: str = ""):
        self.status_code = status_code
        self.body = body
        self.operation = operation
        super().__init__(f"GHL API error ({operation}): {status_code} - {body}")


class GHLClient:
    """Thin HTTP client for the CRM's contact, OAuth and wallet endpoints."""

    def __init__(
        self,
        api_domain: str,
        api_version: str = "2021-07-28",
        timeout_seconds: float = 30.0,
        token_timeout_seconds: float = 30.0,
        wallet_timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_domain = api_domain.rstrip("/")
        self.api_version = api_version
        self.timeout_seconds = timeout_seconds
        self.token_timeout_seconds = token_timeout_seconds
        self.wallet_timeout_seconds = wallet_timeout_seconds
        self.transport = transport

    def _client(self, timeout: float) -> httpx.Client:
        return httpx.Client(timeout=timeout, transport=self.transport)

    def _headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Version": self.api_version,
            "Accept": "application/json",
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code >= 400:
            logger.warning(
                f"GHL {operation} failed with {response.status_code}",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            raise GHLAPIError(response.status_code, response.text, operation)

    @staticmethod
    def _json(response: httpx.Response, operation: str) -> dict:
        """Decode a JSON object body. Anything else is reported as a GHLAPIError."""
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning(
                f"GHL {operation} returned a non-JSON body",
                extra={"context": {"status": response.status_code, "body": response.text[:500]}},
            )
            raise GHLAPIError(response.status_code, response.text, operation)
        return data

    # Contacts

    def get_contact(self, access_token: str, contact_id: str) -> Optional[dict]:
        """Fetch a contact. Returns None when the CRM answers 404."""
        with self._client(self.timeout_seconds) as client:
            response = client.get(
                f"{self.api_domain}/contacts/{contact_id}",
                headers=self._headers(access_token),
            )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "get_contact")
        data = self._json(response, "get_contact")
        return data.get("contact", data)

    def update_contact(self, access_token: str, contact_id: str, payload: dict) -> dict:
        with self._client(self.timeout_seconds) as client:
            response = client.put(
                f"{self.api_domain}/contacts/{contact_id}",
                headers={**self._headers(access_token), "Content-Type": "application/json"},
                json=payload,
            )
        self._raise_for_status(response, "update_contact")
        return self._json(response, "update_contact")

    # OAuth

    def refresh_token(self, client_id: str, client_secret: str, refresh_token: str) -> dict:
        """Exchange a refresh token. Returns the token endpoint's JSON body."""
        with self._client(self.token_timeout_seconds) as client:
            response = client.post(
                f"{self.api_domain}/oauth/token",
                headers={"Accept": "application/json"},
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
            )
        self._raise_for_status(response, "refresh_token")
        return self._json(response, "refresh_token")

    # Wallet

    def check_funds(self, access_token: str, company_id: Optional[str]) -> bool:
        params = {"companyId": company_id} if company_id else None
        with self._client(self.wallet_timeout_seconds) as client:
            response = client.get(
                f"{self.api_domain}/marketplace/billing/charges/has-funds",
                headers=self._headers(access_token),
                params=params,
            )
        self._raise_for_status(response, "check_funds")
        return bool(self._json(response, "check_funds").get("hasFunds"))

    def create_charge(self, access_token: str, charge: dict) -> Optional[str]:
        """Post a metered charge. Returns the wallet's charge id."""
        with self._client(self.wallet_timeout_seconds) as client:
            response = client.post(
                f"{self.api_domain}/marketplace/billing/charges",
                headers={**self._headers(access_token), "Content-Type": "application/json"},
                json=charge,
            )
        self._raise_for_status(response, "create_charge")
        data = self._json(response, "create_charge")
        return data.get("chargeId") or data.get("id")
