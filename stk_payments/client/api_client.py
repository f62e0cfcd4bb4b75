"""HTTP client for the STK payments API, used by the polling controller and the CLI."""
from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class PaymentClientError(Exception):
    """Raised when a call to the payments API fails or returns an unexpected body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaymentApiClient:
    """Thin async wrapper over the payments API endpoints."""

    def __init__(
        self,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> tuple[int, Dict[str, Any]]:
        try:
            response = await self.http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise PaymentClientError(f"Request to {url} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise PaymentClientError(
                f"Invalid JSON from {url}", status_code=response.status_code
            ) from e

        if not isinstance(data, dict):
            raise PaymentClientError(
                f"Unexpected payload from {url}", status_code=response.status_code
            )
        return response.status_code, data

    async def initiate_payment(
        self, msisdn: str, amount: int, reference: str, email: Optional[str] = None
    ) -> str:
        """
        Request an STK push.

        Returns:
            str: Transaction request id

        Raises:
            PaymentClientError: If the push was not accepted
        """
        body: Dict[str, Any] = {"msisdn": msisdn, "amount": amount, "reference": reference}
        if email:
            body["email"] = email

        status_code, data = await self._request("POST", "/initiate-payment", json=body)
        if status_code != 200 or data.get("success") is not True:
            raise PaymentClientError(
                data.get("error") or "Failed to initiate payment", status_code=status_code
            )
        request_id = data.get("transaction_request_id")
        if not request_id:
            raise PaymentClientError("Failed to initiate payment", status_code=status_code)
        return str(request_id)

    async def cached_status(self, transaction_request_id: str) -> Optional[Dict[str, Any]]:
        """
        Read the stored payment view.

        Returns:
            Optional[Dict[str, Any]]: The ``payment`` object, or None if not recorded yet
        """
        status_code, data = await self._request(
            "GET", f"/check-status-db/{transaction_request_id}"
        )
        if status_code == 404:
            return None
        if status_code != 200 or not data.get("success") or "payment" not in data:
            raise PaymentClientError(
                data.get("error") or "Status check failed", status_code=status_code
            )
        payment = data["payment"]
        if payment is not None and not isinstance(payment, dict):
            raise PaymentClientError(
                "Unexpected payment payload", status_code=status_code
            )
        return payment

    async def provider_status(self, transaction_request_id: str) -> Dict[str, Any]:
        """Ask the API to query PesaFlux directly and return its classified result."""
        status_code, data = await self._request(
            "POST",
            "/check-pesaflux-status",
            json={"transaction_request_id": transaction_request_id},
        )
        if status_code != 200:
            raise PaymentClientError(
                data.get("error") or "Provider status check failed", status_code=status_code
            )
        return data

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
