"""
PesaFlux API client with error classification.

Implements:
- STK push initiation
- Transaction status queries with exponential backoff on transport errors
- Classification of provider failures (transient, rejected, malformed)
"""
import time
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from stk_payments.config import Settings, get_settings
from stk_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PesaFluxErrorType(Enum):
    """Classification of PesaFlux errors."""

    TRANSIENT = "transient"  # network failure or 5xx, safe to retry reads
    REJECTED = "rejected"  # provider declined the request
    MALFORMED = "malformed"  # response was not the JSON object we expect


class PesaFluxError(Exception):
    """Base exception for PesaFlux-related errors."""

    def __init__(
        self,
        message: str,
        error_type: PesaFluxErrorType,
        original_error: Optional[Exception] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize PesaFlux error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Underlying exception, if any
            payload: Provider response body, if one was parsed
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error
        self.payload = payload


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, PesaFluxError) and error.error_type is PesaFluxErrorType.TRANSIENT


class PesaFluxClient:
    """
    Async wrapper for the PesaFlux STK push API.

    Every request carries the configured account API key and email; callers
    never supply credentials.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize PesaFlux client.

        Args:
            settings: Optional settings (defaults to the cached application settings)
            http_client: Optional httpx client, mainly for tests
        """
        self.settings = settings or get_settings()
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.pesaflux_timeout_seconds
        )

        logger.info(
            "pesaflux_client_initialized",
            base_url=self.settings.pesaflux_base_url,
        )

    def _credentials(self) -> Dict[str, str]:
        return {
            "api_key": self.settings.pesaflux_api_key,
            "email": self.settings.pesaflux_email,
        }

    async def _post(self, operation: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload and return the decoded JSON object.

        Raises:
            PesaFluxError: TRANSIENT on transport errors and 5xx responses,
                MALFORMED when the body is not a JSON object
        """
        url = f"{self.settings.pesaflux_base_url}/{path}"
        start_time = time.time()

        try:
            response = await self.http_client.post(url, json=payload)
        except httpx.TransportError as e:
            metrics.record_pesaflux_call(operation, "transport_error", time.time() - start_time)
            logger.error("pesaflux_transport_error", operation=operation, error=str(e))
            raise PesaFluxError(
                f"PesaFlux {operation} request failed: {e}",
                PesaFluxErrorType.TRANSIENT,
                original_error=e,
            ) from e

        duration = time.time() - start_time
        metrics.record_pesaflux_call(operation, str(response.status_code), duration)

        if response.status_code >= 500:
            logger.error(
                "pesaflux_server_error",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PesaFluxError(
                f"PesaFlux {operation} returned HTTP {response.status_code}",
                PesaFluxErrorType.TRANSIENT,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                "pesaflux_malformed_response",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise PesaFluxError(
                f"PesaFlux {operation} returned invalid JSON",
                PesaFluxErrorType.MALFORMED,
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            raise PesaFluxError(
                f"PesaFlux {operation} returned unexpected payload",
                PesaFluxErrorType.MALFORMED,
            )

        logger.debug(
            "pesaflux_response",
            operation=operation,
            status_code=response.status_code,
            duration_seconds=duration,
            response=data,
        )
        return data

    async def initiate_stk_push(
        self, msisdn: str, amount: int, reference: str
    ) -> Dict[str, Any]:
        """
        Send an STK push prompt to the payer's phone.

        Args:
            msisdn: Normalized phone number (2547XXXXXXXX)
            amount: Amount in KES
            reference: Client reference

        Returns:
            Dict[str, Any]: Provider response containing transaction_request_id

        Raises:
            PesaFluxError: REJECTED if the provider does not accept the request
        """
        logger.info(
            "initiating_stk_push",
            msisdn=msisdn,
            amount=amount,
            reference=reference,
        )

        payload = {
            **self._credentials(),
            "amount": amount,
            "msisdn": msisdn,
            "reference": reference,
        }
        data = await self._post("initiate", "initiatestk", payload)

        accepted = str(data.get("success", "")).strip() == "200"
        if not accepted or not data.get("transaction_request_id"):
            logger.warning("stk_push_rejected", reference=reference, response=data)
            raise PesaFluxError(
                data.get("massage") or data.get("message") or "STK push rejected",
                PesaFluxErrorType.REJECTED,
                payload=data,
            )

        logger.info(
            "stk_push_accepted",
            reference=reference,
            transaction_request_id=data["transaction_request_id"],
        )
        return data

    async def check_status(self, transaction_request_id: str) -> Dict[str, Any]:
        """
        Query PesaFlux for the outcome of a transaction.

        Transport errors are retried up to ``pesaflux_status_retries`` attempts.

        Args:
            transaction_request_id: Provider-issued request id

        Returns:
            Dict[str, Any]: Raw provider status payload
        """
        payload = {
            **self._credentials(),
            "transaction_request_id": transaction_request_id,
        }

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "pesaflux_status_retry",
                transaction_request_id=transaction_request_id,
                attempt=retry_state.attempt_number + 1,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self.settings.pesaflux_status_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            before_sleep=log_retry,
            reraise=True,
        )
        return await retrying(self._post, "check_status", "checkstatus", payload)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
