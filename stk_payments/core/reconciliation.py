"""
Status reconciliation for STK push transactions.

Resolves the eventual outcome of a payment from two sources:
- the transaction store, which the provider callback keeps up to date
- the PesaFlux status API, queried directly when the callback is late or lost
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from stk_payments.core.exceptions import UpstreamError
from stk_payments.core.status import (
    PaymentStatus,
    classify_result_code,
    normalize_result_code,
    result_description,
)
from stk_payments.core.transactions import Settlement, TransactionService
from stk_payments.database.models import Transaction
from stk_payments.integrations.pesaflux_client import PesaFluxClient, PesaFluxError
from stk_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def settlement_from_payload(payload: Dict[str, Any], code: Any) -> Settlement:
    """Build a settlement from a provider status or callback payload."""
    transaction_id = payload.get("TransactionID")
    return Settlement(
        status=classify_result_code(code),
        result_code=normalize_result_code(code) or None,
        result_description=result_description(payload),
        receipt_number=payload.get("TransactionReceipt"),
        transaction_id=str(transaction_id) if transaction_id else None,
    )


def payment_view(transaction: Transaction) -> Dict[str, Any]:
    """Shape a stored transaction the way the polling client reads it."""
    return {
        "status": transaction.status,
        "amount": transaction.amount,
        "phoneNumber": transaction.phone,
        "mpesaReceiptNumber": transaction.receipt_number,
        "resultDesc": transaction.result_description,
        "resultCode": transaction.result_code,
        "timestamp": transaction.updated_at.isoformat() if transaction.updated_at else None,
    }


class StatusReconciler:
    """
    Resolves payment status from the store or directly from PesaFlux.

    Only terminal provider results are written back, and only onto rows that
    are still pending.
    """

    def __init__(
        self,
        pesaflux_client: PesaFluxClient,
        transaction_service: Optional[TransactionService] = None,
    ):
        self.pesaflux_client = pesaflux_client
        self.transaction_service = transaction_service or TransactionService(pesaflux_client)

    async def cached_status(
        self, db: AsyncSession, transaction_request_id: str
    ) -> Dict[str, Any]:
        """
        Read the stored status.

        Raises:
            TransactionNotFoundError: If no transaction has this request id
        """
        transaction = await self.transaction_service.require_transaction(
            db, transaction_request_id
        )
        metrics.record_status_check("database", transaction.status)
        logger.debug(
            "cached_status_read",
            transaction_request_id=transaction_request_id,
            status=transaction.status,
        )
        return payment_view(transaction)

    async def provider_status(
        self, db: AsyncSession, transaction_request_id: str
    ) -> Dict[str, Any]:
        """
        Query PesaFlux directly and persist any terminal result.

        Returns:
            Dict[str, Any]: ``status`` (classified) and ``details`` (raw provider payload)

        Raises:
            UpstreamError: If the provider call fails or returns malformed data
        """
        try:
            result = await self.pesaflux_client.check_status(transaction_request_id)
        except PesaFluxError as e:
            logger.error(
                "provider_status_check_failed",
                transaction_request_id=transaction_request_id,
                error_type=e.error_type.value,
                error=str(e),
            )
            raise UpstreamError("Failed to check status") from e

        settlement = settlement_from_payload(result, result.get("ResultCode"))
        metrics.record_status_check("provider", settlement.status.value)
        logger.info(
            "status_classified",
            transaction_request_id=transaction_request_id,
            result_code=settlement.result_code,
            status=settlement.status.value,
        )

        if settlement.status is not PaymentStatus.PENDING:
            await self.transaction_service.settle(
                db, transaction_request_id, settlement, source="provider_poll"
            )

        return {"status": settlement.status.value, "details": result}
