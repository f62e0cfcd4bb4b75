"""
PesaFlux callback handler.

PesaFlux POSTs the final outcome of an STK push to the callback URL. The
payload is classified with the same result-code mapping as direct status
polls. Terminal results are then written with the guarded settle, so a
callback that arrives after a direct poll already settled the row does
nothing.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from stk_payments.core.exceptions import PaymentValidationError
from stk_payments.core.reconciliation import settlement_from_payload
from stk_payments.core.status import PaymentStatus
from stk_payments.core.transactions import TransactionService
from stk_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

REQUEST_ID_KEYS = ("TransactionRequestID", "transaction_request_id", "TransactionRequestId")
RESULT_CODE_KEYS = ("ResultCode", "ResponseCode")


def _first_present(payload: Dict[str, Any], keys: tuple[str, ...]) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


class CallbackHandler:
    """Applies PesaFlux callbacks to the transaction store."""

    def __init__(self, transaction_service: TransactionService):
        self.transaction_service = transaction_service

    async def process_callback(
        self, payload: Any, db: AsyncSession
    ) -> Dict[str, Any]:
        """
        Process a callback payload.

        Args:
            payload: Decoded JSON body
            db: Database session

        Returns:
            Dict[str, Any]: ``status`` is one of updated, unchanged, ignored, pending

        Raises:
            PaymentValidationError: If the payload is not an object or lacks a request id
        """
        if not isinstance(payload, dict):
            raise PaymentValidationError("Callback body must be a JSON object")

        request_id = _first_present(payload, REQUEST_ID_KEYS)
        if request_id is None:
            raise PaymentValidationError("Missing transaction_request_id")
        request_id = str(request_id)

        settlement = settlement_from_payload(payload, _first_present(payload, RESULT_CODE_KEYS))

        logger.info(
            "callback_received",
            transaction_request_id=request_id,
            result_code=settlement.result_code,
            status=settlement.status.value,
        )

        transaction = await self.transaction_service.get_transaction(db, request_id)
        if transaction is None:
            logger.warning("callback_unknown_transaction", transaction_request_id=request_id)
            outcome = "ignored"
        elif settlement.status is PaymentStatus.PENDING:
            outcome = "pending"
        else:
            updated = await self.transaction_service.settle(
                db, request_id, settlement, source="callback"
            )
            outcome = "updated" if updated else "unchanged"

        metrics.record_callback(outcome)
        return {"status": outcome, "transaction_request_id": request_id}
