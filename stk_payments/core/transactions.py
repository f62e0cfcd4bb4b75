"""
Transaction store operations and STK push initiation.

Initiation flow:
1. Validate and normalize input
2. Ask PesaFlux to push the prompt
3. Record the pending transaction under the provider's request id

Every terminal write goes through :meth:`TransactionService.settle`, which
only touches rows that are still pending. Callbacks, direct status polls and
manual overrides can therefore arrive in any order without a later writer
replacing an earlier terminal result.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stk_payments.core.exceptions import (
    PaymentValidationError,
    TransactionNotFoundError,
    UpstreamError,
)
from stk_payments.core.msisdn import local_to_international, normalize_msisdn
from stk_payments.core.status import PaymentStatus, normalize_receipt
from stk_payments.database.models import Transaction
from stk_payments.integrations.pesaflux_client import (
    PesaFluxClient,
    PesaFluxError,
    PesaFluxErrorType,
)
from stk_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MANUAL_SUCCESS_DESCRIPTION = "Payment completed successfully (manual)"


@dataclass
class Settlement:
    """Terminal result to be written to a pending transaction."""

    status: PaymentStatus
    result_code: Optional[str] = None
    result_description: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_id: Optional[str] = None

    def values(self) -> Dict[str, Any]:
        if not self.status.is_terminal:
            raise ValueError("Only terminal statuses can be settled")
        receipt = (
            normalize_receipt(self.receipt_number)
            if self.status is PaymentStatus.SUCCESS
            else None
        )
        values: Dict[str, Any] = {
            "status": self.status.value,
            "result_code": self.result_code,
            "result_description": self.result_description,
            "receipt_number": receipt,
            "updated_at": datetime.now(timezone.utc),
        }
        if self.transaction_id:
            values["transaction_id"] = str(self.transaction_id)
        return values


class TransactionService:
    """Reads and writes transactions; initiates STK pushes."""

    def __init__(self, pesaflux_client: PesaFluxClient):
        self.pesaflux_client = pesaflux_client

    @staticmethod
    def _validate_initiation(amount: Any, reference: Optional[str]) -> int:
        if amount is None or isinstance(amount, bool):
            raise PaymentValidationError("Missing amount")
        try:
            amount_value = int(amount)
        except (TypeError, ValueError):
            raise PaymentValidationError("Amount must be a whole number")
        if amount_value != amount and str(amount_value) != str(amount).strip():
            raise PaymentValidationError("Amount must be a whole number")
        if amount_value <= 0:
            raise PaymentValidationError("Amount must be positive")
        if not reference or not str(reference).strip():
            raise PaymentValidationError("Missing reference")
        return amount_value

    async def initiate_payment(
        self,
        db: AsyncSession,
        msisdn: str,
        amount: Any,
        reference: str,
        email: Optional[str] = None,
    ) -> Transaction:
        """
        Push an STK prompt and record the pending transaction.

        Raises:
            PaymentValidationError: If phone, amount or reference are invalid
            UpstreamError: If PesaFlux does not accept the request
        """
        phone = normalize_msisdn(msisdn)
        amount_value = self._validate_initiation(amount, reference)

        try:
            response = await self.pesaflux_client.initiate_stk_push(
                msisdn=phone, amount=amount_value, reference=reference
            )
        except PesaFluxError as e:
            outcome = "error" if e.error_type is PesaFluxErrorType.TRANSIENT else "rejected"
            metrics.record_initiation(outcome, amount_value)
            logger.error(
                "payment_initiation_failed",
                reference=reference,
                error_type=e.error_type.value,
                error=str(e),
            )
            raise UpstreamError("Failed to initiate payment") from e

        request_id = str(response["transaction_request_id"])

        existing = await self.get_transaction(db, request_id)
        if existing is not None:
            logger.warning("transaction_already_recorded", transaction_request_id=request_id)
            metrics.record_initiation("accepted", amount_value)
            return existing

        transaction = Transaction(
            transaction_request_id=request_id,
            phone=phone,
            amount=amount_value,
            email=email,
            reference=reference,
            status=PaymentStatus.PENDING.value,
        )
        db.add(transaction)
        await db.commit()

        metrics.record_initiation("accepted", amount_value)
        logger.info(
            "payment_initiated",
            transaction_request_id=request_id,
            phone=phone,
            amount=amount_value,
            reference=reference,
        )
        return transaction

    async def get_transaction(
        self, db: AsyncSession, transaction_request_id: str
    ) -> Optional[Transaction]:
        """Fetch a transaction by request id, reloading any cached instance."""
        stmt = (
            select(Transaction)
            .where(Transaction.transaction_request_id == transaction_request_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def require_transaction(
        self, db: AsyncSession, transaction_request_id: str
    ) -> Transaction:
        transaction = await self.get_transaction(db, transaction_request_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_request_id)
        return transaction

    async def settle(
        self,
        db: AsyncSession,
        transaction_request_id: str,
        settlement: Settlement,
        source: str,
    ) -> bool:
        """
        Write a terminal status if the transaction is still pending.

        Args:
            db: Database session
            transaction_request_id: Provider request id
            settlement: Terminal result
            source: Writer name for logs and metrics (callback, provider_poll, manual)

        Returns:
            bool: True if a pending row was settled, False if the row is missing
            or already terminal
        """
        stmt = (
            update(Transaction)
            .where(
                Transaction.transaction_request_id == transaction_request_id,
                Transaction.status == PaymentStatus.PENDING.value,
            )
            .values(**settlement.values())
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()

        updated = result.rowcount == 1
        metrics.record_settlement(source, settlement.status.value, updated)

        if updated:
            logger.info(
                "transaction_settled",
                transaction_request_id=transaction_request_id,
                status=settlement.status.value,
                source=source,
            )
            if settlement.status is PaymentStatus.SUCCESS and not normalize_receipt(
                settlement.receipt_number
            ):
                logger.warning(
                    "settled_success_without_receipt",
                    transaction_request_id=transaction_request_id,
                )
        else:
            logger.info(
                "transaction_settlement_skipped",
                transaction_request_id=transaction_request_id,
                status=settlement.status.value,
                source=source,
            )
        return updated

    async def mark_manual_success(
        self, db: AsyncSession, transaction_request_id: str
    ) -> tuple[Transaction, bool]:
        """
        Operational override: settle a pending transaction as successful.

        Returns:
            tuple[Transaction, bool]: Current row and whether it was changed

        Raises:
            TransactionNotFoundError: If the transaction does not exist
        """
        await self.require_transaction(db, transaction_request_id)

        settlement = Settlement(
            status=PaymentStatus.SUCCESS,
            result_code="0",
            result_description=MANUAL_SUCCESS_DESCRIPTION,
            receipt_number=f"TEST{int(time.time() * 1000)}",
        )
        updated = await self.settle(db, transaction_request_id, settlement, source="manual")
        transaction = await self.require_transaction(db, transaction_request_id)
        return transaction, updated

    async def list_recent(
        self, db: AsyncSession, phone: Optional[str] = None, limit: int = 10
    ) -> List[Transaction]:
        """Most recent transactions, optionally filtered by phone substring."""
        stmt = select(Transaction).order_by(Transaction.created_at.desc()).limit(limit)
        result = await db.execute(stmt)
        transactions = list(result.scalars().all())
        if phone:
            needle = local_to_international(phone)
            transactions = [t for t in transactions if t.phone and needle in t.phone]
        return transactions
