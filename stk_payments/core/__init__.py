"""Core payment processing logic."""
from .exceptions import (
    PaymentError,
    PaymentValidationError,
    TransactionNotFoundError,
    UpstreamError,
)
from .reconciliation import StatusReconciler
from .status import PaymentStatus, classify_result_code
from .transactions import Settlement, TransactionService

__all__ = [
    "PaymentError",
    "PaymentStatus",
    "PaymentValidationError",
    "Settlement",
    "StatusReconciler",
    "TransactionNotFoundError",
    "TransactionService",
    "UpstreamError",
    "classify_result_code",
]
