"""
Payment status vocabulary and provider result-code classification.

PesaFlux reports outcomes as M-Pesa result codes, sometimes as integers and
sometimes as strings. Every code is normalized to a string before it is
mapped, so the mapping below is the single source of truth.
"""
from enum import Enum
from typing import Any, Optional


class PaymentStatus(str, Enum):
    """Lifecycle status of a transaction."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


# Known result codes; anything else that is non-empty means failure.
RESULT_CODE_STATUS = {
    "0": PaymentStatus.SUCCESS,
    "1": PaymentStatus.CANCELLED,  # insufficient balance
    "1032": PaymentStatus.CANCELLED,  # request cancelled by user
    "1037": PaymentStatus.PENDING,  # payer unreachable, prompt still outstanding
}

RECEIPT_SENTINEL = "N/A"


def normalize_result_code(code: Any) -> str:
    """Render a provider result code as a stripped string ('' when absent)."""
    if code is None:
        return ""
    return str(code).strip()


def classify_result_code(code: Any) -> PaymentStatus:
    """
    Map a raw provider result code to a payment status.

    Args:
        code: Result code as returned by the provider (int, str or None)

    Returns:
        PaymentStatus: success for 0, cancelled for 1/1032, pending for 1037
        or an empty code, failed for any other code
    """
    normalized = normalize_result_code(code)
    if not normalized:
        return PaymentStatus.PENDING
    return RESULT_CODE_STATUS.get(normalized, PaymentStatus.FAILED)


def normalize_receipt(receipt: Any) -> Optional[str]:
    """Return the receipt number, or None for empty values and the 'N/A' sentinel."""
    if receipt is None:
        return None
    value = str(receipt).strip()
    if not value or value.upper() == RECEIPT_SENTINEL:
        return None
    return value


def result_description(payload: dict[str, Any]) -> Optional[str]:
    """Pick the human-readable description out of a provider payload."""
    for key in ("ResultDesc", "ResponseDescription", "massage", "message"):
        value = payload.get(key)
        if value:
            return str(value)
    return None
