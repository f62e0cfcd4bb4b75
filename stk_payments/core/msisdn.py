"""Phone number and payment reference helpers."""
import random
import re
import time

from stk_payments.core.exceptions import PaymentValidationError

COUNTRY_CODE = "254"
_MSISDN_PATTERN = re.compile(r"^254[17]\d{8}$")


def normalize_msisdn(phone: str) -> str:
    """
    Normalize a Kenyan mobile number to the international 2547.../2541... form.

    Accepts 0712345678, +254712345678, 254712345678 and 712345678
    (whitespace ignored).

    Raises:
        PaymentValidationError: If the result is not a valid Safaricom-style MSISDN
    """
    if phone is None:
        raise PaymentValidationError("Phone number is required")

    formatted = re.sub(r"\s", "", str(phone))
    if formatted.startswith("+"):
        formatted = formatted[1:]
    if formatted.startswith("0"):
        formatted = COUNTRY_CODE + formatted[1:]
    elif not formatted.startswith(COUNTRY_CODE):
        formatted = COUNTRY_CODE + formatted

    if not _MSISDN_PATTERN.match(formatted):
        raise PaymentValidationError(f"Invalid phone number: {phone}")
    return formatted


def local_to_international(phone: str) -> str:
    """Loose variant used for searching: only a leading 0 is rewritten."""
    phone = phone.strip()
    if phone.startswith("0"):
        return COUNTRY_CODE + phone[1:]
    return phone


def generate_reference(prefix: str) -> str:
    """Build a client reference of the form PREFIX-<epoch ms>-<0..999>."""
    return f"{prefix}-{int(time.time() * 1000)}-{random.randint(0, 999)}"
