"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CachedStatusResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    ProviderStatusResponse,
    StatusCheckRequest,
)

__all__ = [
    "app",
    "CachedStatusResponse",
    "InitiatePaymentRequest",
    "InitiatePaymentResponse",
    "ProviderStatusResponse",
    "StatusCheckRequest",
]
