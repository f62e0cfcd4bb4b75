"""Client-side payment flow: API wrapper and polling controller."""
from .api_client import PaymentApiClient, PaymentClientError
from .poller import (
    FlowState,
    PaymentFlowController,
    PaymentOutcome,
    PollingHandle,
    PollingPolicy,
)

__all__ = [
    "FlowState",
    "PaymentApiClient",
    "PaymentClientError",
    "PaymentFlowController",
    "PaymentOutcome",
    "PollingHandle",
    "PollingPolicy",
]
