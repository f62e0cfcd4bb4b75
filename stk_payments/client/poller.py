"""
Client-side payment flow controller.

Drives a payer through initiation and status polling:

    idle -> initiating -> polling -> settled_success | settled_failure | timed_out

Initiation failures end in ``initiation_failed`` and are never retried
automatically. Polling runs inside an asyncio task owned by a
:class:`PollingHandle`. The hosting UI cancels the handle on teardown, which
leaves the flow ``abandoned``.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from stk_payments.config import Settings
from stk_payments.core.msisdn import generate_reference
from stk_payments.core.status import PaymentStatus
from stk_payments.client.api_client import PaymentApiClient, PaymentClientError

logger = structlog.get_logger(__name__)

CANCELLED_MESSAGE = "Payment cancelled by user. Please try again."
FAILED_MESSAGE = "Payment failed. Please try again."
TIMEOUT_MESSAGE = "Payment timeout. Please try again."
UNVERIFIED_MESSAGE = "Unable to verify payment status."


class FlowState(str, Enum):
    """States of the payment flow."""

    IDLE = "idle"
    INITIATING = "initiating"
    POLLING = "polling"
    SETTLED_SUCCESS = "settled_success"
    SETTLED_FAILURE = "settled_failure"
    TIMED_OUT = "timed_out"
    INITIATION_FAILED = "initiation_failed"
    ABANDONED = "abandoned"

    @property
    def is_final(self) -> bool:
        return self not in (FlowState.IDLE, FlowState.INITIATING, FlowState.POLLING)


@dataclass
class PollingPolicy:
    """Timing of the status poll loop."""

    interval_seconds: float = 5.0
    max_attempts: int = 24
    direct_check_after: int = 7

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollingPolicy":
        return cls(
            interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.poll_max_attempts,
            direct_check_after=settings.poll_direct_check_after,
        )


@dataclass
class PaymentOutcome:
    """Result of a payment flow."""

    state: FlowState
    transaction_request_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    attempts: int = 0
    payment: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.SETTLED_SUCCESS

    @property
    def receipt_number(self) -> Optional[str]:
        if self.payment:
            return self.payment.get("mpesaReceiptNumber")
        return None


TransitionCallback = Callable[[FlowState, FlowState], None]


class PaymentFlowController:
    """Runs one payer through initiation and polling."""

    def __init__(
        self,
        api: PaymentApiClient,
        policy: Optional[PollingPolicy] = None,
        reference_prefix: str = "CRFF",
        on_transition: Optional[TransitionCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.api = api
        self.policy = policy or PollingPolicy()
        self.reference_prefix = reference_prefix
        self.on_transition = on_transition
        self._sleep = sleep
        self.state = FlowState.IDLE
        self.transaction_request_id: Optional[str] = None
        self.attempts = 0

    def _transition(self, new_state: FlowState) -> None:
        old_state = self.state
        if old_state is new_state:
            return
        self.state = new_state
        logger.info(
            "payment_flow_transition",
            transaction_request_id=self.transaction_request_id,
            from_state=old_state.value,
            to_state=new_state.value,
        )
        if self.on_transition is not None:
            self.on_transition(old_state, new_state)

    def _finish(
        self,
        state: FlowState,
        status: Optional[str] = None,
        message: Optional[str] = None,
        payment: Optional[Dict[str, Any]] = None,
    ) -> PaymentOutcome:
        self._transition(state)
        return PaymentOutcome(
            state=state,
            transaction_request_id=self.transaction_request_id,
            status=status,
            message=message,
            attempts=self.attempts,
            payment=payment,
        )

    def abandoned_outcome(self) -> PaymentOutcome:
        return PaymentOutcome(
            state=FlowState.ABANDONED,
            transaction_request_id=self.transaction_request_id,
            attempts=self.attempts,
        )

    async def run(self, phone: str, amount: int, email: Optional[str] = None) -> PaymentOutcome:
        """Initiate a payment and poll until it settles, times out or is cancelled."""
        if self.state is not FlowState.IDLE:
            raise RuntimeError(f"Payment flow already {self.state.value}")

        try:
            self._transition(FlowState.INITIATING)
            reference = generate_reference(self.reference_prefix)
            try:
                self.transaction_request_id = await self.api.initiate_payment(
                    msisdn=phone, amount=amount, reference=reference, email=email
                )
            except PaymentClientError as e:
                logger.error("payment_initiation_error", reference=reference, error=str(e))
                return self._finish(FlowState.INITIATION_FAILED, message=str(e))

            return await self.poll(self.transaction_request_id)

        except asyncio.CancelledError:
            self._transition(FlowState.ABANDONED)
            raise

    async def poll(self, transaction_request_id: str) -> PaymentOutcome:
        """
        Poll the stored status until a terminal result or the attempt cap.

        The first check is immediate. After ``direct_check_after`` attempts
        with the payment still pending, every cycle first asks the API to
        query PesaFlux directly and then re-reads the stored status.
        Errors and missing rows count as attempts and polling continues.
        """
        self.transaction_request_id = transaction_request_id
        self._transition(FlowState.POLLING)

        last_status = PaymentStatus.PENDING.value
        last_error: Optional[Exception] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self.policy.interval_seconds)
            self.attempts = attempt

            still_pending = last_status == PaymentStatus.PENDING.value
            if attempt > self.policy.direct_check_after and still_pending:
                try:
                    result = await self.api.provider_status(transaction_request_id)
                    logger.info(
                        "provider_status_checked",
                        transaction_request_id=transaction_request_id,
                        attempt=attempt,
                        status=result.get("status"),
                    )
                except PaymentClientError as e:
                    logger.warning(
                        "provider_status_check_error",
                        transaction_request_id=transaction_request_id,
                        attempt=attempt,
                        error=str(e),
                    )

            try:
                payment = await self.api.cached_status(transaction_request_id)
            except PaymentClientError as e:
                last_error = e
                logger.warning(
                    "poll_attempt_error",
                    transaction_request_id=transaction_request_id,
                    attempt=attempt,
                    error=str(e),
                )
                continue

            last_error = None
            status = payment.get("status") if payment else None
            logger.debug(
                "poll_attempt",
                transaction_request_id=transaction_request_id,
                attempt=attempt,
                status=status,
            )

            if status == PaymentStatus.SUCCESS.value:
                return self._finish(FlowState.SETTLED_SUCCESS, status=status, payment=payment)
            if status in (PaymentStatus.FAILED.value, PaymentStatus.CANCELLED.value):
                message = (
                    CANCELLED_MESSAGE if status == PaymentStatus.CANCELLED.value else FAILED_MESSAGE
                )
                return self._finish(
                    FlowState.SETTLED_FAILURE, status=status, message=message, payment=payment
                )

            last_status = status or PaymentStatus.PENDING.value

        message = UNVERIFIED_MESSAGE if last_error is not None else TIMEOUT_MESSAGE
        return self._finish(FlowState.TIMED_OUT, status=PaymentStatus.PENDING.value, message=message)

    def start(self, phone: str, amount: int, email: Optional[str] = None) -> "PollingHandle":
        """Run the flow in a background task and return its handle."""
        task = asyncio.create_task(self.run(phone, amount, email))
        return PollingHandle(self, task)


class PollingHandle:
    """Owns the task running a payment flow."""

    def __init__(self, controller: PaymentFlowController, task: "asyncio.Task[PaymentOutcome]"):
        self.controller = controller
        self._task = task

    @property
    def state(self) -> FlowState:
        return self.controller.state

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Stop polling; the flow ends abandoned."""
        if not self._task.done():
            logger.info(
                "payment_flow_cancel_requested",
                transaction_request_id=self.controller.transaction_request_id,
            )
            self._task.cancel()

    async def wait(self) -> PaymentOutcome:
        """Wait for the flow to finish; a cancelled flow yields an abandoned outcome."""
        try:
            return await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
            return self.controller.abandoned_outcome()
