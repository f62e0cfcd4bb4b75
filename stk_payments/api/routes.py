"""
API routes for STK push payments.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from stk_payments.config import get_settings
from stk_payments.core.exceptions import (
    PaymentValidationError,
    TransactionNotFoundError,
    UpstreamError,
)
from stk_payments.core.reconciliation import StatusReconciler
from stk_payments.core.transactions import TransactionService
from stk_payments.database.connection import get_db
from stk_payments.integrations.callback_handler import CallbackHandler
from stk_payments.integrations.pesaflux_client import PesaFluxClient
from stk_payments.monitoring.health import HealthCheck

from .schemas import (
    CachedStatusResponse,
    CallbackResponse,
    DebugTransactionsResponse,
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    ManualSuccessRequest,
    ManualSuccessResponse,
    ProviderStatusResponse,
    StatusCheckRequest,
)

logger = structlog.get_logger(__name__)

MISSING_REQUEST_ID = "Missing transaction_request_id"

# Create routers
payment_router = APIRouter(tags=["payments"])
callback_router = APIRouter(tags=["callbacks"])
admin_router = APIRouter(tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()

_pesaflux_client: PesaFluxClient | None = None


def get_pesaflux_client() -> PesaFluxClient:
    """Shared PesaFlux client, created on first use."""
    global _pesaflux_client
    if _pesaflux_client is None:
        _pesaflux_client = PesaFluxClient()
    return _pesaflux_client


async def close_pesaflux_client() -> None:
    global _pesaflux_client
    if _pesaflux_client is not None:
        await _pesaflux_client.close()
        _pesaflux_client = None


def get_transaction_service(
    client: PesaFluxClient = Depends(get_pesaflux_client),
) -> TransactionService:
    return TransactionService(client)


def get_reconciler(
    client: PesaFluxClient = Depends(get_pesaflux_client),
    service: TransactionService = Depends(get_transaction_service),
) -> StatusReconciler:
    return StatusReconciler(client, service)


def get_callback_handler(
    service: TransactionService = Depends(get_transaction_service),
) -> CallbackHandler:
    return CallbackHandler(service)


def require_admin_key(request: Request) -> None:
    """Reject operational calls without the admin key when one is configured."""
    settings = get_settings()
    if settings.admin_api_key is None:
        return
    if request.headers.get(settings.admin_key_header) != settings.admin_api_key:
        logger.warning("admin_key_rejected", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@payment_router.post(
    "/initiate-payment",
    response_model=InitiatePaymentResponse,
    summary="Initiate an STK push",
    description="Push an M-Pesa PIN prompt to the payer and record a pending transaction",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    db: AsyncSession = Depends(get_db),
    service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    """Initiate a payment; never retried at this layer."""
    for field in ("msisdn", "amount", "reference"):
        if getattr(request, field) in (None, ""):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing {field}")

    try:
        transaction = await service.initiate_payment(
            db,
            msisdn=request.msisdn,
            amount=request.amount,
            reference=request.reference,
            email=request.email,
        )

    except PaymentValidationError as e:
        logger.warning("api_initiate_payment_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except UpstreamError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    except Exception as e:
        logger.error("api_initiate_payment_unexpected_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initiate payment",
        )

    return {
        "success": True,
        "transaction_request_id": transaction.transaction_request_id,
        "status": transaction.status,
    }


async def _cached_status(
    transaction_request_id: Optional[str],
    db: AsyncSession,
    reconciler: StatusReconciler,
) -> Dict[str, Any]:
    if not transaction_request_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_REQUEST_ID)

    try:
        payment = await reconciler.cached_status(db, transaction_request_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    except Exception as e:
        logger.error(
            "api_check_status_db_error",
            transaction_request_id=transaction_request_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    return {"success": True, "payment": payment}


@payment_router.get(
    "/check-status-db/{transaction_request_id}",
    response_model=CachedStatusResponse,
    summary="Get stored payment status",
)
async def check_status_db(
    transaction_request_id: str,
    db: AsyncSession = Depends(get_db),
    reconciler: StatusReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Read the stored status of a transaction."""
    return await _cached_status(transaction_request_id.strip(), db, reconciler)


@payment_router.get("/check-status-db", include_in_schema=False)
async def check_status_db_without_id() -> None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_REQUEST_ID)


@payment_router.post(
    "/check-status-db",
    response_model=CachedStatusResponse,
    summary="Get stored payment status (body)",
)
async def check_status_db_post(
    request: Optional[StatusCheckRequest] = None,
    db: AsyncSession = Depends(get_db),
    reconciler: StatusReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Read the stored status of a transaction named in the request body."""
    request_id = request.transaction_request_id if request else None
    return await _cached_status(request_id, db, reconciler)


@payment_router.post(
    "/check-pesaflux-status",
    response_model=ProviderStatusResponse,
    summary="Query PesaFlux directly",
    description="Fetch the provider's view of a transaction and persist any terminal result",
)
async def check_pesaflux_status(
    request: Optional[StatusCheckRequest] = None,
    db: AsyncSession = Depends(get_db),
    reconciler: StatusReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Direct provider poll used when the callback is late."""
    request_id = request.transaction_request_id if request else None
    if not request_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_REQUEST_ID)

    try:
        result = await reconciler.provider_status(db, request_id)
    except UpstreamError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except Exception as e:
        logger.error(
            "api_check_pesaflux_status_error",
            transaction_request_id=request_id,
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check status",
        )

    return {"success": True, **result}


@callback_router.post(
    "/payment-callback",
    response_model=CallbackResponse,
    summary="PesaFlux callback endpoint",
)
async def payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    handler: CallbackHandler = Depends(get_callback_handler),
) -> Dict[str, Any]:
    """Apply an asynchronous PesaFlux result to the store."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    try:
        return await handler.process_callback(payload, db)

    except PaymentValidationError as e:
        logger.warning("api_callback_rejected", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except Exception as e:
        logger.error("api_callback_unexpected_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Callback processing failed",
        )


@admin_router.post(
    "/manual-success",
    response_model=ManualSuccessResponse,
    summary="Mark a pending transaction as paid",
    dependencies=[Depends(require_admin_key)],
)
async def manual_success(
    request: Optional[ManualSuccessRequest] = None,
    db: AsyncSession = Depends(get_db),
    service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    """Operational override for payments confirmed outside the system."""
    request_id = request.transaction_id if request else None
    if not request_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing transaction_id")

    try:
        transaction, updated = await service.mark_manual_success(db, request_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    except Exception as e:
        logger.error("api_manual_success_error", transaction_id=request_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update transaction",
        )

    return {
        "success": True,
        "message": (
            "Transaction marked as successful"
            if updated
            else f"Transaction already {transaction.status}"
        ),
        "transaction_id": request_id,
        "updated": updated,
        "status": transaction.status,
    }


@admin_router.get(
    "/debug-transactions",
    response_model=DebugTransactionsResponse,
    summary="List recent transactions",
    dependencies=[Depends(require_admin_key)],
)
async def debug_transactions(
    phone: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    service: TransactionService = Depends(get_transaction_service),
) -> Dict[str, Any]:
    """Ten most recent transactions, optionally filtered by phone."""
    try:
        transactions = await service.list_recent(db, phone=phone)
    except Exception as e:
        logger.error("api_debug_transactions_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error"
        )

    return {
        "success": True,
        "count": len(transactions),
        "transactions": [t.to_dict() for t in transactions],
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
