"""
Pydantic schemas for API request/response models.

Request fields are optional at the schema level so that a missing field is
reported with a specific 400 message rather than a generic validation error.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field


class InitiatePaymentRequest(BaseModel):
    """Request schema for initiating an STK push."""

    msisdn: Optional[str] = Field(default=None, description="Payer phone number")
    amount: Optional[int] = Field(default=None, gt=0, description="Amount in KES")
    email: Optional[EmailStr] = Field(default=None, description="Payer email")
    reference: Optional[str] = Field(default=None, description="Client-generated reference")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "msisdn": "0712345678",
                    "amount": 139,
                    "email": "applicant@example.com",
                    "reference": "CRFF-1735000000000-123",
                }
            ]
        }
    }


class InitiatePaymentResponse(BaseModel):
    """Response schema for STK push initiation."""

    success: bool = Field(..., description="Whether the push was accepted")
    transaction_request_id: str = Field(..., description="PesaFlux transaction request id")
    status: str = Field(..., description="Initial transaction status")


class StatusCheckRequest(BaseModel):
    """Request body for status endpoints."""

    transaction_request_id: Optional[str] = Field(
        default=None, description="PesaFlux transaction request id"
    )


class PaymentView(BaseModel):
    """Stored transaction as consumed by the polling client."""

    status: str
    amount: int
    phoneNumber: str
    mpesaReceiptNumber: Optional[str] = None
    resultDesc: Optional[str] = None
    resultCode: Optional[str] = None
    timestamp: Optional[str] = None


class CachedStatusResponse(BaseModel):
    """Response schema for the database status check."""

    success: bool
    payment: PaymentView


class ProviderStatusResponse(BaseModel):
    """Response schema for the direct PesaFlux status check."""

    success: bool
    status: str = Field(..., description="Classified status (pending/success/failed/cancelled)")
    details: Dict[str, Any] = Field(..., description="Raw PesaFlux response")


class CallbackResponse(BaseModel):
    """Response schema for provider callbacks."""

    status: str = Field(..., description="updated, unchanged, ignored or pending")
    transaction_request_id: str


class ManualSuccessRequest(BaseModel):
    """Request schema for the manual success override."""

    transaction_id: Optional[str] = Field(
        default=None, description="Transaction request id to mark as paid"
    )


class ManualSuccessResponse(BaseModel):
    """Response schema for the manual success override."""

    success: bool
    message: str
    transaction_id: str
    updated: bool
    status: str


class DebugTransactionsResponse(BaseModel):
    """Response schema for the recent-transactions listing."""

    success: bool
    count: int
    transactions: List[Dict[str, Any]]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
