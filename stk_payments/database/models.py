"""SQLAlchemy database models for STK push transactions."""
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Transaction(Base):
    """
    STK push transactions table.

    One row per provider-issued transaction request id. Rows are created
    pending at initiation and settled exactly once to a terminal status.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_request_id: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False, index=True
    )
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reference: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    result_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    result_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    receipt_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed', 'cancelled')",
            name="valid_status",
        ),
        Index("idx_transactions_status_created", "status", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Column values with timestamps rendered as ISO 8601."""
        return {
            "transaction_request_id": self.transaction_request_id,
            "transaction_id": self.transaction_id,
            "phone": self.phone,
            "amount": self.amount,
            "email": self.email,
            "reference": self.reference,
            "status": self.status,
            "result_code": self.result_code,
            "result_description": self.result_description,
            "receipt_number": self.receipt_number,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(request_id={self.transaction_request_id}, "
            f"amount={self.amount}, status={self.status})>"
        )
