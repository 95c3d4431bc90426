"""
Credit account, transaction and batch usage models.
"""
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CreditAccount(SQLModel, table=True):
    """Current credit balance per user."""
    __tablename__ = "credit_accounts"

    user_id: str = Field(primary_key=True)
    balance: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utc_now)


class CreditTransactionBase(SQLModel):
    """Base credit transaction model with shared fields."""
    amount: int = Field(description="Credit amount (positive for additions, negative for usage)")
    transaction_type: str = Field(description="Type of transaction")
    reference_id: Optional[str] = Field(default=None, description="Job id or receipt id")
    description: Optional[str] = Field(default=None, description="Human-readable description")


class CreditTransaction(CreditTransactionBase, table=True):
    """Credit transaction database model.

    A reference id appears at most once per transaction type, which makes
    usage debits and refunds idempotent per job id.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("reference_id", "transaction_type", name="uq_transaction_reference"),
    )

    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True)
    balance_after: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)


class BatchUsage(SQLModel, table=True):
    """One row per admitted job, used for sliding window batch limits."""
    __tablename__ = "batch_usage"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    started_at: float = Field(index=True, description="Unix timestamp in seconds")
