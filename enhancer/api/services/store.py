"""
Credit store contract and the SQL reference implementation.

The dispatcher only depends on the abstract ``CreditStore``. Any
implementation must make ``debit`` a single check-and-deduct step (two
concurrent debits can never both pass on a stale balance), and must make
``debit`` and ``credit`` idempotent per job id.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from enhancer.core.config import TransactionType
from enhancer.core.exceptions import InsufficientCreditsError, StoreError
from enhancer.db.models.credit import BatchUsage, CreditAccount, CreditTransaction, utc_now

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DebitReceipt:
    new_balance: int
    replayed: bool = False


@dataclass(frozen=True)
class BatchLimitResult:
    allowed: bool
    current_count: int
    limit: int
    reset_at: int  # epoch milliseconds

    def to_dict(self):
        return {
            "allowed": self.allowed,
            "current_count": self.current_count,
            "limit": self.limit,
            "reset_at": self.reset_at,
        }


class CreditStore(ABC):
    """Ledger primitives the dispatcher depends on."""

    @abstractmethod
    async def debit(self, user_id: str, amount: int, job_id: str, description: str = "") -> DebitReceipt:
        """
        Atomically deduct ``amount`` credits.

        Raises:
            InsufficientCreditsError: Balance lower than ``amount``
            StoreError: Any other store failure
        """

    @abstractmethod
    async def credit(self, user_id: str, amount: int, job_id: str) -> int:
        """Refund a debit made for ``job_id``; returns the new balance."""

    @abstractmethod
    async def check_and_increment_batch(self, user_id: str, limit: int, window_hours: float) -> BatchLimitResult:
        """Count one more job in the user's sliding window if under ``limit``."""

    @abstractmethod
    async def get_balance(self, user_id: str) -> int:
        """Current balance, 0 for unknown users."""


class SqlCreditStore(CreditStore):
    """
    Credit store on SQLModel tables.

    Debits run as a conditional ``UPDATE ... WHERE balance >= amount`` in the
    same transaction that writes the usage row; the unique
    ``(reference_id, transaction_type)`` constraint turns a replayed job id
    into a no-op. Session work is blocking, so the async methods run it in
    the threadpool and the event loop keeps serving other requests.
    """

    def __init__(self, engine):
        self.engine = engine

    def _existing(self, session: Session, job_id: str, transaction_type: TransactionType) -> Optional[CreditTransaction]:
        statement = select(CreditTransaction).where(
            CreditTransaction.reference_id == job_id,
            CreditTransaction.transaction_type == transaction_type.value,
        )
        return session.exec(statement).first()

    def _balance(self, session: Session, user_id: str) -> int:
        account = session.get(CreditAccount, user_id)
        return account.balance if account else 0

    def grant(self, user_id: str, amount: int, reference_id: Optional[str] = None,
              transaction_type: TransactionType = TransactionType.BONUS,
              description: str = "") -> int:
        """Add credits outside the job flow (sign-up bonus, purchases, tests)."""
        with Session(self.engine) as session:
            try:
                if reference_id and self._existing(session, reference_id, transaction_type):
                    return self._balance(session, user_id)

                account = session.get(CreditAccount, user_id)
                if account is None:
                    account = CreditAccount(user_id=user_id, balance=0)
                account.balance += amount
                account.updated_at = utc_now()
                session.add(account)
                session.add(CreditTransaction(
                    user_id=user_id,
                    amount=amount,
                    transaction_type=transaction_type.value,
                    reference_id=reference_id,
                    description=description or None,
                    balance_after=account.balance,
                ))
                session.commit()
                logger.info("Credits granted", user_id=user_id, amount=amount, balance=account.balance)
                return account.balance
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Failed to grant credits", user_id=user_id, error=str(e))
                raise StoreError(f"Failed to grant credits: {e}", "grant")

    def ensure_account(self, user_id: str, initial_credits: int) -> int:
        """Create the account with ``initial_credits`` on first sight."""
        with Session(self.engine) as session:
            account = session.get(CreditAccount, user_id)
            if account is not None:
                return account.balance
        return self.grant(
            user_id, initial_credits, reference_id=f"signup_{user_id}",
            description="Sign-up credits",
        )

    async def get_balance(self, user_id: str) -> int:
        return await run_in_threadpool(self._get_balance, user_id)

    def _get_balance(self, user_id: str) -> int:
        with Session(self.engine) as session:
            return self._balance(session, user_id)

    async def debit(self, user_id: str, amount: int, job_id: str, description: str = "") -> DebitReceipt:
        if amount < 0:
            raise StoreError("Debit amount must be >= 0", "debit")
        return await run_in_threadpool(self._debit, user_id, amount, job_id, description)

    def _debit(self, user_id: str, amount: int, job_id: str, description: str) -> DebitReceipt:
        with Session(self.engine) as session:
            try:
                existing = self._existing(session, job_id, TransactionType.USAGE)
                if existing is not None:
                    logger.info("Debit replayed", user_id=user_id, job_id=job_id)
                    return DebitReceipt(new_balance=existing.balance_after, replayed=True)

                result = session.exec(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
                    .values(balance=CreditAccount.balance - amount, updated_at=utc_now())
                )
                if result.rowcount == 0:
                    session.rollback()
                    available = self._balance(session, user_id)
                    logger.info(
                        "Debit rejected, insufficient credits",
                        user_id=user_id,
                        job_id=job_id,
                        required=amount,
                        available=available
                    )
                    raise InsufficientCreditsError(required=amount, available=available)

                new_balance = session.exec(
                    select(CreditAccount.balance).where(CreditAccount.user_id == user_id)
                ).one()
                session.add(CreditTransaction(
                    user_id=user_id,
                    amount=-amount,
                    transaction_type=TransactionType.USAGE.value,
                    reference_id=job_id,
                    description=description or None,
                    balance_after=new_balance,
                ))
                session.commit()
                return DebitReceipt(new_balance=new_balance)

            except IntegrityError:
                # Same job id committed by a concurrent call
                session.rollback()
                existing = self._existing(session, job_id, TransactionType.USAGE)
                if existing is None:
                    raise StoreError(f"Debit for {job_id} conflicted", "debit")
                return DebitReceipt(new_balance=existing.balance_after, replayed=True)
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("Debit failed", user_id=user_id, job_id=job_id, error=str(e))
                raise StoreError(f"Debit failed: {e}", "debit")

    async def credit(self, user_id: str, amount: int, job_id: str) -> int:
        return await run_in_threadpool(self._credit, user_id, amount, job_id)

    def _credit(self, user_id: str, amount: int, job_id: str) -> int:
        with Session(self.engine) as session:
            try:
                if self._existing(session, job_id, TransactionType.REFUND) is not None:
                    logger.info("Refund replayed", user_id=user_id, job_id=job_id)
                    return self._balance(session, user_id)

                usage = self._existing(session, job_id, TransactionType.USAGE)
                if usage is None:
                    raise StoreError(f"No debit recorded for job {job_id}", "credit")
                if -usage.amount != amount:
                    logger.warning(
                        "Refund amount differs from debit",
                        job_id=job_id,
                        debited=-usage.amount,
                        refund=amount
                    )

                session.exec(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id)
                    .values(balance=CreditAccount.balance + amount, updated_at=utc_now())
                )
                new_balance = session.exec(
                    select(CreditAccount.balance).where(CreditAccount.user_id == user_id)
                ).one()
                session.add(CreditTransaction(
                    user_id=user_id,
                    amount=amount,
                    transaction_type=TransactionType.REFUND.value,
                    reference_id=job_id,
                    description=f"Refund for {job_id}",
                    balance_after=new_balance,
                ))
                session.commit()
                return new_balance

            except IntegrityError:
                session.rollback()
                return self._balance(session, user_id)
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Refund failed: {e}", "credit")

    async def check_and_increment_batch(self, user_id: str, limit: int, window_hours: float) -> BatchLimitResult:
        return await run_in_threadpool(self._check_and_increment_batch, user_id, limit, window_hours)

    def _check_and_increment_batch(self, user_id: str, limit: int, window_hours: float) -> BatchLimitResult:
        window = window_hours * 3600
        now = time.time()

        with Session(self.engine) as session:
            try:
                # Lock the user's account row so concurrent checks serialize
                session.exec(
                    select(CreditAccount).where(CreditAccount.user_id == user_id).with_for_update()
                ).first()
                session.exec(
                    delete(BatchUsage).where(
                        BatchUsage.user_id == user_id, BatchUsage.started_at <= now - window
                    )
                )
                current, oldest = session.exec(
                    select(func.count(BatchUsage.id), func.min(BatchUsage.started_at))
                    .where(BatchUsage.user_id == user_id)
                ).one()

                allowed = current < limit
                if allowed:
                    session.add(BatchUsage(user_id=user_id, started_at=now))
                    current += 1
                    if oldest is None:
                        oldest = now
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Batch check failed: {e}", "check_and_increment_batch")

        reset_at = (oldest if oldest is not None else now) + window
        return BatchLimitResult(
            allowed=allowed,
            current_count=current,
            limit=limit,
            reset_at=int(reset_at * 1000),
        )
