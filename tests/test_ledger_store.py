"""Tests for the credit ledger and credit stores."""
import asyncio
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timezone
from unittest.mock import AsyncMock

import pytest
from sqlmodel import Session, select

from enhancer.core.config import ErrorCode, ProviderKind, TransactionType
from enhancer.core.exceptions import InsufficientCreditsError, StoreError
from enhancer.db.models import CreditAccount, CreditTransaction
from enhancer.db.session import build_engine, create_db_and_tables
from enhancer.api.services import CreditLedger, DebitReceipt, SqlCreditStore, generate_job_id
from tests.mocks import InMemoryCreditStore


class TestJobIds:
    """Job id generation"""

    @pytest.mark.parametrize("kind,prefix", [
        (ProviderKind.REPLICATE, "rep"),
        (ProviderKind.GEMINI, "gem"),
        (ProviderKind.MOCK, "mck"),
    ])
    def test_format(self, kind, prefix):
        job_id = generate_job_id(kind, now_ms=1700000000000)
        assert re.fullmatch(rf"{prefix}_1700000000000_[0-9a-z]{{7}}", job_id)

    def test_unique(self):
        ids = {generate_job_id(ProviderKind.REPLICATE, now_ms=1) for _ in range(200)}
        assert len(ids) == 200


class TestSqlCreditStore:
    """SQL reference store"""

    @pytest.mark.asyncio
    async def test_debit_and_replay(self, sql_store):
        sql_store.ensure_account("user-1", 10)

        receipt = await sql_store.debit("user-1", 4, "rep_1_aaaaaaa")
        replay = await sql_store.debit("user-1", 4, "rep_1_aaaaaaa")

        assert receipt == DebitReceipt(new_balance=6)
        assert replay.replayed
        assert replay.new_balance == 6
        assert await sql_store.get_balance("user-1") == 6

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, sql_store):
        sql_store.ensure_account("user-1", 3)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await sql_store.debit("user-1", 4, "rep_1_bbbbbbb")

        assert exc_info.value.code == ErrorCode.INSUFFICIENT_CREDITS
        assert exc_info.value.available == 3
        assert await sql_store.get_balance("user-1") == 3

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_credits(self, sql_store):
        assert await sql_store.get_balance("nobody") == 0
        with pytest.raises(InsufficientCreditsError):
            await sql_store.debit("nobody", 1, "rep_1_ccccccc")

    @pytest.mark.asyncio
    async def test_refund_is_idempotent(self, sql_store, setup_test_database):
        sql_store.ensure_account("user-1", 10)
        await sql_store.debit("user-1", 4, "rep_1_ddddddd")

        assert await sql_store.credit("user-1", 4, "rep_1_ddddddd") == 10
        assert await sql_store.credit("user-1", 4, "rep_1_ddddddd") == 10

        with Session(setup_test_database) as session:
            refunds = session.exec(
                select(CreditTransaction).where(
                    CreditTransaction.transaction_type == TransactionType.REFUND.value
                )
            ).all()
        assert len(refunds) == 1
        assert refunds[0].reference_id == "rep_1_ddddddd"

    @pytest.mark.asyncio
    async def test_refund_requires_a_debit(self, sql_store):
        sql_store.ensure_account("user-1", 10)
        with pytest.raises(StoreError):
            await sql_store.credit("user-1", 4, "rep_1_eeeeeee")

    def test_timestamps_are_timezone_aware(self):
        assert CreditAccount(user_id="user-1").updated_at.tzinfo is timezone.utc
        assert CreditTransaction(
            user_id="user-1", amount=1, transaction_type=TransactionType.BONUS.value
        ).created_at.tzinfo is timezone.utc

    @pytest.mark.asyncio
    async def test_sql_store_debit_after_signup(self, sql_store):
        assert sql_store.ensure_account("user-1", 10) == 10
        assert (await sql_store.debit("user-1", 2, "rep_1_kkkkkkk")).new_balance == 8

    def test_signup_credits_granted_once(self, sql_store):
        assert sql_store.ensure_account("user-1", 10) == 10
        assert sql_store.ensure_account("user-1", 10) == 10

    @pytest.mark.asyncio
    async def test_batch_window(self, sql_store):
        first = await sql_store.check_and_increment_batch("user-1", 2, 1.0)
        second = await sql_store.check_and_increment_batch("user-1", 2, 1.0)
        third = await sql_store.check_and_increment_batch("user-1", 2, 1.0)

        assert first.allowed and second.allowed
        assert not third.allowed
        assert third.current_count == 2
        assert third.reset_at >= first.reset_at


class TestConcurrentDebit:
    """Interleaved debits against the lock based store"""

    @pytest.mark.asyncio
    async def test_balance_for_exactly_one_job(self):
        store = InMemoryCreditStore({"user-1": 3}, debit_delay=0.01)
        ledger = CreditLedger(store)

        results = await asyncio.gather(
            ledger.debit("user-1", 3, "mck_1_aaaaaaa"),
            ledger.debit("user-1", 3, "mck_1_bbbbbbb"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, DebitReceipt) for r in results) == 1
        assert sum(isinstance(r, InsufficientCreditsError) for r in results) == 1
        assert store.balances["user-1"] == 0


class TestCreditLedger:
    """Ledger error mapping"""

    @pytest.mark.asyncio
    async def test_foreign_insufficient_error_is_mapped(self):
        store = AsyncMock()
        store.debit.side_effect = RuntimeError("Insufficient credits for user-1")

        with pytest.raises(InsufficientCreditsError):
            await CreditLedger(store).debit("user-1", 2, "rep_1_aaaaaaa")

    @pytest.mark.asyncio
    async def test_other_store_failure_is_generic(self):
        store = AsyncMock()
        store.debit.side_effect = ConnectionError("database unreachable")

        with pytest.raises(StoreError) as exc_info:
            await CreditLedger(store).debit("user-1", 2, "rep_1_aaaaaaa")
        assert exc_info.value.code == ErrorCode.GENERIC

    @pytest.mark.asyncio
    async def test_credit_errors_propagate(self):
        store = InMemoryCreditStore({"user-1": 5}, fail_refunds=True)

        with pytest.raises(StoreError):
            await CreditLedger(store).credit("user-1", 2, "rep_1_aaaaaaa")


@pytest.fixture
def file_store(tmp_path):
    """SQL store on a database file, one connection per thread."""
    engine = build_engine(f"sqlite:///{tmp_path / 'credits.db'}")
    create_db_and_tables(engine)
    yield SqlCreditStore(engine)
    engine.dispose()


class TestSqlConcurrentDebit:
    """Two debits for a balance that covers one job"""

    @pytest.mark.asyncio
    async def test_concurrent_debits_only_one_succeeds(self, file_store):
        file_store.ensure_account("user-1", 5)

        results = await asyncio.gather(
            file_store.debit("user-1", 5, "rep_1_fffffff"),
            file_store.debit("user-1", 5, "rep_1_ggggggg"),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, DebitReceipt)]
        failures = [r for r in results if isinstance(r, InsufficientCreditsError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert await file_store.get_balance("user-1") == 0

    def test_debits_from_separate_threads(self, file_store):
        file_store.ensure_account("user-1", 3)
        start = threading.Barrier(2)

        def debit(job_id):
            start.wait()
            try:
                return asyncio.run(file_store.debit("user-1", 2, job_id))
            except InsufficientCreditsError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(debit, ["rep_1_hhhhhhh", "rep_1_iiiiiii"]))

        assert sum(isinstance(r, DebitReceipt) for r in results) == 1
        assert sum(isinstance(r, InsufficientCreditsError) for r in results) == 1
        assert asyncio.run(file_store.get_balance("user-1")) == 1

