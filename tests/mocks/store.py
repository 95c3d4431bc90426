"""
In-memory credit store for dispatcher and ledger tests.
"""

import asyncio
import time
from collections import defaultdict
from typing import Dict, List, Optional

from enhancer.core.exceptions import InsufficientCreditsError, StoreError
from enhancer.api.services.store import BatchLimitResult, CreditStore, DebitReceipt


class InMemoryCreditStore(CreditStore):
    """
    Credit store backed by dicts and one asyncio lock.

    Args:
        balances: Starting balance per user
        fail_refunds: Raise StoreError from ``credit``
        debit_delay: Seconds to sleep inside the locked section of ``debit``
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None, fail_refunds: bool = False,
                 debit_delay: float = 0.0):
        self.balances: Dict[str, int] = dict(balances or {})
        self.fail_refunds = fail_refunds
        self.debit_delay = debit_delay
        self.debits: Dict[str, int] = {}
        self.debit_balances: Dict[str, int] = {}
        self.refunds: Dict[str, int] = {}
        self.credit_calls: List[str] = []
        self.batch_starts: Dict[str, List[float]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def debit(self, user_id: str, amount: int, job_id: str, description: str = "") -> DebitReceipt:
        async with self._lock:
            if job_id in self.debits:
                return DebitReceipt(new_balance=self.debit_balances[job_id], replayed=True)
            if self.debit_delay:
                await asyncio.sleep(self.debit_delay)
            balance = self.balances.get(user_id, 0)
            if balance < amount:
                raise InsufficientCreditsError(required=amount, available=balance)
            self.balances[user_id] = balance - amount
            self.debits[job_id] = amount
            self.debit_balances[job_id] = self.balances[user_id]
            return DebitReceipt(new_balance=self.balances[user_id])

    async def credit(self, user_id: str, amount: int, job_id: str) -> int:
        self.credit_calls.append(job_id)
        if self.fail_refunds:
            raise StoreError("Credit store unavailable", "credit")
        async with self._lock:
            if job_id not in self.refunds:
                self.refunds[job_id] = amount
                self.balances[user_id] = self.balances.get(user_id, 0) + amount
            return self.balances[user_id]

    async def check_and_increment_batch(self, user_id: str, limit: int, window_hours: float) -> BatchLimitResult:
        async with self._lock:
            now = time.time()
            window = window_hours * 3600
            starts = [t for t in self.batch_starts[user_id] if t > now - window]
            allowed = len(starts) < limit
            if allowed:
                starts.append(now)
            self.batch_starts[user_id] = starts
            oldest = starts[0] if starts else now
            return BatchLimitResult(
                allowed=allowed,
                current_count=len(starts),
                limit=limit,
                reset_at=int((oldest + window) * 1000),
            )

    async def get_balance(self, user_id: str) -> int:
        return self.balances.get(user_id, 0)
