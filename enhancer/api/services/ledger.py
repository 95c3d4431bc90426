"""
Credit ledger client used by the dispatcher.
"""

import random
import string
import time
from typing import Optional

import structlog

from enhancer.core.config import JOB_ID_PREFIXES, ProviderKind
from enhancer.core.exceptions import InsufficientCreditsError, StoreError
from enhancer.api.services.store import CreditStore, DebitReceipt

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_rng = random.SystemRandom()


def generate_job_id(provider: ProviderKind, now_ms: Optional[int] = None) -> str:
    """Job id in the form ``<prefix>_<unix millis>_<7 base36 chars>``."""
    prefix = JOB_ID_PREFIXES[ProviderKind(provider)]
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(_rng.choice(_BASE36) for _ in range(7))
    return f"{prefix}_{millis}_{suffix}"


class CreditLedger:
    """Thin wrapper over the store's atomic debit and credit operations."""

    def __init__(self, store: CreditStore):
        self.store = store

    async def debit(self, user_id: str, amount: int, job_id: str, description: str = "") -> DebitReceipt:
        try:
            receipt = await self.store.debit(user_id, amount, job_id, description)
        except (InsufficientCreditsError, StoreError):
            raise
        except Exception as e:
            # Store implementations may raise their own errors
            if "insufficient credits" in str(e).lower():
                raise InsufficientCreditsError(required=amount)
            logger.error("Credit store debit failed", user_id=user_id, job_id=job_id, error=str(e))
            raise StoreError(f"Debit failed: {e}", "debit")

        logger.info(
            "Credits debited",
            user_id=user_id,
            job_id=job_id,
            amount=amount,
            new_balance=receipt.new_balance,
            replayed=receipt.replayed
        )
        return receipt

    async def credit(self, user_id: str, amount: int, job_id: str) -> int:
        """Refund; store errors propagate and the dispatcher decides what to do."""
        new_balance = await self.store.credit(user_id, amount, job_id)
        logger.info("Credits refunded", user_id=user_id, job_id=job_id, amount=amount, new_balance=new_balance)
        return new_balance

    async def get_balance(self, user_id: str) -> int:
        return await self.store.get_balance(user_id)
