from .credit import (
    BatchUsage,
    CreditAccount,
    CreditTransaction,
)

__all__ = [
    "BatchUsage",
    "CreditAccount",
    "CreditTransaction",
]
