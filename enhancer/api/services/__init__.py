"""
Services package for model dispatch and credit transactions.
"""

from .catalog import BackendDescriptor, CapabilityCatalog, build_catalog
from .selector import (
    ModelSelector,
    SelectionCriteria,
    SelectionPreferences,
    credit_cost,
    credit_cost_for,
    mode_capability,
)
from .recommendations import ImageAnalysis, Recommendation, RecommendationEngine
from .store import BatchLimitResult, CreditStore, DebitReceipt, SqlCreditStore
from .ledger import CreditLedger, generate_job_id
from .batch_limits import (
    BatchLimiter,
    InMemoryBatchLimiter,
    RedisBatchLimiter,
    StoreBatchLimiter,
    build_batch_limiter,
)
from .dispatch import CanonicalResult, DispatchOrchestrator, DispatchOutcome, ProcessingJob

__all__ = [
    'BackendDescriptor',
    'BatchLimitResult',
    'BatchLimiter',
    'CanonicalResult',
    'CapabilityCatalog',
    'CreditLedger',
    'CreditStore',
    'DebitReceipt',
    'DispatchOrchestrator',
    'DispatchOutcome',
    'ImageAnalysis',
    'InMemoryBatchLimiter',
    'ModelSelector',
    'ProcessingJob',
    'Recommendation',
    'RecommendationEngine',
    'RedisBatchLimiter',
    'SelectionCriteria',
    'SelectionPreferences',
    'SqlCreditStore',
    'StoreBatchLimiter',
    'build_batch_limiter',
    'build_catalog',
    'credit_cost',
    'credit_cost_for',
    'mode_capability',
    'generate_job_id',
]
