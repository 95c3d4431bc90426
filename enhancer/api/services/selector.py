"""
Model selection and credit cost computation.
"""

import math
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

import structlog

from enhancer.core.config import ModelCapability, ProcessingMode, SubscriptionTier
from enhancer.core.settings import Settings, settings as app_settings
from enhancer.api.services.catalog import BackendDescriptor, CapabilityCatalog

logger = structlog.get_logger(__name__)


def mode_capability(mode: ProcessingMode) -> ModelCapability:
    """Capability a backend needs to serve ``mode``."""
    if ProcessingMode(mode) in (ProcessingMode.UPSCALE, ProcessingMode.BOTH):
        return ModelCapability.UPSCALE
    return ModelCapability.ENHANCE


def credit_cost(
    descriptor: BackendDescriptor,
    mode: ProcessingMode,
    base_upscale: Optional[int] = None,
    base_enhance: Optional[int] = None,
) -> int:
    """
    Credits charged for one job on ``descriptor``.

    Upscale and both are billed at the upscale base, enhance and custom at
    the enhance base. Scale never changes the price.
    """
    if base_upscale is None:
        base_upscale = app_settings.base_credits_upscale
    if base_enhance is None:
        base_enhance = app_settings.base_credits_enhance

    mode = ProcessingMode(mode)
    if mode in (ProcessingMode.UPSCALE, ProcessingMode.BOTH):
        base = base_upscale
    else:
        base = base_enhance
    return math.ceil(base * descriptor.credit_multiplier)


def credit_cost_for(catalog: CapabilityCatalog, backend_id: str, mode: ProcessingMode) -> int:
    """Credit cost by backend id; unknown backends cost nothing."""
    descriptor = catalog.get_backend(backend_id)
    if descriptor is None:
        return 0
    return credit_cost(descriptor, mode)


@dataclass(frozen=True)
class SelectionPreferences:
    enhance_faces: bool = False
    denoise: bool = False
    prioritize_quality: bool = False


@dataclass(frozen=True)
class SelectionCriteria:
    """Constraints for picking a backend."""
    user_tier: SubscriptionTier
    mode: ProcessingMode
    scale: int
    available_credits: int
    required_capabilities: FrozenSet[ModelCapability] = frozenset()
    preferences: SelectionPreferences = field(default_factory=SelectionPreferences)


class ModelSelector:
    """Picks one backend from the catalog for a set of criteria."""

    def __init__(self, catalog: CapabilityCatalog, settings: Optional[Settings] = None):
        self.catalog = catalog
        self.settings = settings or app_settings

    def cost(self, descriptor: BackendDescriptor, mode: ProcessingMode) -> int:
        return credit_cost(
            descriptor,
            mode,
            base_upscale=self.settings.base_credits_upscale,
            base_enhance=self.settings.base_credits_enhance,
        )

    def candidates(self, criteria: SelectionCriteria) -> List[BackendDescriptor]:
        """Eligible backends in selection order."""
        required = frozenset(ModelCapability(c) for c in criteria.required_capabilities)

        candidates = [
            d for d in self.catalog.list_by_tier(criteria.user_tier)
            if required <= d.capabilities and d.supports_scale(criteria.scale)
        ]

        # Soft preference, never empties the list
        if criteria.preferences.enhance_faces:
            face_models = [
                d for d in candidates if d.has_capability(ModelCapability.FACE_RESTORATION)
            ]
            if face_models:
                candidates = face_models

        # sorted() is stable, ties keep catalog order
        if criteria.preferences.prioritize_quality:
            return sorted(candidates, key=lambda d: -d.quality_score)
        return sorted(candidates, key=lambda d: d.cost_per_call)

    def select_best(self, criteria: SelectionCriteria) -> Optional[BackendDescriptor]:
        """
        Best backend for ``criteria``.

        Returns the first affordable candidate. When none is affordable the
        first candidate in selection order is returned anyway and the debit
        decides; ``None`` only when nothing matches tier, capabilities and scale.
        """
        candidates = self.candidates(criteria)
        if not candidates:
            logger.info(
                "No backend matches selection criteria",
                tier=SubscriptionTier(criteria.user_tier).value,
                mode=ProcessingMode(criteria.mode).value,
                scale=criteria.scale,
                required=sorted(ModelCapability(c).value for c in criteria.required_capabilities),
            )
            return None

        for descriptor in candidates:
            if self.cost(descriptor, criteria.mode) <= criteria.available_credits:
                return descriptor

        fallback = candidates[0]
        # TODO: confirm with product whether unaffordable selections should be rejected here
        logger.warning(
            "No affordable backend, returning best effort selection",
            backend_id=fallback.id,
            credit_cost=self.cost(fallback, criteria.mode),
            available_credits=criteria.available_credits,
        )
        return fallback
