"""
Rule based backend recommendations for automatic mode.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog

from enhancer.core.config import ContentType, ProcessingMode, SubscriptionTier, UseCase
from enhancer.core.exceptions import ModelNotAvailableError
from enhancer.core.settings import Settings, settings as app_settings
from enhancer.api.services.catalog import BackendDescriptor, CapabilityCatalog
from enhancer.api.services.selector import credit_cost

logger = structlog.get_logger(__name__)

REASON_DAMAGE = "Heavy damage detected. Premium restoration recommended."
REASON_TEXT = "Text or logos detected. Text preservation model selected."
REASON_PORTRAIT = "Portrait or old photo detected. Face restoration model selected."
REASON_NOISE = "Noise detected. Higher quality upscaler selected."
REASON_DEFAULT = "Standard upscaling selected."
DOWNGRADE_NOTE = "Recommended model is not available for your plan; downgraded to the best available model."


@dataclass(frozen=True)
class ImageAnalysis:
    """Coarse signals from image analysis, all levels in 0-1."""
    damage_level: float = 0.0
    face_count: int = 0
    text_coverage: float = 0.0
    noise_level: float = 0.0
    content_type: ContentType = ContentType.UNKNOWN


@dataclass(frozen=True)
class Recommendation:
    recommended_model: str
    reasoning: str
    credit_cost: int
    alternatives: List[str] = field(default_factory=list)
    confidence: float = 0.7
    use_case: Optional[str] = None
    downgraded: bool = False

    def to_dict(self):
        return {
            "recommended_model": self.recommended_model,
            "reasoning": self.reasoning,
            "credit_cost": self.credit_cost,
            "alternatives": list(self.alternatives),
            "confidence": self.confidence,
            "use_case": self.use_case,
            "downgraded": self.downgraded,
        }


class RecommendationEngine:
    """
    Maps image analysis signals to a use case, then to a backend.

    Rules are evaluated in a fixed order and the first match wins:
    damage, text, faces, noise, then the general upscale default.
    """

    def __init__(self, catalog: CapabilityCatalog, settings: Optional[Settings] = None):
        self.catalog = catalog
        self.settings = settings or app_settings

    def is_auto_selection_enabled(self) -> bool:
        return self.settings.enable_auto_model_selection

    def match_use_case(self, analysis: ImageAnalysis) -> Tuple[UseCase, str]:
        """First matching rule for the analysis."""
        s = self.settings
        content_type = ContentType(analysis.content_type)

        if analysis.damage_level > s.damage_high_threshold:
            return UseCase.DAMAGED_PHOTOS, REASON_DAMAGE
        if analysis.text_coverage > s.text_high_threshold or content_type == ContentType.DOCUMENT:
            return UseCase.TEXT_LOGOS, REASON_TEXT
        if analysis.face_count > 0 or content_type in (ContentType.PORTRAIT, ContentType.VINTAGE):
            return UseCase.PORTRAITS, REASON_PORTRAIT
        if analysis.noise_level > s.noise_high_threshold:
            return UseCase.MAX_QUALITY, REASON_NOISE
        return UseCase.GENERAL_UPSCALE, REASON_DEFAULT

    def eligible(self, user_tier: SubscriptionTier, scale: int) -> List[BackendDescriptor]:
        return [d for d in self.catalog.list_by_tier(user_tier) if d.supports_scale(scale)]

    def recommend(
        self,
        analysis: ImageAnalysis,
        user_tier: SubscriptionTier,
        mode: ProcessingMode,
        scale: int,
    ) -> Recommendation:
        eligible = self.eligible(user_tier, scale)
        if not eligible:
            raise ModelNotAvailableError(
                f"No backend available for tier {SubscriptionTier(user_tier).value} at {scale}x"
            )

        use_case, reasoning = self.match_use_case(analysis)
        mapped = self.catalog.get_backend_for_use_case(use_case)
        eligible_ids = [d.id for d in eligible]
        downgraded = mapped is None or mapped.id not in eligible_ids

        if downgraded:
            chosen = eligible[0]
            reasoning = f"{reasoning} {DOWNGRADE_NOTE}"
        else:
            chosen = mapped

        alternatives = [i for i in eligible_ids if i != chosen.id][:2]

        recommendation = Recommendation(
            recommended_model=chosen.id,
            reasoning=reasoning,
            credit_cost=credit_cost(
                chosen,
                mode,
                base_upscale=self.settings.base_credits_upscale,
                base_enhance=self.settings.base_credits_enhance,
            ),
            alternatives=alternatives,
            confidence=self.settings.recommendation_confidence,
            use_case=use_case.value,
            downgraded=downgraded,
        )
        logger.info(
            "Model recommended",
            use_case=use_case.value,
            backend_id=chosen.id,
            downgraded=downgraded,
            tier=SubscriptionTier(user_tier).value,
            scale=scale,
        )
        return recommendation
