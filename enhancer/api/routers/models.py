"""
Model catalog, credit estimate and recommendation endpoints.
"""
import structlog
from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, Optional

from enhancer.core.config import SubscriptionTier
from enhancer.core.exceptions import ModelNotAvailableError
from enhancer.api.dependencies import get_services, get_user_tier
from enhancer.api.schemas import CreditEstimateRequest, RecommendRequest

logger = structlog.get_logger()

router = APIRouter(prefix="/v1", tags=["models"])


@router.get("/models")
async def list_models(
    tier: Optional[SubscriptionTier] = Query(default=None),
    user_tier: SubscriptionTier = Depends(get_user_tier),
    services=Depends(get_services),
) -> Dict[str, Any]:
    """Enabled models available to a tier, the caller's tier by default."""
    tier = tier or user_tier
    models = services.catalog.list_by_tier(tier)
    return {
        "tier": tier.value,
        "models": [m.to_dict() for m in models],
        "use_cases": services.catalog.use_case_assignments(),
        "auto_selection_enabled": services.recommendations.is_auto_selection_enabled(),
    }


@router.post("/credit-estimate")
async def credit_estimate(
    body: CreditEstimateRequest,
    services=Depends(get_services),
) -> Dict[str, Any]:
    """Credits a job would cost; scale does not change the price."""
    descriptor = services.catalog.get_backend(body.model_id)
    if descriptor is None or not descriptor.enabled:
        raise ModelNotAvailableError(f"Model {body.model_id} is not available", body.model_id)

    return {
        "model_id": descriptor.id,
        "mode": body.mode.value,
        "scale": body.scale,
        "credit_cost": services.selector.cost(descriptor, body.mode),
    }


@router.post("/recommend")
async def recommend_model(
    body: RecommendRequest,
    tier: SubscriptionTier = Depends(get_user_tier),
    services=Depends(get_services),
) -> Dict[str, Any]:
    """Rule based model recommendation from image analysis signals."""
    recommendation = services.recommendations.recommend(
        body.analysis.to_analysis(), tier, body.mode, body.scale
    )
    return recommendation.to_dict()
