"""
Image processing endpoint: selection, admission, debit, dispatch.
"""
import structlog
from fastapi import APIRouter, Depends
from typing import Any, Dict

from enhancer.core.config import SubscriptionTier
from enhancer.core.exceptions import ValidationError
from enhancer.api.dependencies import get_services, get_user_id, get_user_tier
from enhancer.api.schemas import ProcessRequest
from enhancer.api.services.selector import SelectionCriteria, SelectionPreferences, mode_capability

logger = structlog.get_logger()

router = APIRouter(prefix="/v1", tags=["processing"])


@router.post("/process")
async def process_image(
    body: ProcessRequest,
    user_id: str = Depends(get_user_id),
    tier: SubscriptionTier = Depends(get_user_tier),
    services=Depends(get_services),
) -> Dict[str, Any]:
    """Process one image, billed in credits and refunded on failure."""
    await services.ensure_account(user_id)

    request = body.to_processing_request()
    criteria = None
    backend_id = None

    if body.wants_auto_selection:
        if not services.recommendations.is_auto_selection_enabled():
            raise ValidationError("Automatic model selection is disabled; pass model_id")
        balance = await services.ledger.get_balance(user_id)
        criteria = SelectionCriteria(
            user_tier=tier,
            mode=body.mode,
            scale=body.scale,
            available_credits=balance,
            required_capabilities=frozenset(body.required_capabilities) | {mode_capability(body.mode)},
            preferences=SelectionPreferences(
                enhance_faces=body.enhance_faces,
                denoise=body.denoise,
                prioritize_quality=body.prioritize_quality,
            ),
        )
    else:
        backend_id = body.model_id
        descriptor = services.catalog.get_backend(backend_id)
        if descriptor is not None and not descriptor.available_for_tier(tier):
            raise ValidationError(
                f"Model {backend_id} requires the {descriptor.tier_restriction.value} plan",
                details={"model_id": backend_id, "tier": tier.value},
            )

    # Requests rejected above never count against the batch window
    descriptor = services.orchestrator.resolve_backend(request, backend_id, criteria)
    await services.batch_limiter.enforce(user_id, tier)

    outcome = await services.orchestrator.process(user_id, request, backend_id=descriptor.id)
    logger.info(
        "Process request finished",
        user_id=user_id,
        job_id=outcome.job.job_id,
        state=outcome.job.state.value,
        ok=outcome.ok,
    )
    return outcome.unwrap().to_dict()
