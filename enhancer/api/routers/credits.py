"""
Credits router for the caller's balance.
"""
import structlog
from fastapi import APIRouter, Depends
from typing import Any, Dict

from enhancer.api.dependencies import get_services, get_user_id

logger = structlog.get_logger()

router = APIRouter(prefix="/v1/credits", tags=["credits"])


@router.get("/balance")
async def get_credit_balance(
    user_id: str = Depends(get_user_id),
    services=Depends(get_services),
) -> Dict[str, Any]:
    """Get user's current credit balance."""
    await services.ensure_account(user_id)
    credits = await services.ledger.get_balance(user_id)
    return {"credits": credits, "user_id": user_id}
