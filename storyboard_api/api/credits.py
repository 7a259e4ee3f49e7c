"""
크레딧 관련 API 엔드포인트
"""

from fastapi import APIRouter, Depends

from storyboard_api.core.config import settings
from storyboard_api.dependencies import get_current_owner, get_entitlement_gate
from storyboard_api.schemas.credit import CreditStatusResponse
from storyboard_api.services.entitlement_service import EntitlementGate


router = APIRouter()


@router.get("/me", response_model=CreditStatusResponse)
async def get_my_credits(
    owner_id: str = Depends(get_current_owner),
    gate: EntitlementGate = Depends(get_entitlement_gate),
):
    """
    크레딧 잔액 + 무료 스토리 잔여 횟수 조회
    """
    return await gate.status(owner_id, cost=settings.STORYBOARD_CREDIT_COST)
