"""
크레딧 관련 Pydantic 스키마
"""

from pydantic import BaseModel
from typing import Literal


class EntitlementDecision(BaseModel):
    """생성 허가 결과"""
    kind: Literal["free", "paid"]
    debited: int
    balance_after: int
    free_stories_used: int


class CreditStatusResponse(BaseModel):
    """크레딧 현황 응답"""
    balance: int
    free_stories_used: int
    free_story_quota: int
    free_stories_remaining: int
    storyboard_cost: int
