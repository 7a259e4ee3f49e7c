"""
공통 의존성: 요청 소유자 식별, 오케스트레이터/권한 게이트 싱글톤
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from storyboard_api.core.config import settings
from storyboard_api.core.database import AsyncSessionLocal, redis_client
from storyboard_api.services.ai_service import LLMSceneProvider
from storyboard_api.services.entitlement_service import (
    CreditStore,
    EntitlementGate,
    InMemoryCreditStore,
    RedisCreditStore,
)
from storyboard_api.services.image_client import FalImageClient
from storyboard_api.services.image_stage import ImageGenerationStage
from storyboard_api.services.persistence import PersistenceAdapter
from storyboard_api.services.prompt_synthesizer import PromptSynthesizer
from storyboard_api.services.scene_breakdown import SceneBreakdownStage
from storyboard_api.services.storage import get_storage
from storyboard_api.services.storyboard_orchestrator import StoryboardOrchestrator
from storyboard_api.services.storyboard_repository import StoryboardRepository

logger = logging.getLogger(__name__)

_credit_store: Optional[CreditStore] = None
_orchestrator: Optional[StoryboardOrchestrator] = None


async def get_current_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    """요청 소유자 식별 (인증은 앞단 게이트웨이가 처리하고 X-User-Id로 전달)"""
    owner = (x_user_id or "").strip()
    if not owner:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id 헤더가 필요합니다")
    if len(owner) > 64:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id가 너무 깁니다")
    return owner


def get_credit_store() -> CreditStore:
    global _credit_store
    if _credit_store is None:
        if (settings.CREDIT_STORE_BACKEND or "redis").lower() == "memory":
            _credit_store = InMemoryCreditStore()
        else:
            _credit_store = RedisCreditStore(redis_client, AsyncSessionLocal)
    return _credit_store


def get_entitlement_gate() -> EntitlementGate:
    return EntitlementGate(get_credit_store())


def get_orchestrator() -> StoryboardOrchestrator:
    """오케스트레이터 싱글톤 (첫 요청 시 생성)"""
    global _orchestrator
    if _orchestrator is None:
        try:
            image_client = FalImageClient()
        except ValueError as e:
            logger.error(f"이미지 생성 클라이언트 초기화 실패: {e}")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="이미지 생성 서비스가 설정되지 않았습니다")

        persistence = PersistenceAdapter(StoryboardRepository(AsyncSessionLocal))
        _orchestrator = StoryboardOrchestrator(
            gate=get_entitlement_gate(),
            breakdown_stage=SceneBreakdownStage(LLMSceneProvider()),
            image_stage=ImageGenerationStage(
                image_client,
                persistence,
                synthesizer=PromptSynthesizer(),
                storage=get_storage(),
            ),
            persistence=persistence,
        )
    return _orchestrator


async def shutdown_orchestrator() -> None:
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None
