"""
스토리보드 관련 API 엔드포인트
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storyboard_api.core.errors import (
    InsufficientCredits,
    PersistenceError,
    RateLimitExceeded,
    StoryboardAccessDenied,
    StoryboardError,
    StoryboardNotFound,
    StoryboardValidationError,
)
from storyboard_api.dependencies import get_current_owner, get_orchestrator
from storyboard_api.schemas.storyboard import (
    SceneRecord,
    SceneRegenerateRequest,
    SceneTextUpdate,
    StoryboardCreate,
    StoryboardListResponse,
    StoryboardRecord,
)
from storyboard_api.services.storyboard_orchestrator import StoryboardOrchestrator


router = APIRouter()


def _to_http(e: StoryboardError) -> HTTPException:
    """도메인 예외 → HTTP 응답"""
    if isinstance(e, InsufficientCredits):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": "크레딧이 부족합니다", "balance": e.balance, "cost": e.cost},
        )
    if isinstance(e, StoryboardValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, StoryboardNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="스토리보드를 찾을 수 없습니다")
    if isinstance(e, StoryboardAccessDenied):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if isinstance(e, RateLimitExceeded):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="이미지 생성 한도를 초과했습니다. 잠시 후 다시 시도해주세요.")
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="저장소를 일시적으로 사용할 수 없습니다")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="스토리보드 처리 중 오류가 발생했습니다")


@router.post("", response_model=StoryboardRecord, status_code=status.HTTP_201_CREATED)
async def create_storyboard(
    request: StoryboardCreate,
    wait: bool = Query(False, description="true면 모든 장면 이미지가 끝난 뒤 응답"),
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """
    스토리보드 생성

    무료 횟수가 남아 있으면 차감 없이, 아니면 크레딧을 차감한 뒤 생성합니다.
    기본은 장면 분해까지 마친 뒤 응답하고, 이미지는 백그라운드에서 생성됩니다.
    """
    try:
        if wait:
            return await orchestrator.create_storyboard(owner_id, request)
        return await orchestrator.start_storyboard(owner_id, request)
    except StoryboardError as e:
        raise _to_http(e)


@router.get("", response_model=StoryboardListResponse)
async def list_storyboards(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """내 스토리보드 목록"""
    return await orchestrator.list_storyboards(owner_id, limit=limit, offset=offset)


@router.get("/{storyboard_id}", response_model=StoryboardRecord)
async def get_storyboard(
    storyboard_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """스토리보드 조회 (생성 중이면 완료된 장면부터 보입니다)"""
    try:
        return await orchestrator.get_storyboard(storyboard_id, owner_id)
    except StoryboardError as e:
        raise _to_http(e)


@router.delete("/{storyboard_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_storyboard(
    storyboard_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """스토리보드 삭제"""
    try:
        deleted = await orchestrator.delete_storyboard(storyboard_id, owner_id)
    except StoryboardError as e:
        raise _to_http(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="스토리보드를 찾을 수 없습니다")


@router.post("/{storyboard_id}/scenes/{index}/regenerate", response_model=SceneRecord)
async def regenerate_scene(
    storyboard_id: uuid.UUID,
    index: int,
    request: SceneRegenerateRequest,
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """
    장면 이미지 재생성

    prompt_override가 있으면 새 프롬프트로 저장한 뒤 생성합니다.
    """
    try:
        return await orchestrator.regenerate_scene(
            storyboard_id,
            index,
            prompt_override=request.prompt_override,
            owner_id=owner_id,
        )
    except StoryboardError as e:
        raise _to_http(e)


@router.patch("/{storyboard_id}/scenes/{index}", response_model=SceneRecord)
async def update_scene_text(
    storyboard_id: uuid.UUID,
    index: int,
    request: SceneTextUpdate,
    owner_id: str = Depends(get_current_owner),
    orchestrator: StoryboardOrchestrator = Depends(get_orchestrator),
):
    """장면 제목/본문 수정"""
    try:
        return await orchestrator.update_scene_text(storyboard_id, index, request, owner_id=owner_id)
    except StoryboardError as e:
        raise _to_http(e)
