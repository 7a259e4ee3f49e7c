"""
스토리보드 생성 오케스트레이터
권한 확인 → 장면 분해 → 장면별 이미지 생성(동시 실행 제한) → 완료 처리, 그리고 단일 장면 재생성
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Union

from pydantic import ValidationError

from storyboard_api.core.config import settings
from storyboard_api.core.errors import (
    RateLimitExceeded,
    StoryboardAccessDenied,
    StoryboardValidationError,
)
from storyboard_api.schemas.storyboard import (
    SceneRecord,
    SceneTextUpdate,
    StoryboardCreate,
    StoryboardListResponse,
    StoryboardRecord,
)
from storyboard_api.services.entitlement_service import EntitlementGate
from storyboard_api.services.image_stage import ImageGenerationStage
from storyboard_api.services.persistence import PersistenceAdapter
from storyboard_api.services.scene_breakdown import SceneBreakdownStage

logger = logging.getLogger(__name__)


class StoryboardOrchestrator:
    """스토리보드 생성 상태 머신"""

    def __init__(
        self,
        gate: EntitlementGate,
        breakdown_stage: SceneBreakdownStage,
        image_stage: ImageGenerationStage,
        persistence: PersistenceAdapter,
        concurrency: Optional[int] = None,
        credit_cost: Optional[int] = None,
    ):
        self.gate = gate
        self.breakdown_stage = breakdown_stage
        self.image_stage = image_stage
        self.persistence = persistence
        self.concurrency = max(1, concurrency or settings.IMAGE_CONCURRENCY)
        self.credit_cost = credit_cost or settings.STORYBOARD_CREDIT_COST
        # 백그라운드 생성 작업 (스토리보드 id별)
        self._running: Dict[uuid.UUID, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    # --- 생성 ---

    async def create_storyboard(
        self,
        owner_id: str,
        request: Union[StoryboardCreate, Dict[str, Any]],
    ) -> StoryboardRecord:
        """스토리보드를 만들고 모든 장면이 끝날 때까지 기다린다"""
        record = await self._prepare(owner_id, request)
        if record.status == "processing":
            await self._generate_all(record)
        return record

    async def start_storyboard(
        self,
        owner_id: str,
        request: Union[StoryboardCreate, Dict[str, Any]],
    ) -> StoryboardRecord:
        """스토리보드를 만들고 이미지 생성은 백그라운드로 넘긴다 (조회로 진행 상황 확인)"""
        record = await self._prepare(owner_id, request)
        snapshot = record.model_copy(deep=True)
        if record.status == "processing":
            task = asyncio.create_task(self._generate_all(record))
            self._running[record.id] = task
            self._tasks.add(task)
            task.add_done_callback(lambda t, sid=record.id: self._forget(sid, t))
        return snapshot

    def _forget(self, storyboard_id: uuid.UUID, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._running.get(storyboard_id) is task:
            del self._running[storyboard_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{storyboard_id}] 백그라운드 생성 작업 오류: {task.exception()}")

    @staticmethod
    def _validate(request: Union[StoryboardCreate, Dict[str, Any]]) -> StoryboardCreate:
        if isinstance(request, StoryboardCreate):
            return request
        try:
            return StoryboardCreate.model_validate(request)
        except ValidationError as e:
            raise StoryboardValidationError(str(e)) from e

    async def _prepare(
        self,
        owner_id: str,
        request: Union[StoryboardCreate, Dict[str, Any]],
    ) -> StoryboardRecord:
        """입력 검증 → 권한(차감) → 장면 분해 → 레코드 저장"""
        # 검증은 반드시 차감 전에
        req = self._validate(request)
        storyboard_id = uuid.uuid4()

        await self.gate.authorize(owner_id, self.credit_cost, reference_id=str(storyboard_id))

        now = datetime.now(timezone.utc)
        base = dict(
            id=storyboard_id,
            owner_id=owner_id,
            original_text=req.text,
            character=req.character,
            visual_style=req.visual_style,
            color_theme=req.color_theme,
            created_at=now,
            updated_at=now,
        )
        style_prefs = {
            "visual_style": req.visual_style,
            "color_theme": req.color_theme,
            "brand_personality": req.brand_personality,
            "target_audience": req.target_audience,
        }

        try:
            result = await self.breakdown_stage.breakdown(req.text, style_prefs, req.scene_count, req.character)
        except Exception as e:
            logger.error(f"[{storyboard_id}] 장면 분해 실패: {e}")
            record = StoryboardRecord(**base, status="failed", error_message=str(e), scene_count=0, scenes=[])
            await self.persistence.create(record)
            return record

        record = StoryboardRecord(
            **base,
            title=result.title,
            character_persona=result.character_persona,
            scene_count=len(result.scenes),
            status="processing",
            scenes=[
                SceneRecord(
                    index=i,
                    section_title=stub.section_title,
                    text=stub.text,
                    image_prompt=stub.image_prompt,
                )
                for i, stub in enumerate(result.scenes)
            ],
        )
        written = await self.persistence.create(record)
        logger.info(
            f"[{record.id}] 스토리보드 생성: owner={owner_id} scenes={record.scene_count} "
            f"placeholder={result.is_placeholder} backend={written.backend}"
        )
        return record

    async def _generate_all(self, record: StoryboardRecord) -> None:
        """장면별 이미지 생성 (동시 실행 제한), 모두 끝나면 한 번만 completed 처리"""
        semaphore = asyncio.Semaphore(self.concurrency)
        abort = asyncio.Event()
        # generate_scene이 끝까지 실행되어 저장까지 마친 장면
        settled: Set[int] = set()

        async def worker(index: int):
            async with semaphore:
                if abort.is_set():
                    # 시도하지 않은 장면은 pending 유지
                    return None
                try:
                    outcome = await self.image_stage.generate_scene(record, index)
                except RateLimitExceeded:
                    settled.add(index)
                    # 세마포어를 놓기 전에 표시해야 대기 중인 장면이 시작하지 않음
                    abort.set()
                    raise
                settled.add(index)
                return outcome

        tasks = [asyncio.create_task(worker(scene.index)) for scene in record.scenes]
        try:
            for finished in asyncio.as_completed(tasks):
                try:
                    await finished
                except RateLimitExceeded as e:
                    logger.warning(f"[{record.id}] 할당량 초과로 남은 장면 생성 중단 (scene {e.scene_index})")
                    for task in tasks:
                        if not task.done():
                            task.cancel()
                    break
                except Exception as e:
                    logger.error(f"[{record.id}] 장면 작업 예외: {e}")
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # 취소된 작업까지 모두 정리된 뒤 집계
        await asyncio.gather(*tasks, return_exceptions=True)

        for scene in record.scenes:
            if scene.index in settled:
                continue
            if scene.status == "generating":
                # 예기치 못한 예외로 끝난 장면
                scene.status = "failed"
            if scene.status in ("done", "failed"):
                # 결과는 나왔지만 저장 도중 취소/예외로 끊긴 장면도 여기서 기록
                await self.image_stage.persist_scene(record, scene.index)

        record.status = "completed"
        await self.persistence.update_status(record)

        done = sum(1 for s in record.scenes if s.status == "done")
        failed = sum(1 for s in record.scenes if s.status == "failed")
        pending = sum(1 for s in record.scenes if s.status == "pending")
        logger.info(f"[{record.id}] 스토리보드 완료: done={done} failed={failed} pending={pending}")

    # --- 재생성/조회/수정 ---

    async def regenerate_scene(
        self,
        storyboard_id: uuid.UUID,
        index: int,
        prompt_override: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> SceneRecord:
        """
        단일 장면 이미지 재생성 (크레딧 차감 없음)

        prompt_override가 없으면 저장된 image_prompt를 그대로 사용하고,
        있으면 먼저 새 image_prompt로 저장(기존 이미지 제거)한 뒤 생성한다.
        할당량 초과는 RateLimitExceeded로 전달된다.
        """
        record = await self.get_storyboard(storyboard_id, owner_id)
        scene = self._scene_or_raise(record, index)

        override = (prompt_override or "").strip()
        if override:
            # 새 프롬프트와 맞지 않는 이전 이미지는 함께 비운다
            scene.image_prompt = override
            scene.image_url = None
            scene.status = "pending"
            await self.persistence.update_scene(record, index)

        outcome = await self.image_stage.generate_scene(record, index)
        logger.info(f"[{record.id}#{index}] 장면 재생성 결과: {outcome.status}")
        return record.scene(index)

    async def get_storyboard(self, storyboard_id: uuid.UUID, owner_id: Optional[str] = None) -> StoryboardRecord:
        record = await self.persistence.get(storyboard_id)
        if owner_id is not None and record.owner_id != owner_id:
            raise StoryboardAccessDenied("이 스토리보드에 접근할 권한이 없습니다")
        return record

    async def list_storyboards(self, owner_id: str, limit: int = 20, offset: int = 0) -> StoryboardListResponse:
        items, total = await self.persistence.list(owner_id, limit=limit, offset=offset)
        return StoryboardListResponse(items=items, total=total)

    async def delete_storyboard(self, storyboard_id: uuid.UUID, owner_id: Optional[str] = None) -> bool:
        """스토리보드 삭제 (진행 중인 생성 작업도 중단)"""
        await self.get_storyboard(storyboard_id, owner_id)
        task = self._running.pop(storyboard_id, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        return await self.persistence.delete(storyboard_id)

    async def update_scene_text(
        self,
        storyboard_id: uuid.UUID,
        index: int,
        update: SceneTextUpdate,
        owner_id: Optional[str] = None,
    ) -> SceneRecord:
        """장면 제목/본문 수동 수정 (image_prompt/image_url은 건드리지 않음)"""
        record = await self.get_storyboard(storyboard_id, owner_id)
        scene = self._scene_or_raise(record, index)
        if update.section_title is not None:
            scene.section_title = update.section_title
        if update.text is not None:
            scene.text = update.text
        await self.persistence.update_scene(record, index)
        return scene

    @staticmethod
    def _scene_or_raise(record: StoryboardRecord, index: int) -> SceneRecord:
        try:
            return record.scene(index)
        except IndexError:
            raise StoryboardValidationError(f"장면 인덱스가 범위를 벗어났습니다: {index} (장면 {len(record.scenes)}개)")

    async def shutdown(self) -> None:
        """진행 중인 백그라운드 작업 정리"""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
