"""
스토리보드 저장 어댑터
영구 저장소(primary)에 먼저 쓰고, 실패하면 메모리 저장소(fallback)로 대체한다.
한 번 fallback으로 넘어간 스토리보드는 이후 쓰기/읽기를 모두 fallback이 담당한다.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Literal, Optional, Set, Tuple

from storyboard_api.core.errors import PersistenceError, StoryboardNotFound
from storyboard_api.schemas.storyboard import StoryboardListItem, StoryboardRecord
from storyboard_api.services.memory_store import InMemoryStoryboardStore

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """어느 저장소에 기록되었는지"""
    backend: Literal["primary", "fallback"]
    error: Optional[str] = None


class PersistenceAdapter:
    """primary → fallback 순서로 쓰는 저장 어댑터"""

    def __init__(self, primary, fallback: Optional[InMemoryStoryboardStore] = None):
        self.primary = primary
        self.fallback = fallback if fallback is not None else InMemoryStoryboardStore()
        self._fallback_ids: Set[uuid.UUID] = set()

    def owned_by_fallback(self, storyboard_id: uuid.UUID) -> bool:
        return storyboard_id in self._fallback_ids

    def _degrade(self, record: StoryboardRecord, action: str, error: Exception) -> WriteResult:
        """primary 쓰기 실패: 현재 스냅샷 전체를 fallback에 기록하고 이후 소유권을 넘긴다"""
        logger.warning(f"영구 저장소 {action} 실패, 메모리 저장소로 대체 (storyboard={record.id}): {error}")
        try:
            self.fallback.put(record)
        except Exception as e:
            raise PersistenceError(f"대체 저장소 기록 실패 (storyboard={record.id}): {e}") from e
        self._fallback_ids.add(record.id)
        return WriteResult(backend="fallback", error=str(error))

    async def create(self, record: StoryboardRecord) -> WriteResult:
        """스토리보드 생성 기록"""
        try:
            await self.primary.create_storyboard(record)
        except Exception as e:
            return self._degrade(record, "생성", e)
        return WriteResult(backend="primary")

    async def update_scene(self, record: StoryboardRecord, index: int) -> WriteResult:
        """record의 index 장면 하나를 기록 (record는 호출측이 보유한 최신 스냅샷)"""
        scene = record.scene(index)
        if self.owned_by_fallback(record.id):
            await self.fallback.update_scene(record.id, scene)
            return WriteResult(backend="fallback")
        try:
            await self.primary.update_scene(record.id, scene)
        except StoryboardNotFound:
            raise
        except Exception as e:
            return self._degrade(record, f"장면 {index} 갱신", e)
        return WriteResult(backend="primary")

    async def update_status(self, record: StoryboardRecord) -> WriteResult:
        """스토리보드 상태 기록"""
        if self.owned_by_fallback(record.id):
            await self.fallback.update_status(record.id, record.status, record.error_message)
            return WriteResult(backend="fallback")
        try:
            await self.primary.update_status(record.id, record.status, record.error_message)
        except StoryboardNotFound:
            raise
        except Exception as e:
            return self._degrade(record, "상태 갱신", e)
        return WriteResult(backend="primary")

    async def get(self, storyboard_id: uuid.UUID) -> StoryboardRecord:
        """스토리보드 조회 (없으면 StoryboardNotFound)"""
        if self.owned_by_fallback(storyboard_id):
            return await self.fallback.get_storyboard(storyboard_id)
        try:
            return await self.primary.get_storyboard(storyboard_id)
        except StoryboardNotFound:
            raise
        except Exception as e:
            logger.error(f"영구 저장소 조회 실패 (storyboard={storyboard_id}): {e}")
            raise PersistenceError(f"스토리보드 조회 실패: {e}") from e

    async def list(
        self,
        owner_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[StoryboardListItem], int]:
        """소유자별 목록 (primary + fallback 병합, 최신순)"""
        # 병합 후 페이지를 자르기 위해 양쪽 모두 offset+limit까지 가져온다
        window = offset + limit
        fb_items, fb_total = await self.fallback.list_storyboards(owner_id, limit=window, offset=0)
        try:
            db_items, db_total = await self.primary.list_storyboards(owner_id, limit=window, offset=0)
        except Exception as e:
            logger.warning(f"영구 저장소 목록 조회 실패, 메모리 저장소만 사용 (owner={owner_id}): {e}")
            db_items, db_total = [], 0

        fb_ids = {item.id for item in fb_items}
        db_only = [item for item in db_items if item.id not in fb_ids]
        merged = fb_items + db_only
        merged.sort(key=lambda item: item.created_at.timestamp() if item.created_at else 0.0, reverse=True)
        # primary에 생성된 뒤 fallback으로 넘어간 항목은 한 번만 센다
        overlap = len(db_items) - len(db_only)
        return merged[offset:offset + limit], db_total + fb_total - overlap

    async def delete(self, storyboard_id: uuid.UUID) -> bool:
        """스토리보드 삭제 (원자적 단건 삭제)"""
        if self.owned_by_fallback(storyboard_id):
            deleted = await self.fallback.delete_storyboard(storyboard_id)
            self._fallback_ids.discard(storyboard_id)
            return deleted
        try:
            return await self.primary.delete_storyboard(storyboard_id)
        except Exception as e:
            logger.error(f"영구 저장소 삭제 실패 (storyboard={storyboard_id}): {e}")
            raise PersistenceError(f"스토리보드 삭제 실패: {e}") from e
