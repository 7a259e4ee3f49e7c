"""
프로세스 메모리 스토리보드 저장소
영구 저장소 장애 시 대체 저장소로 쓰이며, 프로세스 수명 동안만 유지된다.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from storyboard_api.core.errors import StoryboardNotFound
from storyboard_api.schemas.storyboard import SceneRecord, StoryboardListItem, StoryboardRecord
from storyboard_api.services.storyboard_repository import list_item


class InMemoryStoryboardStore:
    """메모리 저장소 (저장/조회 시 사본을 주고받아 외부 변경과 분리)"""

    def __init__(self):
        self._records: Dict[uuid.UUID, StoryboardRecord] = {}

    def __contains__(self, storyboard_id: uuid.UUID) -> bool:
        return storyboard_id in self._records

    def put(self, record: StoryboardRecord) -> None:
        """스냅샷 전체를 저장 (이미 있으면 교체)"""
        self._records[record.id] = record.model_copy(deep=True)

    async def create_storyboard(self, record: StoryboardRecord) -> uuid.UUID:
        self.put(record)
        return record.id

    def _get(self, storyboard_id: uuid.UUID) -> StoryboardRecord:
        record = self._records.get(storyboard_id)
        if record is None:
            raise StoryboardNotFound(f"스토리보드를 찾을 수 없습니다: {storyboard_id}")
        return record

    async def update_scene(self, storyboard_id: uuid.UUID, scene: SceneRecord) -> None:
        record = self._get(storyboard_id)
        for i, existing in enumerate(record.scenes):
            if existing.index == scene.index:
                record.scenes[i] = scene.model_copy()
                record.updated_at = datetime.now(timezone.utc)
                return
        raise StoryboardNotFound(f"장면을 찾을 수 없습니다: {storyboard_id}#{scene.index}")

    async def update_status(
        self,
        storyboard_id: uuid.UUID,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        record = self._get(storyboard_id)
        record.status = status
        record.error_message = error_message
        record.updated_at = datetime.now(timezone.utc)

    async def get_storyboard(self, storyboard_id: uuid.UUID) -> StoryboardRecord:
        return self._get(storyboard_id).model_copy(deep=True)

    async def list_storyboards(
        self,
        owner_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[StoryboardListItem], int]:
        owned = [r for r in self._records.values() if r.owner_id == owner_id]
        owned.sort(key=lambda r: r.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return [list_item(r) for r in owned[offset:offset + limit]], len(owned)

    async def delete_storyboard(self, storyboard_id: uuid.UUID) -> bool:
        return self._records.pop(storyboard_id, None) is not None
