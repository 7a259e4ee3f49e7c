"""
스토리보드 영구 저장소 (SQLAlchemy 비동기)
쓰기마다 세션 하나를 열고 커밋한다. 장면은 별도 행이라 서로 다른 장면 갱신이 충돌하지 않는다.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import async_sessionmaker

from storyboard_api.core.errors import StoryboardNotFound
from storyboard_api.models import Storyboard, StoryboardScene
from storyboard_api.schemas.storyboard import (
    CharacterReference,
    SceneRecord,
    StoryboardListItem,
    StoryboardRecord,
)

logger = logging.getLogger(__name__)


def _to_record(storyboard: Storyboard) -> StoryboardRecord:
    character = None
    if isinstance(storyboard.character, dict):
        character = CharacterReference.model_validate(storyboard.character)
    return StoryboardRecord(
        id=storyboard.id,
        owner_id=storyboard.owner_id,
        title=storyboard.title or "",
        original_text=storyboard.original_text,
        character_persona=storyboard.character_persona or "",
        character=character,
        visual_style=storyboard.visual_style,
        color_theme=storyboard.color_theme,
        scene_count=storyboard.scene_count or 0,
        status=storyboard.status,
        error_message=storyboard.error_message,
        scenes=[
            SceneRecord(
                index=s.scene_index,
                section_title=s.section_title or "",
                text=s.text or "",
                image_prompt=s.image_prompt or "",
                image_url=s.image_url,
                status=s.status,
            )
            for s in sorted(storyboard.scenes, key=lambda s: s.scene_index)
        ],
        created_at=storyboard.created_at,
        updated_at=storyboard.updated_at,
    )


class StoryboardRepository:
    """스토리보드 DB 저장소"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_storyboard(self, record: StoryboardRecord) -> uuid.UUID:
        async with self.session_factory() as session:
            storyboard = Storyboard(
                id=record.id,
                owner_id=record.owner_id,
                title=record.title,
                original_text=record.original_text,
                character_persona=record.character_persona,
                character=record.character.model_dump() if record.character else None,
                visual_style=record.visual_style,
                color_theme=record.color_theme,
                scene_count=record.scene_count,
                status=record.status,
                error_message=record.error_message,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
            storyboard.scenes = [
                StoryboardScene(
                    scene_index=s.index,
                    section_title=s.section_title,
                    text=s.text,
                    image_prompt=s.image_prompt,
                    image_url=s.image_url,
                    status=s.status,
                )
                for s in record.scenes
            ]
            session.add(storyboard)
            await session.commit()
        return record.id

    async def update_scene(self, storyboard_id: uuid.UUID, scene: SceneRecord) -> None:
        """장면 한 개 갱신 (image_url과 image_prompt는 항상 함께 기록)"""
        async with self.session_factory() as session:
            result = await session.execute(
                update(StoryboardScene)
                .where(
                    StoryboardScene.storyboard_id == storyboard_id,
                    StoryboardScene.scene_index == scene.index,
                )
                .values(
                    section_title=scene.section_title,
                    text=scene.text,
                    image_prompt=scene.image_prompt,
                    image_url=scene.image_url,
                    status=scene.status,
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                raise StoryboardNotFound(f"장면을 찾을 수 없습니다: {storyboard_id}#{scene.index}")
            await session.commit()

    async def update_status(
        self,
        storyboard_id: uuid.UUID,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(Storyboard)
                .where(Storyboard.id == storyboard_id)
                .values(status=status, error_message=error_message)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise StoryboardNotFound(f"스토리보드를 찾을 수 없습니다: {storyboard_id}")
            await session.commit()

    async def get_storyboard(self, storyboard_id: uuid.UUID) -> StoryboardRecord:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Storyboard).where(Storyboard.id == storyboard_id)
            )
            storyboard = result.scalar_one_or_none()
            if storyboard is None:
                raise StoryboardNotFound(f"스토리보드를 찾을 수 없습니다: {storyboard_id}")
            return _to_record(storyboard)

    async def list_storyboards(
        self,
        owner_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[StoryboardListItem], int]:
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Storyboard).where(Storyboard.owner_id == owner_id)
            )
            result = await session.execute(
                select(Storyboard)
                .where(Storyboard.owner_id == owner_id)
                .order_by(Storyboard.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            items = [list_item(_to_record(sb)) for sb in result.scalars().all()]
        return items, int(total or 0)

    async def delete_storyboard(self, storyboard_id: uuid.UUID) -> bool:
        async with self.session_factory() as session:
            storyboard = await session.get(Storyboard, storyboard_id)
            if storyboard is None:
                return False
            # 장면은 relationship cascade로 함께 삭제
            await session.delete(storyboard)
            await session.commit()
        return True


def list_item(record: StoryboardRecord) -> StoryboardListItem:
    """목록 항목 변환 (첫 번째 생성 이미지를 커버로 사용)"""
    cover = next((s.image_url for s in record.scenes if s.image_url), None)
    return StoryboardListItem(
        id=record.id,
        title=record.title,
        status=record.status,
        visual_style=record.visual_style,
        scene_count=record.scene_count,
        cover_url=cover,
        created_at=record.created_at,
    )
