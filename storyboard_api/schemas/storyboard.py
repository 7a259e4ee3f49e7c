"""
스토리보드 관련 Pydantic 스키마
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from typing import Optional, List, Literal
from datetime import datetime
import uuid

from storyboard_api.core.config import settings


VisualStyle = Literal["realistic", "cinematic", "sketch", "comic", "watercolor", "vector", "minimalist", "illustrated"]
ColorTheme = Literal["modern", "vintage", "vibrant", "monochrome", "pastel", "earth"]

SceneStatus = Literal["pending", "generating", "done", "failed"]
StoryboardStatus = Literal["processing", "completed", "failed"]


class CharacterReference(BaseModel):
    """선택된 캐릭터 (장면 간 외형 일관성 기준)"""
    name: str = Field(..., min_length=1, max_length=100)
    appearance: Optional[str] = Field(None, max_length=1000)
    personality: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    reference_image_url: Optional[str] = Field(None, max_length=1000)


class StoryboardCreate(BaseModel):
    """스토리보드 생성 요청"""
    text: str = Field(..., min_length=1, max_length=20000)
    visual_style: VisualStyle = "realistic"
    color_theme: ColorTheme = "modern"
    scene_count: int = Field(default_factory=lambda: settings.DEFAULT_SCENE_COUNT, ge=1)
    character: Optional[CharacterReference] = None
    brand_personality: Optional[str] = Field(None, max_length=200)
    target_audience: Optional[str] = Field(None, max_length=200)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("본문이 비어 있습니다")
        return v

    @field_validator("scene_count")
    @classmethod
    def _scene_count_limit(cls, v: int) -> int:
        if v > settings.MAX_SCENE_COUNT:
            raise ValueError(f"장면 수는 최대 {settings.MAX_SCENE_COUNT}개까지 가능합니다")
        return v


class SceneRegenerateRequest(BaseModel):
    """장면 이미지 재생성 요청 (prompt_override가 없으면 저장된 프롬프트 재사용)"""
    prompt_override: Optional[str] = Field(None, max_length=2000)

    @field_validator("prompt_override")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SceneTextUpdate(BaseModel):
    """장면 텍스트 수동 수정"""
    section_title: Optional[str] = Field(None, max_length=200)
    text: Optional[str] = Field(None, max_length=5000)

    @model_validator(mode="after")
    def _at_least_one(self):
        if self.section_title is None and self.text is None:
            raise ValueError("section_title 또는 text 중 하나는 필요합니다")
        return self


class SceneRecord(BaseModel):
    """장면 스냅샷"""
    model_config = ConfigDict(from_attributes=True)

    index: int = Field(..., ge=0)
    section_title: str = ""
    text: str = ""
    image_prompt: str = ""
    image_url: Optional[str] = None
    status: SceneStatus = "pending"


class StoryboardRecord(BaseModel):
    """스토리보드 스냅샷 (영구 저장소/메모리 저장소 공통 표현)"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    owner_id: str
    title: str = ""
    original_text: str
    character_persona: str = ""
    character: Optional[CharacterReference] = None
    visual_style: str = "realistic"
    color_theme: str = "modern"
    scene_count: int = 0
    status: StoryboardStatus = "processing"
    error_message: Optional[str] = None
    scenes: List[SceneRecord] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def scene(self, index: int) -> SceneRecord:
        for s in self.scenes:
            if s.index == index:
                return s
        raise IndexError(index)


class StoryboardListItem(BaseModel):
    """스토리보드 목록 항목 (가벼운 필드만)"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    status: StoryboardStatus
    visual_style: str
    scene_count: int
    cover_url: Optional[str] = None
    created_at: Optional[datetime] = None


class StoryboardListResponse(BaseModel):
    """스토리보드 목록 응답"""
    items: List[StoryboardListItem]
    total: int
