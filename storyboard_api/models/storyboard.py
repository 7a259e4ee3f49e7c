"""
스토리보드 모델
"""

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
import uuid

from storyboard_api.core.database import Base, UUID, JSON


class Storyboard(Base):
    """스토리보드 모델"""
    __tablename__ = "storyboards"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False, default="")
    original_text = Column(Text, nullable=False)
    character_persona = Column(Text, default="")
    character = Column(JSON, nullable=True)  # 선택된 캐릭터 참조 (재생성 시 재사용)
    visual_style = Column(String(30), nullable=False, default="realistic")
    color_theme = Column(String(30), nullable=False, default="modern")
    scene_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="processing", index=True)  # processing, completed, failed
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # 관계 설정
    scenes = relationship(
        "StoryboardScene",
        back_populates="storyboard",
        cascade="all, delete-orphan",
        order_by="StoryboardScene.scene_index",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Storyboard(id={self.id}, title={self.title}, status={self.status})>"


class StoryboardScene(Base):
    """스토리보드 장면 (장면별 행으로 저장해 동시 업데이트 충돌 방지)"""
    __tablename__ = "storyboard_scenes"

    storyboard_id = Column(UUID(), ForeignKey("storyboards.id", ondelete="CASCADE"), primary_key=True)
    scene_index = Column(Integer, primary_key=True)
    section_title = Column(String(200), default="")
    text = Column(Text, default="")
    image_prompt = Column(Text, default="")
    image_url = Column(String(1000), nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, generating, done, failed
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    storyboard = relationship("Storyboard", back_populates="scenes")

    def __repr__(self):
        return f"<StoryboardScene(storyboard_id={self.storyboard_id}, index={self.scene_index}, status={self.status})>"
