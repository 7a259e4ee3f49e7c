"""
Pydantic 스키마 패키지
"""

from .storyboard import (
    VisualStyle,
    ColorTheme,
    CharacterReference,
    StoryboardCreate,
    SceneRegenerateRequest,
    SceneTextUpdate,
    SceneRecord,
    StoryboardRecord,
    StoryboardListItem,
    StoryboardListResponse,
)
from .credit import EntitlementDecision, CreditStatusResponse

__all__ = [
    "VisualStyle",
    "ColorTheme",
    "CharacterReference",
    "StoryboardCreate",
    "SceneRegenerateRequest",
    "SceneTextUpdate",
    "SceneRecord",
    "StoryboardRecord",
    "StoryboardListItem",
    "StoryboardListResponse",
    "EntitlementDecision",
    "CreditStatusResponse",
]
