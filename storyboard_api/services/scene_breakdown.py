"""
장면 분해 단계
원문 텍스트를 LLM 한 번 호출로 제목/캐릭터 페르소나/K개 장면으로 나눈다
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from storyboard_api.core.errors import ProviderError
from storyboard_api.schemas.storyboard import CharacterReference

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass
class SceneStub:
    """이미지 생성 전 장면 초안"""
    section_title: str
    text: str
    image_prompt: str


@dataclass
class BreakdownResult:
    """장면 분해 결과"""
    title: str
    character_persona: str
    scenes: List[SceneStub] = field(default_factory=list)
    is_placeholder: bool = False


@dataclass
class ParsedBreakdown:
    """응답에서 JSON을 정상적으로 읽은 경우"""
    result: BreakdownResult


@dataclass
class PlaceholderBreakdown:
    """응답을 읽지 못해 기본 장면으로 대체한 경우"""
    result: BreakdownResult
    reason: str


DecodedBreakdown = Union[ParsedBreakdown, PlaceholderBreakdown]


def placeholder_breakdown() -> BreakdownResult:
    """응답 해석 실패 시 사용하는 단일 장면 기본값"""
    return BreakdownResult(
        title="Generated Story",
        character_persona="A determined protagonist",
        scenes=[SceneStub(
            section_title="Opening Scene",
            text="The story begins with an intriguing setup.",
            image_prompt="A compelling opening scene with dramatic lighting and engaging composition",
        )],
        is_placeholder=True,
    )


def placeholder_scene(number: int) -> SceneStub:
    """부족한 장면을 채우는 자리표시 장면 (number는 1부터)"""
    return SceneStub(
        section_title=f"Scene {number}",
        text=f"Scene {number}: Additional scene to complete the story.",
        image_prompt=f"Scene {number} of the story, continuing the narrative.",
    )


def normalize_scene_count(scenes: List[SceneStub], scene_count: int) -> List[SceneStub]:
    """장면 수를 정확히 scene_count로 맞춘다 (초과분은 버리고 부족분은 채움)"""
    normalized = list(scenes[:scene_count])
    while len(normalized) < scene_count:
        normalized.append(placeholder_scene(len(normalized) + 1))
    return normalized


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def decode_breakdown(content: Optional[str]) -> DecodedBreakdown:
    """LLM 응답 텍스트에서 장면 분해 JSON을 읽는다. 실패해도 예외 없이 PlaceholderBreakdown"""
    match = _JSON_BLOCK.search(content or "")
    if not match:
        return PlaceholderBreakdown(placeholder_breakdown(), "응답에 JSON 블록이 없습니다")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return PlaceholderBreakdown(placeholder_breakdown(), f"JSON 파싱 실패: {e}")

    if not isinstance(data, dict):
        return PlaceholderBreakdown(placeholder_breakdown(), "JSON 최상위가 객체가 아닙니다")

    parts = data.get("storyboard_parts")
    if parts is None:
        parts = data.get("scenes")
    if not isinstance(parts, list):
        return PlaceholderBreakdown(placeholder_breakdown(), "storyboard_parts 배열이 없습니다")

    scenes: List[SceneStub] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        scenes.append(SceneStub(
            section_title=_as_text(part.get("section_title")),
            text=_as_text(part.get("text")),
            image_prompt=_as_text(part.get("image_prompt")),
        ))

    return ParsedBreakdown(BreakdownResult(
        title=_as_text(data.get("title")) or "Untitled Story",
        character_persona=_as_text(data.get("character_persona")),
        scenes=scenes,
    ))


def build_breakdown_prompt(
    raw_text: str,
    style_prefs: Dict[str, Any],
    scene_count: int,
    character: Optional[CharacterReference] = None,
) -> str:
    """장면 분해 지시문 생성"""
    visual_style = style_prefs.get("visual_style") or "realistic"
    color_theme = style_prefs.get("color_theme") or "modern"
    brand_personality = style_prefs.get("brand_personality") or ""
    target_audience = style_prefs.get("target_audience") or ""

    if character is not None:
        name = character.name
        character_instruction = f"""
MANDATORY CHARACTER REQUIREMENT
Selected Character: {name}
Physical Description: {character.appearance or 'Consistent visual identity required'}
Personality: {character.personality or 'professional'}

Rules:
1. {name} MUST be the primary subject in ALL {scene_count} scenes.
2. {name} MUST be visible, in focus and prominently placed in EVERY image_prompt.
3. Every image_prompt MUST start with "{name} as the main character" followed by the scene description.
4. {name} must keep an identical appearance across all {scene_count} scenes.
A storyboard with any scene that leaves out {name} is INVALID.
"""
    else:
        character_instruction = (
            "Create detailed character descriptions if characters exist, "
            "and ensure character consistency across all scenes."
        )

    return f"""
Analyze this story and create exactly {scene_count} compelling visual scenes that tell the complete story.

{character_instruction}

Brand Preferences:
- Visual Style: {visual_style}
- Color Theme: {color_theme}
- Brand Personality: {brand_personality}
- Target Audience: {target_audience}

For each scene, provide:
1. text: 2-3 sentences describing what happens in this scene
2. section_title: Short engaging title (3-5 words)
3. image_prompt: Detailed visual description for image generation

Character Consistency: describe recurring characters identically in every scene and summarize them in character_persona.

Return ONLY JSON in this format, with exactly {scene_count} items in storyboard_parts:
{{
  "title": "Story Title",
  "character_persona": "Description of main characters for consistency",
  "storyboard_parts": [
    {{
      "section_title": "Scene Title",
      "text": "Scene description",
      "image_prompt": "Detailed prompt for image generation"
    }}
  ]
}}

Story: {raw_text}
"""


class SceneBreakdownStage:
    """장면 분해 단계 (재시도 없음, 실패 시 기본 장면으로 대체)"""

    def __init__(self, provider):
        self.provider = provider

    async def breakdown(
        self,
        raw_text: str,
        style_prefs: Optional[Dict[str, Any]],
        scene_count: int,
        character: Optional[CharacterReference] = None,
    ) -> BreakdownResult:
        """
        원문을 정확히 scene_count개의 장면으로 분해

        Args:
            raw_text: 원문 이야기
            style_prefs: visual_style / color_theme / brand_personality / target_audience
            scene_count: 장면 수 K
            character: 선택된 캐릭터 (있으면 모든 장면에 등장하도록 지시)

        Returns:
            BreakdownResult: scenes 길이는 항상 scene_count
        """
        if scene_count < 1:
            raise ValueError("scene_count는 1 이상이어야 합니다")

        prompt = build_breakdown_prompt(raw_text, style_prefs or {}, scene_count, character)

        try:
            content = await self.provider.generate_scenes(prompt)
        except ProviderError as e:
            logger.warning(f"장면 분해 제공자 오류, 기본 장면으로 대체: {e}")
            decoded: DecodedBreakdown = PlaceholderBreakdown(placeholder_breakdown(), str(e))
        else:
            logger.debug(f"장면 분해 응답 길이: {len(content or '')}")
            decoded = decode_breakdown(content)

        if isinstance(decoded, PlaceholderBreakdown):
            logger.warning(f"장면 분해 응답을 해석하지 못했습니다: {decoded.reason}")

        result = decoded.result
        received = len(result.scenes)
        result.scenes = normalize_scene_count(result.scenes, scene_count)
        if received != scene_count:
            logger.info(f"장면 수 보정: {received} -> {scene_count}")
        return result
