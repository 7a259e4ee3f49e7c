"""
장면별 이미지 생성 프롬프트 합성기
장면 설명 + 스타일/색감 + 캐릭터 참조로 강화 프롬프트와 네거티브 프롬프트를 만든다
"""
import logging
import re
from typing import List, Optional
from dataclasses import dataclass

from storyboard_api.core.config import settings
from storyboard_api.schemas.storyboard import CharacterReference

logger = logging.getLogger(__name__)


@dataclass
class ScenePrompt:
    """장면 프롬프트"""
    enhanced: str  # 이미지 제공자에 보내는 최종 프롬프트
    negative: str  # 네거티브 프롬프트


# 의상 변경 허용 판단용 키워드 (소문자 부분 문자열 매칭)
CLOTHING_CHANGE_PHRASES = [
    "change clothes", "different outfit", "new clothes",
    "wearing different", "changed outfit", "switched clothes",
]
DAY_KEYWORDS = ["day", "morning", "afternoon", "dawn", "sunrise", "daylight", "sunny day"]
NIGHT_KEYWORDS = ["night", "evening", "dusk", "sunset", "midnight", "dark", "nighttime", "late night"]
TIME_TRANSITION_PHRASES = ["next day", "following day", "later that day", "the next morning", "that evening"]
SETTING_CHANGE_PHRASES = [
    "different location", "new setting", "another place", "different venue",
    "indoor", "outdoor", "inside", "outside", "at home", "at office",
    "at work", "at event", "at party", "formal event", "casual setting",
]


# 장면 성격 (캐릭터 이름을 장면 앞에 붙이는 방식 결정)
ACTION_WORDS = ["action", "moving", "running"]
DIALOG_WORDS = ["speaking", "talking", "conversation"]
EMOTION_WORDS = ["sad", "happy", "angry"]

# 활동별 자연스러운 카메라 구도 (앞에서부터 먼저 맞는 것 사용)
ACTIVITY_COMPOSITIONS = [
    (
        re.compile(r"\b(cod(e|ing)|programming|typing|laptop|computer|keyboard|screen|writ(e|ing)|document|paper|note)\b"),
        "over-the-shoulder view or side profile showing the person engaged with the laptop/screen, "
        "NOT facing camera directly",
    ),
    (
        re.compile(r"\b(read(ing)?|book|newspaper|magazine)\b"),
        "side view or 3/4 angle showing person focused on reading material, natural reading posture",
    ),
    (
        re.compile(r"\b(eat(ing)?|meal|food|dinner|lunch|breakfast|drink(ing)?|coffee|tea|water|beverage)\b"),
        "natural eating/drinking posture, can be front view or side angle",
    ),
    (
        re.compile(r"\b(talk(ing)?|speak(ing)?|conversation|discuss|phone|call)\b"),
        "facing camera or another person, engaged in conversation, natural speaking posture",
    ),
    (
        re.compile(r"\b(walk(ing)?|stroll|stride|step|run(ning)?|jog(ging)?|sprint)\b"),
        "dynamic movement captured from side or 3/4 angle, showing motion and direction",
    ),
    (
        re.compile(r"\b(think(ing)?|contemplat(e|ing)|ponder|reflect)\b"),
        "contemplative pose, profile or 3/4 view, thoughtful expression",
    ),
]


def activity_composition(text: Optional[str]) -> str:
    """장면 속 활동에 맞는 카메라 구도 (해당 없으면 빈 문자열)"""
    words = (text or "").lower()
    for pattern, composition in ACTIVITY_COMPOSITIONS:
        if pattern.search(words):
            return composition
    return ""


def focus_scene_on_character(scene: str, name: str) -> str:
    """장면 설명 맨 앞에 캐릭터를 세운다

    이미 이름이 등장하면 강조만 붙이고, 아니면 장면 성격(액션/대화/감정)에 맞춰 이름을 넣는다.
    """
    words = scene.lower()
    if name.lower() in words:
        return f"PRIMARY FOCUS: {scene}"
    if any(k in words for k in ACTION_WORDS):
        return f"{name} is the main subject actively {scene}"
    if any(k in words for k in DIALOG_WORDS):
        return f"{name} prominently featured {scene}"
    if any(k in words for k in EMOTION_WORDS):
        return f"Close focus on {name} as protagonist: {scene}"
    return f"{name} as central character in scene: {scene}"


def should_maintain_clothing(text: Optional[str]) -> bool:
    """장면 텍스트로 의상 유지 여부 판단 (True면 같은 옷 유지)

    의상 변경은 다음 중 하나일 때만 허용:
    - 명시적 의상 변경 문구
    - 시간 경과 문구 ("next day" 등)
    - 낮/밤 표현이 함께 등장
    - 장소 변경 문구 + 시간 표현
    """
    words = (text or "").lower()

    explicit = any(k in words for k in CLOTHING_CHANGE_PHRASES)
    has_day = any(k in words for k in DAY_KEYWORDS)
    has_night = any(k in words for k in NIGHT_KEYWORDS)
    has_transition = any(k in words for k in TIME_TRANSITION_PHRASES)
    has_setting = any(k in words for k in SETTING_CHANGE_PHRASES)

    allow_change = (
        explicit
        or has_transition
        or (has_day and has_night)
        or (has_setting and (has_day or has_night or has_transition))
    )
    return not allow_change


def extract_character_reference(persona: Optional[str], character: Optional[CharacterReference] = None) -> str:
    """캐릭터 참조 문자열 추출

    선택된 캐릭터가 있으면 그 정보를 우선 사용(최대 200자),
    없으면 페르소나에서 `**` 마커가 있는 캐릭터 줄만 모은다(최대 150자).
    """
    if character is not None:
        reference = character.name
        if character.appearance:
            reference += f", {character.appearance}"
        if character.personality:
            reference += f", {character.personality}"
        if character.description:
            reference += f". {character.description}"
        return reference[:200]

    if not persona or not isinstance(persona, str):
        return ""

    reference = ""
    for line in persona.split("\n"):
        if not line.strip():
            continue
        if "**" in line and ("character" in line.lower() or ":" in line):
            info = line.replace("**", "").strip()
            if len(reference) + len(info) < 120:
                reference += info + ". "
    return reference.strip()[:150]


def truncate_at_word(text: str, limit: int) -> str:
    """limit 이하로 자르되 단어 중간에서 끊지 않는다

    첫 단어부터 limit를 넘으면 빈 문자열을 돌려준다 (호출측이 기본 문구로 대체).
    """
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    if limit <= 0:
        return ""
    cut = text[:limit]
    # 잘린 지점 바로 뒤가 공백이면 마지막 단어가 온전함
    if text[limit].isspace():
        return cut.rstrip()
    space = max(cut.rfind(" "), cut.rfind("\n"), cut.rfind("\t"))
    if space <= 0:
        # 너무 긴 첫 토큰은 조각내지 않고 버린다
        return ""
    return cut[:space].rstrip()


class PromptSynthesizer:
    """장면 프롬프트 합성기"""

    PREFIX = "Professional cinematic storyboard frame:"

    # 색감 → 조명
    LIGHTING_BY_THEME = {
        "modern": "natural",
        "vibrant": "dramatic",
        "monochrome": "dramatic",
        "vintage": "golden",
        "pastel": "soft",
        "warm": "golden",
        "cool": "natural",
        "muted": "soft",
    }

    LIGHTING_STYLES = {
        "dramatic": "dramatic lighting, high contrast, chiaroscuro",
        "soft": "soft diffused lighting, even illumination",
        "natural": "natural daylight, realistic shadows",
        "cinematic": "cinematic lighting, three-point lighting setup",
        "golden": "golden hour lighting, warm tones",
    }

    # 스타일 → (기술 묘사, 분위기)
    STYLE_ENHANCEMENTS = {
        "realistic": ("photorealistic, natural lighting, accurate proportions", "authentic, lifelike, believable"),
        "cinematic": ("film grain, anamorphic lens, color grading", "dramatic, epic, movie-like atmosphere"),
        "sketch": ("pencil sketch, loose linework, cross-hatching", "raw, expressive, hand-drawn feel"),
        "comic": ("comic book art, bold ink outlines, halftone shading", "dynamic, punchy, graphic storytelling"),
        "watercolor": ("watercolor painting, soft washes, paper texture", "gentle, dreamy, painterly"),
        "vector": ("flat vector illustration, clean shapes, crisp edges", "clear, modern, graphic"),
        "minimalist": ("minimalist composition, negative space, simple forms", "calm, focused, uncluttered"),
        "illustrated": ("digital illustration, detailed rendering, rich colors", "storybook, imaginative, polished"),
    }

    QUALITY_MODIFIERS = "8K resolution, professional photography, cinematic lighting"
    QUALITY_ENHANCERS = "masterpiece, best quality"

    BASE_NEGATIVES = [
        "blurry", "low quality", "distorted faces", "extra limbs",
        "text overlays", "watermarks", "text", "words", "letters",
        "captions", "subtitles", "labels", "scene markers", "metadata text",
        "timestamp", "duplicate subjects", "cropped faces",
    ]
    STORYBOARD_NEGATIVES = ["inconsistent style", "poor composition"]
    CHARACTER_DRIFT_NEGATIVES = [
        "different face", "different facial structure", "different eyes", "different nose",
        "different hair", "different hair color", "different hair length", "different hairstyle",
        "changing appearance", "inconsistent clothing", "multiple characters with same face",
        "face swap", "identity change", "appearance inconsistency", "character variation",
        "different person", "altered features", "wrong character", "character replacement",
        "face morphing", "inconsistent facial features", "different body type",
        "different body proportions", "different height", "different build",
        "wrong hairstyle", "no character visible", "character missing",
        "character hidden", "character out of frame",
    ]

    DEFAULT_SCENE = "detailed professional scene"

    def __init__(
        self,
        max_length: Optional[int] = None,
        description_budget: Optional[int] = None,
    ):
        self.max_length = max_length or settings.PROMPT_MAX_LENGTH
        self.description_budget = description_budget or settings.SCENE_DESCRIPTION_BUDGET

    def build(
        self,
        scene_prompt: Optional[str],
        visual_style: Optional[str] = "realistic",
        color_theme: Optional[str] = "modern",
        character_ref: Optional[str] = None,
        maintain_clothing: bool = True,
        character_name: Optional[str] = None,
        has_reference_image: bool = False,
    ) -> ScenePrompt:
        """
        장면 설명으로부터 프롬프트 생성

        Args:
            scene_prompt: 장면의 기본 프롬프트
            visual_style: 시각 스타일 (모르는 값이면 realistic)
            color_theme: 색감 테마 (조명 선택에 사용)
            character_ref: 캐릭터 참조 문자열 (없으면 캐릭터 조항 생략)
            maintain_clothing: 의상 유지 여부
            character_name: 선택된 캐릭터 이름 (있으면 장면 앞에 캐릭터를 세우고 활동별 구도 추가)
            has_reference_image: 캐릭터 참조 이미지 여부 (있으면 참조 이미지 기준 조항 사용)

        Returns:
            ScenePrompt: 강화 프롬프트 + 네거티브 프롬프트
        """
        character_ref = (character_ref or "").strip()
        character_name = (character_name or "").strip() if character_ref else ""
        try:
            scene = (scene_prompt or "").strip() or self.DEFAULT_SCENE
            suffix_parts = self._suffix_parts(
                visual_style, color_theme, character_ref, maintain_clothing, has_reference_image
            )
            if character_name:
                suffix_parts = self._character_focus_parts(scene, character_name) + suffix_parts
                scene = focus_scene_on_character(scene, character_name)

            # 고정 부분 길이를 먼저 계산하고 남는 만큼만 장면 설명에 배정
            fixed_length = len(self.PREFIX) + 1 + sum(len(p) + 2 for p in suffix_parts)
            budget = min(self.description_budget, self.max_length - fixed_length)
            description = (
                truncate_at_word(scene, budget).rstrip(".")
                or truncate_at_word(self.DEFAULT_SCENE, budget)
            )

            enhanced = f"{self.PREFIX} {description}"
            for part in suffix_parts:
                enhanced += f". {part}"

            return ScenePrompt(
                enhanced=enhanced,
                negative=self.build_negative(has_character=bool(character_ref)),
            )
        except Exception as e:
            logger.error(f"Prompt building failed: {e}")
            return self._fallback_prompt(scene_prompt, bool(character_ref))

    def _suffix_parts(
        self,
        visual_style: Optional[str],
        color_theme: Optional[str],
        character_ref: str,
        maintain_clothing: bool,
        has_reference_image: bool = False,
    ) -> List[str]:
        """장면 설명 뒤에 붙는 고정 조항들 (순서 유지)"""
        parts: List[str] = []

        if character_ref:
            if has_reference_image:
                parts.append(self._reference_image_clause(character_ref, maintain_clothing))
            else:
                parts.append(self._character_clause(character_ref, maintain_clothing))
            parts.append("medium shot focusing on character, character-centric composition")
        else:
            parts.append("medium shot, rule of thirds")

        parts.append(self.lighting_for(color_theme))

        technical, mood = self.STYLE_ENHANCEMENTS.get(
            (visual_style or "").strip().lower(), self.STYLE_ENHANCEMENTS["realistic"]
        )
        parts.append(technical)
        parts.append(mood)

        if character_ref:
            parts.append(self._consistency_rules(maintain_clothing))

        parts.append(self.QUALITY_MODIFIERS)
        parts.append(self.QUALITY_ENHANCERS)
        return parts

    def _character_clause(self, character_ref: str, maintain_clothing: bool) -> str:
        clause = (
            f"MAIN CHARACTER (REQUIRED IN FRAME): {character_ref}. "
            "ABSOLUTE REQUIREMENT: the character MUST be clearly visible and centrally framed, "
            "with exactly the same facial features, hairstyle and body proportions as in every other scene"
        )
        if maintain_clothing:
            clause += ", wearing the same clothing/outfit"
        else:
            clause += ". Clothing may vary with the day/setting change, but face, hair and physique stay identical"
        clause += ". A frame without this character is a violation"
        return clause

    def _reference_image_clause(self, character_ref: str, maintain_clothing: bool) -> str:
        # 참조 이미지가 함께 전달될 때: 외형 기준을 그 이미지로 고정
        clause = (
            f"MAIN CHARACTER (REQUIRED IN FRAME): {character_ref}. "
            "ABSOLUTE REQUIREMENT: the character MUST be visible and prominently featured, "
            "EXACT same facial features as the reference image (zero deviation), "
            "IDENTICAL hair style and color, SAME body proportions and build"
        )
        if maintain_clothing:
            clause += ", same clothing style as reference image"
        else:
            clause += ". Clothing may vary with the day/setting change, but face, hair and physique stay identical"
        clause += ". Zero deviation from the reference appearance"
        return clause

    @staticmethod
    def _character_focus_parts(scene: str, character_name: str) -> List[str]:
        """캐릭터 가시성 지시 + 활동별 카메라 구도"""
        parts = [f"{character_name} must be clearly visible, in focus, and prominently placed in the composition"]
        composition = activity_composition(scene)
        if composition:
            parts.append(
                f"Camera angle: {composition}. Realistic and natural body positioning appropriate for the activity"
            )
        return parts

    def _consistency_rules(self, maintain_clothing: bool) -> str:
        rules = "CONSISTENCY RULES: same person, identical face, same hairstyle, same proportions"
        if maintain_clothing:
            rules += ", same outfit"
        return rules

    def lighting_for(self, color_theme: Optional[str]) -> str:
        key = self.LIGHTING_BY_THEME.get((color_theme or "").strip().lower(), "natural")
        return self.LIGHTING_STYLES[key]

    def build_negative(self, has_character: bool = False) -> str:
        """네거티브 프롬프트 생성 (캐릭터가 있을 때만 외형 변화 금지 목록 추가)"""
        negatives = self.BASE_NEGATIVES + self.STORYBOARD_NEGATIVES
        if has_character:
            negatives = negatives + self.CHARACTER_DRIFT_NEGATIVES
        return ", ".join(negatives)

    def _fallback_prompt(self, scene_prompt: Optional[str], has_character: bool) -> ScenePrompt:
        """폴백 프롬프트"""
        simple = truncate_at_word(str(scene_prompt or ""), self.description_budget) or self.DEFAULT_SCENE
        return ScenePrompt(
            enhanced=f"{self.PREFIX} {simple}. {self.QUALITY_ENHANCERS}",
            negative=self.build_negative(has_character=has_character),
        )
