"""
장면 이미지 생성 단계
장면 하나에 대해 프롬프트 합성 → 이미지 생성(제한된 재시도) → 즉시 저장을 수행한다
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Literal, Optional

from storyboard_api.core.config import settings
from storyboard_api.core.errors import PersistenceError, ProviderError, RateLimitExceeded, StoryboardNotFound
from storyboard_api.core.retry import call_with_retry
from storyboard_api.schemas.storyboard import StoryboardRecord
from storyboard_api.services.image_client import ImageResult
from storyboard_api.services.persistence import PersistenceAdapter
from storyboard_api.services.prompt_synthesizer import (
    PromptSynthesizer,
    ScenePrompt,
    extract_character_reference,
    should_maintain_clothing,
)
from storyboard_api.services.storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class SceneOutcome:
    """장면 생성 결과"""
    index: int
    status: Literal["done", "failed"]
    image_url: Optional[str] = None
    error: Optional[str] = None


def _is_retryable(error: Exception) -> bool:
    # 할당량 소진은 재시도해도 소용없음
    return not (isinstance(error, ProviderError) and error.rate_limited)


class ImageGenerationStage:
    """장면별 이미지 생성기"""

    def __init__(
        self,
        image_client,
        persistence: PersistenceAdapter,
        synthesizer: Optional[PromptSynthesizer] = None,
        storage: Optional[Storage] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.image_client = image_client
        self.persistence = persistence
        self.synthesizer = synthesizer or PromptSynthesizer()
        self.storage = storage
        self.max_retries = settings.IMAGE_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.IMAGE_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    def build_prompt(self, record: StoryboardRecord, index: int) -> ScenePrompt:
        """저장된 장면 프롬프트 + 스토리보드 스타일/캐릭터로 최종 프롬프트 합성"""
        scene = record.scene(index)
        character_ref = extract_character_reference(record.character_persona, record.character)
        return self.synthesizer.build(
            scene.image_prompt,
            visual_style=record.visual_style,
            color_theme=record.color_theme,
            character_ref=character_ref,
            maintain_clothing=should_maintain_clothing(scene.image_prompt),
            # 선택된 캐릭터가 있을 때만 장면을 캐릭터 중심으로 재구성
            character_name=record.character.name if record.character else None,
            has_reference_image=bool(self.reference_images(record)),
        )

    @staticmethod
    def reference_images(record: StoryboardRecord) -> List[str]:
        if record.character and record.character.reference_image_url:
            return [record.character.reference_image_url]
        return []

    async def generate_scene(self, record: StoryboardRecord, index: int) -> SceneOutcome:
        """
        장면 하나의 이미지를 생성하고 결과를 즉시 저장

        Args:
            record: 호출측이 보유한 스토리보드 스냅샷 (해당 장면만 수정됨)
            index: 장면 인덱스

        Returns:
            SceneOutcome: done 또는 failed (재시도 소진)

        Raises:
            RateLimitExceeded: 제공자 할당량 소진. 남은 장면 생성을 중단해야 함
        """
        scene = record.scene(index)
        scene.status = "generating"

        prompt = self.build_prompt(record, index)
        references = self.reference_images(record)
        logger.debug(f"[{record.id}#{index}] enhanced prompt ({len(prompt.enhanced)}자): {prompt.enhanced}")

        async def _attempt() -> str:
            result = await self.image_client.generate_image(
                prompt.enhanced,
                negative_prompt=prompt.negative,
                reference_image_urls=references,
            )
            return await self._durable_url(result, record, index)

        try:
            image_url = await call_with_retry(
                _attempt,
                max_attempts=self.max_retries + 1,
                delay=self.retry_delay,
                is_retryable=_is_retryable,
            )
        except asyncio.CancelledError:
            # 진행 중 취소: 아직 결과가 없으므로 대기 상태로 되돌림
            scene.status = "pending"
            raise
        except Exception as e:
            # 기존 이미지가 있으면(재생성 실패) 그대로 둔다
            scene.status = "done" if scene.image_url else "failed"
            await self.persist_scene(record, index)
            if not _is_retryable(e):
                logger.warning(f"[{record.id}#{index}] 이미지 제공자 할당량 초과, 남은 장면 생성 중단: {e}")
                raise RateLimitExceeded(index, cause=e) from e
            logger.error(f"[{record.id}#{index}] 이미지 생성 실패 (재시도 {self.max_retries}회 소진): {e}")
            return SceneOutcome(index=index, status="failed", image_url=scene.image_url, error=str(e))

        # image_url은 이 image_prompt로 만든 것: 둘을 한 번에 기록
        scene.image_url = image_url
        scene.status = "done"
        await self.persist_scene(record, index)
        logger.info(f"[{record.id}#{index}] 이미지 생성 완료")
        return SceneOutcome(index=index, status="done", image_url=image_url)

    async def _durable_url(self, result: ImageResult, record: StoryboardRecord, index: int) -> str:
        """바이트 결과는 스토리지에 올려 영구 URL로 바꾼다"""
        if result.image_bytes is not None:
            if self.storage is None:
                raise RuntimeError("이미지 바이트를 저장할 스토리지가 설정되지 않았습니다")
            return await asyncio.to_thread(
                self.storage.save_bytes,
                result.image_bytes,
                content_type=result.content_type,
                key_hint=f"scene_{index}.png" if result.content_type == "image/png" else None,
                prefix=f"storyboards/{record.id}",
            )
        if not result.image_url:
            raise RuntimeError("이미지 결과에 URL/데이터가 없습니다")
        return result.image_url

    async def persist_scene(self, record: StoryboardRecord, index: int) -> None:
        try:
            await self.persistence.update_scene(record, index)
        except StoryboardNotFound:
            # 생성 도중 삭제된 스토리보드
            logger.warning(f"[{record.id}#{index}] 스토리보드가 삭제되어 장면을 저장하지 않습니다")
        except PersistenceError as e:
            # 메모리상의 결과는 유지 (호출측 스냅샷)
            logger.error(f"[{record.id}#{index}] 장면 저장 실패: {e}")
