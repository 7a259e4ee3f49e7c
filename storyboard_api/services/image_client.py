"""
이미지 생성 API 클라이언트
fal.run 플랫폼의 ByteDance Seedream v4 모델 REST 래퍼
"""
import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import List, Optional

import aiohttp

from storyboard_api.core.config import settings
from storyboard_api.core.errors import ImageProviderError

logger = logging.getLogger(__name__)


@dataclass
class ImageResult:
    """이미지 생성 결과 (URL 또는 바이트 중 하나 이상)"""
    prompt: str
    image_url: Optional[str] = None
    image_bytes: Optional[bytes] = None
    content_type: str = "image/png"


class FalImageClient:
    """Seedream v4 REST 클라이언트 (재시도는 호출측에서 처리)"""

    TEXT_TO_IMAGE_URL = "https://fal.run/fal-ai/bytedance/seedream/v4/text-to-image"
    # 참조 이미지가 있으면 edit 엔드포인트로 외형 일관성 유지
    EDIT_URL = "https://fal.run/fal-ai/bytedance/seedream/v4/edit"

    # 호출 한도/크레딧 소진/계정 잠금: 재시도해도 소용없음
    RATE_LIMIT_STATUSES = (402, 403, 429)

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        ratio: Optional[str] = None,
        sync_mode: bool = True,
    ):
        self.api_key = api_key or settings.FAL_KEY
        if not self.api_key:
            raise ValueError("FAL_KEY environment variable or api_key parameter required")
        self.timeout = timeout or settings.IMAGE_TIMEOUT_SECONDS
        self.ratio = ratio or settings.IMAGE_RATIO
        self.sync_mode = sync_mode

        self.headers = {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def generate_image(
        self,
        prompt: str,
        negative_prompt: Optional[str] = None,
        reference_image_urls: Optional[List[str]] = None,
    ) -> ImageResult:
        """단일 이미지 생성. 실패는 ImageProviderError (rate_limited=True면 재시도 금지)"""
        merged_prompt = self._merge_prompt(prompt, negative_prompt)
        references = [u for u in (reference_image_urls or []) if u]
        url = self.EDIT_URL if references else self.TEXT_TO_IMAGE_URL

        payload = self._payload(merged_prompt, references)

        async with aiohttp.ClientSession() as session:
            try:
                return await self._post(session, url, payload, merged_prompt, allow_sanitize=True)
            except asyncio.TimeoutError:
                logger.debug("Seedream request timeout")
                raise FalTimeoutError(f"Request timeout after {self.timeout}s")
            except aiohttp.ClientError as e:
                logger.debug(f"Seedream connection error: {e}")
                raise FalConnectionError(f"Connection failed: {e}")

    def _payload(self, merged_prompt: str, references: List[str]) -> dict:
        width, height = self.get_size_for_ratio(self.ratio)
        payload = {
            "prompt": merged_prompt,
            "image_size": {"width": width, "height": height},
            "num_images": 1,
            "enable_safety_checker": True,
            "sync_mode": self.sync_mode,
        }
        if references:
            payload["image_urls"] = references
        return payload

    async def _post(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: dict,
        merged_prompt: str,
        allow_sanitize: bool,
    ) -> ImageResult:
        async with session.post(
            url,
            headers=self.headers,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        ) as resp:
            if resp.status >= 400:
                error_text = await resp.text()
                # INFO 최소화: 상세는 DEBUG
                logger.debug(f"Seedream API error {resp.status}: {error_text}")
                if resp.status in self.RATE_LIMIT_STATUSES:
                    raise FalQuotaError(f"API quota exceeded ({resp.status})", status=resp.status)
                # 422(policy) 한정 1회 정제 재요청
                if resp.status == 422 and allow_sanitize:
                    cleaned = self._soft_sanitize_prompt(merged_prompt)
                    if cleaned and cleaned != merged_prompt:
                        retry_payload = dict(payload, prompt=cleaned)
                        return await self._post(session, url, retry_payload, cleaned, allow_sanitize=False)
                raise FalAPIError(f"API error {resp.status}: {error_text}", status=resp.status)

            data = await resp.json()

        body = data.get("data") if isinstance(data, dict) and "data" in data else data
        images = (body or {}).get("images", []) if isinstance(body, dict) else []
        if not images or not isinstance(images[0], dict) or not images[0].get("url"):
            raise FalAPIError("Seedream 응답에 이미지가 없습니다")

        image_data = images[0]
        result = ImageResult(
            prompt=merged_prompt,
            content_type=image_data.get("content_type") or "image/png",
        )
        raw_url = image_data["url"]
        if raw_url.startswith("data:"):
            result.image_bytes, result.content_type = self._decode_data_uri(raw_url)
        else:
            result.image_url = raw_url
        return result

    def get_size_for_ratio(self, ratio: str) -> tuple[int, int]:
        """비율에 맞는 이미지 크기 반환(width, height)"""
        size_map: dict[str, tuple[int, int]] = {
            "1:1": (1024, 1024),
            "3:4": (768, 1024),
            "4:3": (1024, 768),
            "16:9": (1280, 720),
            "9:16": (720, 1280),
            "2:3": (682, 1024),
        }
        return size_map.get(ratio, (1024, 1024))

    def _merge_prompt(self, positive: str, negative: Optional[str]) -> str:
        """엔드포인트 스키마에 negative_prompt가 없으므로 프롬프트에 병합"""
        pos = (positive or "").strip()
        neg = (negative or "").strip()
        if not neg:
            return pos
        return f"{pos}, without: {neg}"

    def _soft_sanitize_prompt(self, merged_prompt: str) -> str:
        """422(policy) 대비 약한 정제: 금칙 가능성이 높은 강한 토큰만 정리"""
        p = merged_prompt
        for bad in ["ABSOLUTE REQUIREMENT:", "violation", "face swap", "identity change"]:
            p = p.replace(bad, "")
        # 쉼표 중복 정리
        while ", ," in p:
            p = p.replace(", ,", ",")
        return p.strip(", ")

    @staticmethod
    def _decode_data_uri(data_uri: str) -> tuple[bytes, str]:
        """data:image/png;base64,... → (바이트, content_type)"""
        header, _, encoded = data_uri.partition(",")
        content_type = header[5:].split(";", 1)[0] or "image/png"
        try:
            return base64.b64decode(encoded), content_type
        except (binascii.Error, ValueError) as e:
            raise FalAPIError(f"이미지 데이터 디코딩 실패: {e}")


# 커스텀 예외 클래스들
class FalAPIError(ImageProviderError):
    """API 응답 에러"""
    pass


class FalQuotaError(ImageProviderError):
    """할당량 초과/크레딧 소진"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, rate_limited=True, status=status)


class FalTimeoutError(ImageProviderError):
    """타임아웃"""
    pass


class FalConnectionError(ImageProviderError):
    """연결 실패"""
    pass
