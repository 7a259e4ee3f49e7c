"""
텍스트 생성(LLM) 서비스
Gemini / Claude / OpenAI 호출을 하나의 진입점으로 묶는다
"""

import asyncio
import logging
from typing import Literal, Optional

import anthropic  # Claude API 라이브러리
import google.generativeai as genai
from openai import AsyncOpenAI

from storyboard_api.core.config import settings
from storyboard_api.core.errors import TextProviderError

logger = logging.getLogger(__name__)

# 모델 상수
GEMINI_MODEL_PRIMARY = 'gemini-2.5-pro'
CLAUDE_MODEL_PRIMARY = 'claude-sonnet-4-20250514'
GPT_MODEL_PRIMARY = 'gpt-4o'

if settings.GEMINI_API_KEY:
    genai.configure(api_key=settings.GEMINI_API_KEY)

_claude_client: Optional[anthropic.AsyncAnthropic] = None
_openai_client: Optional[AsyncOpenAI] = None


def _get_claude_client() -> anthropic.AsyncAnthropic:
    # 키 없이 생성하면 예외가 나므로 첫 호출 시점에 생성
    global _claude_client
    if _claude_client is None:
        _claude_client = anthropic.AsyncAnthropic(api_key=settings.CLAUDE_API_KEY)
    return _claude_client


def _get_openai_client() -> AsyncOpenAI:
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _openai_client


async def get_gemini_completion(prompt: str, temperature: float = 0.7, max_tokens: int = 2048, model: str = GEMINI_MODEL_PRIMARY) -> str:
    """
    주어진 프롬프트로 Google Gemini 모델을 호출하여 응답을 반환합니다.

    Args:
        prompt: AI 모델에게 전달할 프롬프트 문자열.
        temperature: 응답의 창의성 수준 (0.0 ~ 1.0).
        max_tokens: 최대 토큰 수.

    Returns:
        AI 모델이 생성한 텍스트 응답.
    """
    try:
        gemini_model = genai.GenerativeModel(model)
        generation_config = genai.types.GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        response = await gemini_model.generate_content_async(
            prompt,
            generation_config=generation_config,
        )
    except Exception as e:
        logger.error(f"Gemini API 호출 중 오류 발생: {e} (프롬프트 길이: {len(prompt)} 문자)")
        raise TextProviderError(f"Gemini API 호출에 실패했습니다: {e}") from e

    # 안전한 텍스트 추출: 차단되었거나 text가 비어있을 수 있음
    try:
        if getattr(response, 'text', None):
            return response.text
    except ValueError:
        # 차단된 응답은 .text 접근 시 ValueError
        pass

    for cand in getattr(response, 'candidates', []) or []:
        content = getattr(cand, 'content', None)
        if not content:
            continue
        parts = getattr(content, 'parts', []) or []
        joined = "".join(getattr(p, 'text', '') for p in parts if getattr(p, 'text', '')).strip()
        if joined:
            return joined

    raise TextProviderError("Gemini 응답에 텍스트가 없습니다 (안전 정책 차단 가능)")


async def get_claude_completion(
    prompt: str,
    temperature: float = 0.7,
    max_tokens: int = 2048,
    model: str = CLAUDE_MODEL_PRIMARY,
) -> str:
    """
    주어진 프롬프트로 Anthropic Claude 모델을 호출하여 응답을 반환합니다.
    """
    try:
        message = await _get_claude_client().messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
    except anthropic.RateLimitError as e:
        raise TextProviderError(f"Claude 호출 한도 초과: {e}", rate_limited=True, status=429) from e
    except Exception as e:
        logger.error(f"Claude API 호출 중 오류 발생: {e}")
        raise TextProviderError(f"Claude API 호출에 실패했습니다: {e}") from e

    texts = [getattr(block, "text", "") for block in (message.content or [])]
    text = "".join(t for t in texts if t)
    if not text:
        raise TextProviderError("Claude 응답에 텍스트가 없습니다")
    return text


async def get_openai_completion(
    prompt: str,
    temperature: float = 0.7,
    max_tokens: int = 2048,
    model: str = GPT_MODEL_PRIMARY,
) -> str:
    """
    주어진 프롬프트로 OpenAI 모델을 호출하여 응답을 반환합니다.
    """
    try:
        response = await _get_openai_client().chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except Exception as e:
        logger.error(f"OpenAI API 호출 중 오류 발생: {e}")
        raise TextProviderError(f"OpenAI API 호출에 실패했습니다: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise TextProviderError("OpenAI 응답에 텍스트가 없습니다")
    return content


# --- 통합 AI 응답 함수 ---
AIModel = Literal["gemini", "claude", "gpt"]


async def get_ai_completion(
    prompt: str,
    model: AIModel = "gemini",
    sub_model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: int = 2048,
) -> str:
    """
    지정된 AI 모델을 호출하여 응답을 반환하는 통합 함수입니다.
    """
    if model == "gemini":
        return await get_gemini_completion(prompt, temperature, max_tokens, model=sub_model or GEMINI_MODEL_PRIMARY)
    elif model == "claude":
        return await get_claude_completion(prompt, temperature, max_tokens, model=sub_model or CLAUDE_MODEL_PRIMARY)
    elif model == "gpt":
        return await get_openai_completion(prompt, temperature, max_tokens, model=sub_model or GPT_MODEL_PRIMARY)
    else:
        raise ValueError(f"지원하지 않는 모델입니다: {model}")


class LLMSceneProvider:
    """장면 분해용 텍스트 생성 제공자 (타임아웃 포함 단일 호출)"""

    def __init__(
        self,
        model: Optional[str] = None,
        sub_model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ):
        self.model = model or settings.TEXT_MODEL
        self.sub_model = sub_model if sub_model is not None else settings.TEXT_SUB_MODEL
        self.timeout = timeout or settings.TEXT_TIMEOUT_SECONDS
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def generate_scenes(self, prompt: str) -> str:
        """프롬프트를 보내고 원문 응답을 반환. 실패/타임아웃은 TextProviderError"""
        try:
            return await asyncio.wait_for(
                get_ai_completion(
                    prompt,
                    model=self.model,
                    sub_model=self.sub_model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TextProviderError(f"{self.model} 응답 시간 초과 ({self.timeout}s)") from e
        except ValueError as e:
            raise TextProviderError(str(e)) from e
