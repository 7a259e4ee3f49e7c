"""
스토리보드 파이프라인 예외 정의
"""

from typing import Optional


class StoryboardError(Exception):
    """스토리보드 기본 예외"""
    pass


class StoryboardValidationError(StoryboardError):
    """입력 검증 실패 (과금 전에 거부)"""
    pass


class StoryboardNotFound(StoryboardError):
    """스토리보드 없음"""
    pass


class StoryboardAccessDenied(StoryboardError):
    """소유자가 아닌 사용자의 접근"""
    pass


class InsufficientCredits(StoryboardError):
    """크레딧 부족"""

    def __init__(self, balance: int, cost: int):
        self.balance = balance
        self.cost = cost
        super().__init__(f"크레딧이 부족합니다 (잔액 {balance}, 필요 {cost})")


class ProviderError(StoryboardError):
    """외부 AI 제공자 오류"""

    def __init__(self, message: str, *, rate_limited: bool = False, status: Optional[int] = None):
        self.rate_limited = rate_limited
        self.status = status
        super().__init__(message)


class TextProviderError(ProviderError):
    """텍스트(LLM) 제공자 오류"""
    pass


class ImageProviderError(ProviderError):
    """이미지 제공자 오류"""
    pass


class RateLimitExceeded(StoryboardError):
    """제공자 할당량 소진: 남은 장면 생성을 중단"""

    def __init__(self, scene_index: int, cause: Optional[BaseException] = None):
        self.scene_index = scene_index
        self.cause = cause
        super().__init__(f"이미지 제공자 할당량 초과 (scene {scene_index})")


class PersistenceError(StoryboardError):
    """영구 저장소 쓰기 실패"""
    pass
