"""
고정 간격 재시도 유틸 (backoff 기반)
이미지 생성 등 외부 제공자 호출에서 공통으로 사용
"""

import logging
from typing import Any, Awaitable, Callable, Tuple, Type

import backoff

logger = logging.getLogger(__name__)


def _log_retry(details: dict) -> None:
    target = getattr(details.get("target"), "__name__", "call")
    logger.warning(
        f"{target} 실패 ({details['tries']}회째), {details['wait']:.1f}초 후 재시도: {details.get('exception')}"
    )


def _log_giveup(details: dict) -> None:
    target = getattr(details.get("target"), "__name__", "call")
    logger.debug(f"{target} 재시도 중단 ({details['tries']}회 시도): {details.get('exception')}")


async def call_with_retry(
    func: Callable[[], Awaitable[Any]],
    *,
    max_attempts: int,
    delay: float,
    is_retryable: Callable[[Exception], bool] = lambda e: True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
) -> Any:
    """func를 최대 max_attempts회 호출. 실패 사이 delay초 고정 대기 (로그는 이 모듈 로거만 사용).

    func는 인자 없는 코루틴 함수여야 한다 (backoff가 async 여부로 sleep 방식을 고름).
    is_retryable이 False를 돌려주는 예외는 즉시 전파되고, 시도 횟수를 모두 쓰면 마지막 예외가 전파된다.
    """
    retrying = backoff.on_exception(
        backoff.constant,
        exceptions,
        max_tries=max(1, int(max_attempts)),
        giveup=lambda e: not is_retryable(e),
        on_backoff=_log_retry,
        on_giveup=_log_giveup,
        jitter=None,
        interval=max(0.0, float(delay)),
        logger=None,
    )(func)
    return await retrying()
