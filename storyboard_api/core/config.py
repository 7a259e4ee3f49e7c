"""
애플리케이션 설정
"""

from pydantic_settings import BaseSettings
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv


"""env 로딩 우선순위
1) OS 환경변수
2) 프로젝트 루트의 .env
"""

# .env 사전 로드 (OS 환경변수 우선, override=False)
_here = Path(__file__).resolve()
_repo_root_env = _here.parents[2] / ".env"
if _repo_root_env.exists():
    load_dotenv(dotenv_path=str(_repo_root_env), override=False)


class Settings(BaseSettings):
    """애플리케이션 설정"""
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # API 키 (없어도 부팅 가능하도록 Optional)
    GEMINI_API_KEY: str | None = None
    CLAUDE_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    FAL_KEY: Optional[str] = None

    DATABASE_URL: str = "sqlite+aiosqlite:///./data/storyboards.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # 텍스트(장면 분해) 모델
    TEXT_MODEL: str = "gemini"  # gemini | claude | gpt
    TEXT_SUB_MODEL: Optional[str] = None
    TEXT_TIMEOUT_SECONDS: float = 30.0
    IMAGE_TIMEOUT_SECONDS: float = 90.0

    # 과금 정책
    FREE_STORY_QUOTA: int = 2
    STORYBOARD_CREDIT_COST: int = 4
    CREDIT_STORE_BACKEND: str = "redis"  # redis | memory
    CREDIT_CACHE_TTL_SECONDS: int = 300

    # 장면 수
    DEFAULT_SCENE_COUNT: int = 4
    MAX_SCENE_COUNT: int = 8

    # 이미지 생성 재시도/동시성
    IMAGE_MAX_RETRIES: int = 2
    IMAGE_RETRY_DELAY_SECONDS: float = 2.0
    IMAGE_CONCURRENCY: int = 2
    IMAGE_RATIO: str = "16:9"

    # 프롬프트 길이
    PROMPT_MAX_LENGTH: int = 1800
    SCENE_DESCRIPTION_BUDGET: int = 400

    # 오브젝트 스토리지
    STORAGE_BACKEND: str = "local"  # local | s3

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()


# 환경별 설정 검증
def validate_settings():
    """설정 검증"""
    if settings.ENVIRONMENT == "production":
        if not settings.FAL_KEY:
            raise ValueError("프로덕션 환경에서는 FAL_KEY(이미지 생성 키)가 필요합니다.")

        if not (settings.GEMINI_API_KEY or settings.CLAUDE_API_KEY or settings.OPENAI_API_KEY):
            raise ValueError("AI API 키(GEMINI/CLAUDE/OPENAI) 중 최소 1개는 필요합니다.")

    if settings.IMAGE_CONCURRENCY < 1:
        raise ValueError("IMAGE_CONCURRENCY는 1 이상이어야 합니다.")

    return True


validate_settings()
