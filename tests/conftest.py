"""
Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

import os
import re
import json
import tempfile
from typing import Iterable, List, Optional

# 설정 모듈이 임포트되기 전에 테스트용 환경 지정
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CREDIT_STORE_BACKEND", "memory")
os.environ.setdefault("FAL_KEY", "test-fal-key")
os.environ.setdefault("UPLOAD_DIRECTORY", tempfile.mkdtemp(prefix="storyboard-uploads-"))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession

from storyboard_api.core.database import Base
from storyboard_api.core.errors import ImageProviderError
from storyboard_api.services.entitlement_service import EntitlementGate, InMemoryCreditStore
from storyboard_api.services.image_client import ImageResult
from storyboard_api.services.image_stage import ImageGenerationStage
from storyboard_api.services.memory_store import InMemoryStoryboardStore
from storyboard_api.services.persistence import PersistenceAdapter
from storyboard_api.services.prompt_synthesizer import PromptSynthesizer
from storyboard_api.services.scene_breakdown import SceneBreakdownStage
from storyboard_api.services.storyboard_orchestrator import StoryboardOrchestrator
from storyboard_api.services.storyboard_repository import StoryboardRepository

_SCENE_MARKER = re.compile(r"SCENE-(\d+)")


def breakdown_json(count: int, title: str = "Robot Painter") -> str:
    """LLM 응답 형태의 장면 분해 JSON (장면 프롬프트에 SCENE-i 표식 포함)"""
    return json.dumps({
        "title": title,
        "character_persona": "**Main character:** a small silver robot with round blue eyes",
        "storyboard_parts": [
            {
                "section_title": f"Part {i}",
                "text": f"The robot practices painting, step {i}.",
                "image_prompt": f"SCENE-{i} a small robot holding a paintbrush in a studio",
            }
            for i in range(count)
        ],
    })


class FakeSceneProvider:
    """고정 응답을 돌려주는 텍스트 제공자"""

    def __init__(self, response: Optional[str] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    async def generate_scenes(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


class FakeImageClient:
    """프롬프트의 SCENE-i 표식으로 장면별 동작을 정하는 이미지 제공자"""

    def __init__(
        self,
        fail_scenes: Iterable[int] = (),
        rate_limit_scenes: Iterable[int] = (),
        flaky: Optional[dict] = None,
    ):
        self.fail_scenes = set(fail_scenes)
        self.rate_limit_scenes = set(rate_limit_scenes)
        # scene -> 실패 후 성공까지 남은 실패 횟수
        self.flaky = dict(flaky or {})
        self.calls: List[dict] = []

    @staticmethod
    def scene_of(prompt: str) -> int:
        match = _SCENE_MARKER.search(prompt)
        return int(match.group(1)) if match else -1

    async def generate_image(self, prompt, negative_prompt=None, reference_image_urls=None):
        scene = self.scene_of(prompt)
        self.calls.append({
            "scene": scene,
            "prompt": prompt,
            "negative_prompt": negative_prompt,
            "reference_image_urls": list(reference_image_urls or []),
        })
        if scene in self.rate_limit_scenes:
            raise ImageProviderError("quota exceeded", rate_limited=True, status=429)
        if scene in self.fail_scenes:
            raise ImageProviderError("upstream error", status=500)
        if self.flaky.get(scene, 0) > 0:
            self.flaky[scene] -= 1
            raise ImageProviderError("temporary error", status=503)
        return ImageResult(prompt=prompt, image_url=f"https://cdn.example.com/scene-{scene}-{len(self.calls)}.png")

    def attempts(self, scene: int) -> int:
        return sum(1 for c in self.calls if c["scene"] == scene)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """테스트별 SQLite 파일 (동시 세션이 각자 연결을 쓰도록 파일 DB 사용)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storyboards.db'}",
        connect_args={"timeout": 15},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def credit_store():
    return InMemoryCreditStore()


@pytest.fixture
def persistence(session_factory):
    return PersistenceAdapter(StoryboardRepository(session_factory), InMemoryStoryboardStore())


@pytest.fixture
def make_orchestrator(credit_store, persistence):
    """의존성을 바꿔 끼울 수 있는 오케스트레이터 팩토리"""

    def _make(
        scene_response: Optional[str] = None,
        image_client: Optional[FakeImageClient] = None,
        provider: Optional[FakeSceneProvider] = None,
        concurrency: int = 2,
        max_retries: int = 2,
        store: Optional[PersistenceAdapter] = None,
    ) -> StoryboardOrchestrator:
        adapter = store or persistence
        stage = ImageGenerationStage(
            image_client or FakeImageClient(),
            adapter,
            synthesizer=PromptSynthesizer(),
            max_retries=max_retries,
            retry_delay=0,
        )
        return StoryboardOrchestrator(
            gate=EntitlementGate(credit_store, free_quota=2),
            breakdown_stage=SceneBreakdownStage(provider or FakeSceneProvider(scene_response or breakdown_json(3))),
            image_stage=stage,
            persistence=adapter,
            concurrency=concurrency,
            credit_cost=4,
        )

    return _make
