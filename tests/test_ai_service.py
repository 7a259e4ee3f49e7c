"""
Tests for the scene breakdown text provider.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from storyboard_api.core.errors import TextProviderError
from storyboard_api.services import ai_service
from storyboard_api.services.ai_service import LLMSceneProvider


class TestLLMSceneProvider:
    """Tests for LLMSceneProvider.generate_scenes"""

    @pytest.mark.asyncio
    async def test_dispatches_to_selected_model(self, monkeypatch):
        claude = AsyncMock(return_value='{"title": "T"}')
        monkeypatch.setattr(ai_service, "get_claude_completion", claude)
        provider = LLMSceneProvider(model="claude", sub_model="claude-test", timeout=5)

        content = await provider.generate_scenes("break this story down")

        assert content == '{"title": "T"}'
        assert claude.await_args.args[0] == "break this story down"
        assert claude.await_args.kwargs["model"] == "claude-test"

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self, monkeypatch):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return "late"

        monkeypatch.setattr(ai_service, "get_ai_completion", slow)
        provider = LLMSceneProvider(model="gemini", timeout=0.01)

        with pytest.raises(TextProviderError):
            await provider.generate_scenes("story")

    @pytest.mark.asyncio
    async def test_unknown_model_becomes_provider_error(self):
        provider = LLMSceneProvider(model="llama", timeout=5)

        with pytest.raises(TextProviderError):
            await provider.generate_scenes("story")

    @pytest.mark.asyncio
    async def test_provider_errors_pass_through(self, monkeypatch):
        monkeypatch.setattr(
            ai_service,
            "get_gemini_completion",
            AsyncMock(side_effect=TextProviderError("quota", rate_limited=True)),
        )
        provider = LLMSceneProvider(model="gemini", timeout=5)

        with pytest.raises(TextProviderError) as exc_info:
            await provider.generate_scenes("story")
        assert exc_info.value.rate_limited
