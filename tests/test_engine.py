"""Tests for engine assembly and the Gemini provider."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from autopilot.automations.engine import build_engine
from autopilot.core.config import Settings
from autopilot.integrations.generation import HTTPContentService, LLMContentService
from autopilot.llm.gemini import GeminiProvider


class TestBuildEngine:
    """Tests for build_engine."""

    @pytest.mark.asyncio
    async def test_minimal_configuration(self, tmp_path, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
        settings = Settings(database_path=str(tmp_path / "autopilot.db"))

        engine = build_engine(settings)

        assert engine.scheduler is None
        assert engine.orchestrator.content_service is None
        assert engine.orchestrator.image_service is None
        assert engine.orchestrator.publish_service is None
        assert engine.orchestrator.research is None
        summary = await engine.processor.process()
        assert summary.processed == 0
        await engine.close()

    @pytest.mark.asyncio
    async def test_configured_services(self, tmp_path):
        settings = Settings(
            database_path=str(tmp_path / "autopilot.db"),
            content_service_url="https://agents.test/content",
            image_service_url="https://images.test/generate",
            publish_service_url="https://publisher.test/post",
            scheduler_enabled=True,
            scheduler_interval_seconds=30,
        )

        engine = build_engine(settings)

        assert isinstance(engine.orchestrator.content_service, HTTPContentService)
        assert engine.orchestrator.image_service is not None
        assert engine.orchestrator.publish_service is not None
        assert engine.scheduler.interval_seconds == 30
        await engine.close()

    @pytest.mark.asyncio
    async def test_gemini_when_api_key_present(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
        settings = Settings(database_path=str(tmp_path / "autopilot.db"))

        with patch("autopilot.llm.gemini.genai"):
            engine = build_engine(settings)

        assert isinstance(engine.orchestrator.content_service, LLMContentService)
        await engine.close()


class TestGeminiProvider:
    """Tests for GeminiProvider."""

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="Google API key required"):
            GeminiProvider()

    @pytest.mark.asyncio
    async def test_generate(self):
        response = MagicMock()
        response.text = "Generated post"
        response.usage_metadata.prompt_token_count = 20
        response.usage_metadata.candidates_token_count = 5
        response.candidates[0].finish_reason.name = "STOP"

        with patch("autopilot.llm.gemini.genai") as mock_genai:
            mock_genai.GenerativeModel.return_value.generate_content_async = AsyncMock(
                return_value=response
            )
            provider = GeminiProvider(api_key="test-key", default_model="flash")

            result = await provider.generate("Write a post", system_prompt="Be brief")

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        mock_genai.GenerativeModel.assert_called_once_with(
            "gemini-2.5-flash", system_instruction="Be brief"
        )
        assert result.content == "Generated post"
        assert result.model == "gemini-2.5-flash"
        assert result.input_tokens == 20
        assert result.output_tokens == 5
        assert result.finish_reason == "STOP"
