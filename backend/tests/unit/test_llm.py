"""
Unit Tests — LLM Fallback Chain & Gateway
══════════════════════════════════════════
Tests for:
  • FallbackChain      — failover on transient errors, stop on permanent
                         ones, per-attempt timeout, circuit breaker
  • LLMGateway         — provider usage vs. estimated token accounting
  • registered_providers / build_chat_model — provider wiring from settings
  • QueryEmbedder      — error wrapping and dimension check

Chat models are MagicMocks handed out by an injected model_factory.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from docpipe.core.config import settings
from docpipe.core.exceptions import AnswerGenerationError, EmbeddingError
from docpipe.llm.fallback import FallbackChain, reset_circuits
from docpipe.llm.gateway import LLMGateway
from docpipe.llm.providers import Provider, ProviderSpec, build_chat_model, registered_providers
from docpipe.rag.embeddings import QueryEmbedder

PRIMARY   = ProviderSpec(provider=Provider.OPENAI, model_id="gpt-4o-mini")
SECONDARY = ProviderSpec(provider=Provider.AZURE_OPENAI, model_id="gpt-4o-mini-eu")
MESSAGES  = [SystemMessage(content="You are helpful."), HumanMessage(content="Hello there")]


class RateLimitError(Exception):
    """Named like openai.RateLimitError so the chain treats it as transient."""


class BadRequestError(Exception):
    pass


def _model(result=None, error: Exception | None = None):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=result, side_effect=error)
    return llm


@pytest.fixture(autouse=True)
def closed_circuits():
    reset_circuits()
    yield
    reset_circuits()


def _chain(models: dict[Provider, MagicMock], timeout: float = 5.0) -> FallbackChain:
    return FallbackChain(
        specs=[PRIMARY, SECONDARY],
        model_factory=lambda spec: models[spec.provider],
        per_attempt_timeout=timeout,
    )


# ─────────────────────────────────────────────────────────────────────────────
# FallbackChain
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.rag
class TestFallbackChain:

    async def test_primary_answers(self):
        primary = _model(AIMessage(content="hi"))
        secondary = _model(AIMessage(content="unused"))

        spec, message = await _chain({Provider.OPENAI: primary, Provider.AZURE_OPENAI: secondary}).ainvoke(MESSAGES)

        assert spec == PRIMARY
        assert message.content == "hi"
        secondary.ainvoke.assert_not_awaited()

    async def test_transient_error_fails_over(self):
        primary = _model(error=RateLimitError("429"))
        secondary = _model(AIMessage(content="from azure"))

        spec, message = await _chain({Provider.OPENAI: primary, Provider.AZURE_OPENAI: secondary}).ainvoke(MESSAGES)

        assert spec == SECONDARY
        assert message.content == "from azure"

    async def test_permanent_error_stops_chain(self):
        primary = _model(error=BadRequestError("context too long"))
        secondary = _model(AIMessage(content="unused"))

        with pytest.raises(AnswerGenerationError) as exc_info:
            await _chain({Provider.OPENAI: primary, Provider.AZURE_OPENAI: secondary}).ainvoke(MESSAGES)

        assert exc_info.value.status_code == 503
        secondary.ainvoke.assert_not_awaited()

    async def test_timeout_fails_over(self):
        async def _slow(messages):
            await asyncio.sleep(1)

        primary = MagicMock()
        primary.ainvoke = _slow
        secondary = _model(AIMessage(content="fast"))

        spec, _ = await _chain(
            {Provider.OPENAI: primary, Provider.AZURE_OPENAI: secondary}, timeout=0.01,
        ).ainvoke(MESSAGES)

        assert spec == SECONDARY

    async def test_all_providers_failing(self):
        models = {
            Provider.OPENAI:       _model(error=RateLimitError("429")),
            Provider.AZURE_OPENAI: _model(error=RateLimitError("429")),
        }

        with pytest.raises(AnswerGenerationError) as exc_info:
            await _chain(models).ainvoke(MESSAGES)

        assert len(exc_info.value.details["errors"]) == 2

    async def test_circuit_opens_after_repeated_failures(self):
        primary = _model(error=RateLimitError("429"))
        secondary = _model(AIMessage(content="ok"))
        chain = _chain({Provider.OPENAI: primary, Provider.AZURE_OPENAI: secondary})

        for _ in range(3):
            await chain.ainvoke(MESSAGES)
        await chain.ainvoke(MESSAGES)

        assert primary.ainvoke.await_count == 3     # fourth call skipped
        assert secondary.ainvoke.await_count == 4

    async def test_client_build_failure_fails_over(self):
        secondary = _model(AIMessage(content="from azure"))

        def _factory(spec):
            if spec.provider == Provider.OPENAI:
                raise ValueError("missing api key")
            return secondary

        chain = FallbackChain(specs=[PRIMARY, SECONDARY], model_factory=_factory)
        spec, message = await chain.ainvoke(MESSAGES)

        assert spec == SECONDARY
        assert message.content == "from azure"

    async def test_every_client_build_failing(self):
        def _factory(spec):
            raise ValueError("azure deployment not found")

        with pytest.raises(AnswerGenerationError) as exc_info:
            await FallbackChain(specs=[PRIMARY, SECONDARY], model_factory=_factory).ainvoke(MESSAGES)

        assert len(exc_info.value.details["errors"]) == 2
        assert "client build failed" in exc_info.value.details["errors"][0]

    async def test_empty_chain_fails(self):
        with pytest.raises(AnswerGenerationError):
            await FallbackChain(specs=[], model_factory=lambda s: None).ainvoke(MESSAGES)


# ─────────────────────────────────────────────────────────────────────────────
# LLMGateway
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.rag
class TestLLMGateway:

    async def test_provider_usage_is_reported(self):
        chain = MagicMock(spec=FallbackChain)
        chain.ainvoke = AsyncMock(return_value=(
            PRIMARY,
            AIMessage(
                content="answer",
                usage_metadata={"input_tokens": 120, "output_tokens": 30, "total_tokens": 150},
            ),
        ))

        result = await LLMGateway(chain).invoke(MESSAGES)

        assert result.content == "answer"
        assert result.model_used == "gpt-4o-mini"
        assert result.provider == "openai"
        assert (result.input_tokens, result.output_tokens, result.total_tokens) == (120, 30, 150)

    async def test_usage_estimated_when_missing(self):
        chain = MagicMock(spec=FallbackChain)
        chain.ainvoke = AsyncMock(return_value=(SECONDARY, AIMessage(content="x" * 40)))

        result = await LLMGateway(chain).invoke(MESSAGES)

        expected_in = (len("You are helpful.") + len("Hello there")) // 4
        assert result.input_tokens == expected_in
        assert result.output_tokens == 10
        assert result.provider == "azure_openai"


# ─────────────────────────────────────────────────────────────────────────────
# Provider wiring
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.rag
class TestProviders:

    def test_openai_only_by_default(self, monkeypatch):
        monkeypatch.setattr(settings, "azure_openai_endpoint", "")
        specs = registered_providers()
        assert [s.provider for s in specs] == [Provider.OPENAI]
        assert specs[0].model_id == settings.llm_model

    def test_azure_registered_when_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "azure_openai_endpoint", "https://example.openai.azure.com/")
        monkeypatch.setattr(settings, "azure_openai_api_key", "azure-key")
        specs = registered_providers()
        assert [s.provider for s in specs] == [Provider.OPENAI, Provider.AZURE_OPENAI]

    def test_openai_model_uses_generation_settings(self):
        llm = build_chat_model(PRIMARY)
        assert isinstance(llm, ChatOpenAI)
        assert llm.temperature == pytest.approx(0.3)
        assert llm.top_p == pytest.approx(0.8)
        assert llm.max_tokens == 8000

    def test_azure_model_built(self, monkeypatch):
        monkeypatch.setattr(settings, "azure_openai_endpoint", "https://example.openai.azure.com/")
        monkeypatch.setattr(settings, "azure_openai_api_key", "azure-key")
        assert isinstance(build_chat_model(SECONDARY), AzureChatOpenAI)


# ─────────────────────────────────────────────────────────────────────────────
# QueryEmbedder
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.rag
class TestQueryEmbedder:

    async def test_returns_vector(self):
        model = MagicMock()
        model.aembed_query = AsyncMock(return_value=[0.5] * 768)
        assert len(await QueryEmbedder(model).embed("question")) == 768

    async def test_provider_error_wrapped(self):
        model = MagicMock()
        model.aembed_query = AsyncMock(side_effect=RuntimeError("connection reset"))
        with pytest.raises(EmbeddingError, match="connection reset"):
            await QueryEmbedder(model).embed("question")

    async def test_wrong_dimensions_rejected(self):
        model = MagicMock()
        model.aembed_query = AsyncMock(return_value=[0.5] * 1536)
        with pytest.raises(EmbeddingError, match="1536"):
            await QueryEmbedder(model).embed("question")
