"""
LLM Providers — which chat models may answer, in what order.

  1. OpenAI        settings.llm_model               (primary, always registered)
  2. Azure OpenAI  settings.azure_openai_deployment (fallback, only when an
                                                     endpoint is configured)

Every provider is built with the same generation settings so a failover never
changes answer style:

  temperature  0.3     top_p  0.8     max_tokens  8000

Adding a provider:
  Append a ProviderSpec in registered_providers() and a builder branch in
  build_chat_model().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from docpipe.core.config import settings

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    OPENAI       = "openai"
    AZURE_OPENAI = "azure_openai"


@dataclass(frozen=True)
class ProviderSpec:
    """One model/provider combination the fallback chain may try."""
    provider: Provider
    model_id: str           # model name (OpenAI) or deployment name (Azure)


def registered_providers() -> list[ProviderSpec]:
    """Providers in failover order, filtered to what is configured."""
    specs = [ProviderSpec(provider=Provider.OPENAI, model_id=settings.llm_model)]
    if settings.azure_openai_endpoint and settings.azure_openai_api_key:
        specs.append(
            ProviderSpec(provider=Provider.AZURE_OPENAI, model_id=settings.azure_openai_deployment)
        )
    return specs


def build_chat_model(spec: ProviderSpec) -> BaseChatModel:
    """Instantiate the LangChain chat model for a ProviderSpec."""
    if spec.provider == Provider.OPENAI:
        return ChatOpenAI(
            model=spec.model_id,
            api_key=settings.openai_api_key,
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    if spec.provider == Provider.AZURE_OPENAI:
        return AzureChatOpenAI(
            azure_deployment=spec.model_id,
            azure_endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,
            api_version=settings.azure_openai_api_version,
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds,
        )

    raise ValueError(f"Unsupported provider: {spec.provider}")   # pragma: no cover
