"""
LLM Gateway Package

Provider-agnostic answer generation over LangChain chat models:
  - OpenAI        (primary)
  - Azure OpenAI  (failover target, when configured)

Public API::

    from docpipe.llm import LLMGateway

    gateway  = LLMGateway()
    response = await gateway.invoke(prompt_messages)
"""

from docpipe.llm.fallback import FallbackChain
from docpipe.llm.gateway import GatewayResponse, LLMGateway
from docpipe.llm.providers import Provider, ProviderSpec

__all__ = [
    "FallbackChain",
    "GatewayResponse",
    "LLMGateway",
    "Provider",
    "ProviderSpec",
]
