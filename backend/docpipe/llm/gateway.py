"""
LLM Gateway — single call site for answer generation.

  ┌──────────────────────────────────────────────┐
  │  LLMGateway.invoke()                         │
  │       │                                      │
  │       ▼                                      │
  │  FallbackChain.ainvoke  ← provider failover  │
  │       │                                      │
  │       ▼                                      │
  │  usage accounting       ← provider counts,   │
  │       │                   else 4 chars/token │
  │       ▼                                      │
  │  GatewayResponse                             │
  └──────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from langchain_core.messages import BaseMessage

from docpipe.llm.fallback import FallbackChain

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token usage estimation (fallback when the provider reports none)
# ---------------------------------------------------------------------------

def _estimate_tokens(messages: list[BaseMessage]) -> int:
    """Rough token count: 4 chars ≈ 1 token (OpenAI heuristic)."""
    total_chars = sum(len(m.content) for m in messages if isinstance(m.content, str))
    return max(1, total_chars // 4)


# ---------------------------------------------------------------------------
# Response dataclass
# ---------------------------------------------------------------------------

@dataclass
class GatewayResponse:
    """The result of a single LLM gateway call."""
    content:       str
    model_used:    str
    provider:      str
    input_tokens:  int
    output_tokens: int
    latency_ms:    float
    request_id:    str

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# ---------------------------------------------------------------------------
# LLMGateway
# ---------------------------------------------------------------------------

class LLMGateway:
    """
    Provider-agnostic chat interface with fallback and usage accounting.

    Instantiate once per application; safe for concurrent use.
    """

    def __init__(self, chain: FallbackChain | None = None) -> None:
        self._chain = chain or FallbackChain()

    async def invoke(self, messages: list[BaseMessage]) -> GatewayResponse:
        """
        Generate one reply.

        Raises:
            AnswerGenerationError: no provider produced an answer.
        """
        t0 = time.perf_counter()
        spec, message = await self._chain.ainvoke(messages)
        latency = (time.perf_counter() - t0) * 1000

        content = message.content if isinstance(message.content, str) else str(message.content)

        usage = getattr(message, "usage_metadata", None)
        if usage:
            input_tokens  = int(usage.get("input_tokens", 0))
            output_tokens = int(usage.get("output_tokens", 0))
        else:
            input_tokens  = _estimate_tokens(messages)
            output_tokens = max(1, len(content) // 4)

        response = GatewayResponse(
            content       = content,
            model_used    = spec.model_id,
            provider      = spec.provider.value,
            input_tokens  = input_tokens,
            output_tokens = output_tokens,
            latency_ms    = latency,
            request_id    = str(uuid.uuid4()),
        )

        logger.info(
            "LLMGateway | model=%s provider=%s tokens_in=%d tokens_out=%d latency_ms=%.1f",
            response.model_used, response.provider,
            response.input_tokens, response.output_tokens, response.latency_ms,
        )
        return response
