"""
LLM Fallback Chain — Automatic Provider Failover

When the primary provider times out or returns a transient error (5xx, rate
limit, connection failure), the FallbackChain tries the next provider in
order until one answers or all are exhausted.

Retry policy:
  - Retryable:     RateLimitError, APITimeoutError, APIConnectionError,
                   InternalServerError, transport timeouts
  - Non-retryable: bad request, auth failure; the chain stops immediately
  - Per-attempt timeout: settings.llm_timeout_seconds

Every way the chain can end without an answer surfaces as
AnswerGenerationError, the one chat failure users ever see.

Circuit breaker pattern:
  A provider that fails OPEN_THRESHOLD times in a row is skipped for
  RESET_SECONDS so a dead endpoint does not add its timeout to every request.
  (Simple in-process counter, per worker process.)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage

from docpipe.core.config import settings
from docpipe.core.exceptions import AnswerGenerationError
from docpipe.llm.providers import Provider, ProviderSpec, build_chat_model, registered_providers

logger = logging.getLogger(__name__)

ModelFactory = Callable[[ProviderSpec], BaseChatModel]

# ---------------------------------------------------------------------------
# Retryable exception detection
# ---------------------------------------------------------------------------

_RETRYABLE_EXCEPTION_TYPES = (
    # openai
    "RateLimitError",
    "APITimeoutError",
    "APIConnectionError",
    "InternalServerError",
    # httpx / generic
    "ConnectTimeout",
    "ReadTimeout",
    "RemoteProtocolError",
)


def _is_retryable(exc: Exception) -> bool:
    """True if the exception class name suggests a transient provider error."""
    name = type(exc).__name__
    return any(name.endswith(r) for r in _RETRYABLE_EXCEPTION_TYPES)


# ---------------------------------------------------------------------------
# Circuit breaker (in-process)
# ---------------------------------------------------------------------------

@dataclass
class _CircuitState:
    failures:       int   = 0
    open_until:     float = 0.0        # monotonic time after which to retry
    OPEN_THRESHOLD: int   = 3
    RESET_SECONDS:  int   = 60


_CIRCUIT_STATES: dict[Provider, _CircuitState] = {
    p: _CircuitState() for p in Provider
}


def _is_circuit_open(provider: Provider) -> bool:
    state = _CIRCUIT_STATES[provider]
    if state.failures < state.OPEN_THRESHOLD:
        return False
    if time.monotonic() >= state.open_until:
        state.failures = 0     # half-open: let one request through
        return False
    return True


def _record_failure(provider: Provider) -> None:
    state = _CIRCUIT_STATES[provider]
    state.failures  += 1
    state.open_until = time.monotonic() + state.RESET_SECONDS
    logger.warning(
        "Circuit breaker | provider=%s failures=%d open_until=+%ds",
        provider.value, state.failures, state.RESET_SECONDS,
    )


def _record_success(provider: Provider) -> None:
    _CIRCUIT_STATES[provider].failures = 0


def reset_circuits() -> None:
    """Close every circuit. Used by tests and after a config reload."""
    for state in _CIRCUIT_STATES.values():
        state.failures   = 0
        state.open_until = 0.0


# ---------------------------------------------------------------------------
# FallbackChain
# ---------------------------------------------------------------------------

class FallbackChain:
    """
    Ordered chain of chat-model providers with automatic failover.

    Usage::

        chain = FallbackChain()
        spec, message = await chain.ainvoke(messages)

    Stateless per request apart from the shared circuit breaker.
    """

    def __init__(
        self,
        specs:               list[ProviderSpec] | None = None,
        model_factory:       ModelFactory | None       = None,
        per_attempt_timeout: float | None              = None,
    ) -> None:
        self._specs               = specs if specs is not None else registered_providers()
        self._model_factory       = model_factory or build_chat_model
        self._per_attempt_timeout = per_attempt_timeout or settings.llm_timeout_seconds

    @property
    def specs(self) -> list[ProviderSpec]:
        return list(self._specs)

    async def ainvoke(self, messages: list[BaseMessage]) -> tuple[ProviderSpec, AIMessage]:
        """
        Invoke the chain with automatic fallback.

        Returns the spec that answered and its AIMessage (usage_metadata
        included when the provider reports it).

        Raises:
            AnswerGenerationError: every provider failed, was skipped, or one
                                   failed with a non-retryable error.
        """
        errors: list[str] = []

        for spec in self._specs:
            if _is_circuit_open(spec.provider):
                logger.debug("Skipping provider=%s (circuit open)", spec.provider.value)
                errors.append(f"{spec.provider.value}/{spec.model_id}: circuit open")
                continue

            try:
                llm = self._model_factory(spec)
            except Exception as exc:
                err = f"{spec.provider.value}/{spec.model_id}: client build failed: {type(exc).__name__}: {exc}"
                logger.error("FallbackChain | %s", err)
                _record_failure(spec.provider)
                errors.append(err)
                continue

            try:
                logger.debug(
                    "FallbackChain | trying provider=%s model=%s",
                    spec.provider.value, spec.model_id,
                )
                result = await asyncio.wait_for(
                    llm.ainvoke(messages),
                    timeout=self._per_attempt_timeout,
                )
                _record_success(spec.provider)
                return spec, result   # type: ignore[return-value]

            except asyncio.TimeoutError:
                err = f"{spec.provider.value}/{spec.model_id}: timed out after {self._per_attempt_timeout}s"
                logger.warning("FallbackChain | %s", err)
                _record_failure(spec.provider)
                errors.append(err)

            except Exception as exc:
                err = f"{spec.provider.value}/{spec.model_id}: {type(exc).__name__}: {exc}"
                if not _is_retryable(exc):
                    logger.error("FallbackChain | non-retryable error, stopping | %s", err)
                    raise AnswerGenerationError(
                        "The language model rejected the request.",
                        details={"errors": [*errors, err]},
                    ) from exc
                logger.warning("FallbackChain | retryable error | %s", err)
                _record_failure(spec.provider)
                errors.append(err)

        logger.error("FallbackChain | all providers failed | errors=%s", errors)
        raise AnswerGenerationError(
            "No language model provider is available. Please try again later.",
            details={"errors": errors},
        )
