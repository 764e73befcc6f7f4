"""LLM client and response helpers for workflow decomposition.

This module provides:
- LLMClient: Wrapper around LiteLLM with retry logic, fallback model support,
  and latency/token accounting
- MockLLMClient: Predefined or canned responses for tests and offline runs
- extract_json_from_response: Pull a JSON object out of free-form model text
"""

import asyncio
import json
import re
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from models.schemas import LLMMetrics

logger = structlog.get_logger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        finish_reason: Why the model stopped (stop, length, etc.)
        metrics: Token usage and latency metrics
        raw_response: The original ModelResponse from LiteLLM
    """

    content: str
    finish_reason: str
    metrics: LLMMetrics
    raw_response: ModelResponse | None = field(default=None, repr=False)


class LLMClient:
    """Wrapper around LiteLLM with retry logic and fallback.

    Retries on: RateLimitError (429), ServiceUnavailableError (500/502/503),
    Timeout errors, with exponential backoff capped at 4 seconds.
    Does NOT retry on: AuthenticationError (401/403), BadRequestError (400).
    After all retries fail, a configured fallback model is tried once.

    Attributes:
        default_model: Model to use if not specified
        fallback_model: Optional fallback model if primary fails after retries
        retry_attempts: Number of retry attempts for failed calls
        retry_delay: Base delay between retry attempts in seconds
    """

    def __init__(
        self,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.default_model = default_model or settings.decompose_model
        self.fallback_model = fallback_model or settings.llm_fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Make an LLM call with retry logic and fallback.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature (defaults to config)
            max_tokens: Maximum tokens in response (defaults to config)

        Returns:
            LLMResponse with content and metrics

        Raises:
            AuthenticationError: If API key is invalid
            BadRequestError: If request is malformed
            Exception: After all retries and fallback exhausted
        """
        model = model or self.default_model
        temperature = settings.llm_temperature if temperature is None else temperature
        max_tokens = max_tokens or settings.llm_max_tokens

        last_exception: Exception | None = None
        for attempt in range(self.retry_attempts + 1):
            start_time = time.time()
            try:
                response = await self._make_request(messages, model, temperature, max_tokens)
            except (RateLimitError, ServiceUnavailableError, Timeout) as e:
                last_exception = e
                if attempt < self.retry_attempts:
                    delay = min(self.retry_delay * (2 ** attempt), 4.0)
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.retry_attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(
                    "llm_call_failed_all_retries",
                    model=model,
                    attempts=self.retry_attempts + 1,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                break
            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

            latency_ms = int((time.time() - start_time) * 1000)
            llm_response = self._parse_response(response, model, latency_ms)
            logger.info(
                "llm_call_complete",
                model=model,
                input_tokens=llm_response.metrics.input_tokens,
                output_tokens=llm_response.metrics.output_tokens,
                latency_ms=latency_ms,
                attempt=attempt + 1,
            )
            return llm_response

        if self.fallback_model and self.fallback_model != model:
            logger.warning(
                "llm_fallback_attempt",
                primary_model=model,
                fallback_model=self.fallback_model,
                primary_error=str(last_exception),
            )
            start_time = time.time()
            response = await self._make_request(
                messages, self.fallback_model, temperature, max_tokens
            )
            latency_ms = int((time.time() - start_time) * 1000)
            return self._parse_response(response, self.fallback_model, latency_ms)

        if last_exception is None:
            raise RuntimeError(f"LLM call to {model} made no attempts")
        raise last_exception

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> ModelResponse:
        return await acompletion(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=settings.llm_request_timeout_seconds,
        )

    @staticmethod
    def _parse_response(response: ModelResponse, model: str, latency_ms: int) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
            metrics=LLMMetrics(
                model=model,
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                latency_ms=latency_ms,
            ),
            raw_response=response,
        )


def _mock_decomposition_text() -> str:
    payload = {
        "title": "Mock Workflow Analysis",
        "steps": [
            {
                "id": "step_1", "name": "Receive Request",
                "description": "Initial request intake", "owner": "Operator",
                "layer": "human", "inputs": ["request"], "outputs": ["ticket"],
                "tools": ["email"], "automationScore": 30, "dependencies": [],
            },
            {
                "id": "step_2", "name": "Process Data",
                "description": "Transform and validate data", "owner": "System",
                "layer": "orchestration", "inputs": ["ticket"],
                "outputs": ["processed_data"], "tools": ["script"],
                "automationScore": 85, "dependencies": ["step_1"],
            },
            {
                "id": "step_3", "name": "Review Output",
                "description": "Human review of processed results", "owner": "Manager",
                "layer": "human", "inputs": ["processed_data"],
                "outputs": ["approved_output"], "tools": ["dashboard"],
                "automationScore": 20, "dependencies": ["step_2"],
            },
        ],
        "gaps": [
            {
                "type": "bottleneck", "severity": "high", "stepIds": ["step_3"],
                "description": "Manager review creates delays",
                "suggestion": "Add auto-approval for low-risk items",
            },
            {
                "type": "manual_overhead", "severity": "medium", "stepIds": ["step_1"],
                "description": "Manual request intake",
                "suggestion": "Implement web form submission",
            },
        ],
    }
    return "```json\n" + json.dumps(payload) + "\n```"


class MockLLMClient(LLMClient):
    """Mock LLM client for testing without API calls.

    Returns the predefined responses in order. Without predefined responses
    every call returns a canned three-step decomposition.

    Usage:
        >>> client = MockLLMClient(responses=[make_llm_response('{"title": ...}')])
        >>> response = await client.call(messages=[...])
    """

    def __init__(
        self,
        responses: list[LLMResponse] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    async def call(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Return the next predefined response.

        Raises:
            IndexError: If predefined responses were given and are used up
        """
        self.call_history.append({
            "messages": messages,
            "model": model or self.default_model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })

        if not self.responses:
            return LLMResponse(
                content=_mock_decomposition_text(),
                finish_reason="stop",
                metrics=LLMMetrics(
                    model=model or self.default_model,
                    input_tokens=500,
                    output_tokens=300,
                    latency_ms=0,
                ),
            )

        if self._response_index >= len(self.responses):
            raise IndexError("No more mock responses available")

        response = self.responses[self._response_index]
        self._response_index += 1
        logger.debug(
            "mock_llm_call",
            response_index=self._response_index - 1,
            content_preview=response.content[:50] if response.content else "",
        )
        return response


def get_llm_client() -> LLMClient:
    """Build the client selected by configuration."""
    if settings.use_mock_llm:
        logger.info("mock_llm_enabled")
        return MockLLMClient()
    return LLMClient()


_decoder = json.JSONDecoder()


def _iter_json_objects(text: str) -> Iterator[dict[str, Any]]:
    """Yield every JSON object that starts at a ``{`` in ``text``, in order."""
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            yield parsed
        start = text.find("{", start + 1)


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Extract a JSON object from an LLM response that may contain extra text.

    Looks at the whole response first, then the body of each fenced code
    block, then every ``{`` in the raw text. The first object that parses
    wins; top-level arrays and scalars are ignored.

    Args:
        response: The full LLM response text

    Returns:
        Parsed JSON dict if found, None otherwise
    """
    stripped = response.strip()
    candidates = [stripped]
    candidates += [
        match.group(1).strip()
        for match in _FENCE_PATTERN.finditer(response)
    ]

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    for candidate in candidates[1:] + [response]:
        parsed = next(_iter_json_objects(candidate), None)
        if parsed is not None:
            return parsed

    return None
