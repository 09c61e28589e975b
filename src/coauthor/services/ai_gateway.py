from __future__ import annotations

"""Gateway to the upstream generative-text provider.

``AIGateway`` wraps a single OpenAI-compatible chat client (Gemini through its
OpenAI endpoint by default, see ``ModelRouter``) behind one operation,
``generate(prompt, params)``. The gateway owns:

- lazy client construction with an explicit state (pending, ready, failed);
  once construction fails every call fails fast with ``AIServiceUnavailable``
- bounded retry with exponential backoff for transient upstream errors
- the suggestion and contribution helpers built on top of ``generate``

The client factory and the sleep coroutine are injectable so tests can run the
retry loop without network access or real delays.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import openai
from langchain_openai import ChatOpenAI

from ..domain.errors import AIServiceUnavailable
from ..observability.metrics import AI_ATTEMPTS, AI_OUTCOMES
from .model_router import ModelRouter


LOG = logging.getLogger("coauthor.llm")

NO_SUGGESTIONS_PLACEHOLDER = "No specific suggestions were found. Try providing more detailed instructions."

_TRANSIENT_MARKERS = (
    "503",
    "Service Unavailable",
    "overloaded",
    "429",
    "Too Many Requests",
    "ECONNRESET",
    "ETIMEDOUT",
)

_TRANSIENT_TYPES = (
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIConnectionError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)


@dataclass(frozen=True)
class SamplingParams:
    temperature: float = 0.7
    max_output_tokens: int = 2048
    top_p: float = 0.95


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30000

    @staticmethod
    def from_env() -> "RetryPolicy":
        return RetryPolicy(
            max_retries=int(os.getenv("COAUTHOR_AI_MAX_RETRIES", "3")),
            base_delay_ms=int(os.getenv("COAUTHOR_AI_BASE_DELAY_MS", "1000")),
            multiplier=float(os.getenv("COAUTHOR_AI_BACKOFF_MULTIPLIER", "2")),
            max_delay_ms=int(os.getenv("COAUTHOR_AI_MAX_DELAY_MS", "30000")),
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_ms(self, attempt: int) -> int:
        """Delay before retrying after the zero-based ``attempt`` failed."""
        return int(min(self.base_delay_ms * (self.multiplier ** attempt), self.max_delay_ms))


@dataclass
class GenerationResult:
    text: str
    attempts: int = 1
    provider: Optional[str] = None
    model: Optional[str] = None
    raw: Any = field(default=None, repr=False)


class GatewayState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    if isinstance(exc, openai.APIStatusError) and (exc.status_code == 429 or exc.status_code >= 500):
        return True
    message = str(exc)
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def parse_suggestions(text: str) -> List[str]:
    """Turn a free-text suggestion list into clean items.

    Drops blank lines, numbered sub-points (``1.``) and a ``Suggestions:``
    header, and strips leading bullets. Never returns an empty list.
    """
    out: List[str] = []
    for line in (text or "").split("\n"):
        if not line.strip():
            continue
        if re.match(r"^[0-9]\.", line) or re.match(r"^suggestions:", line, re.IGNORECASE):
            continue
        cleaned = re.sub(r"^[*-]\s*", "", line).strip()
        if cleaned:
            out.append(cleaned[:500])
    return out or [NO_SUGGESTIONS_PLACEHOLDER]


def parse_contribution_analysis(text: str) -> Dict[str, Any]:
    """Parse the model's contribution estimate, falling back to regex scraping."""
    try:
        data = json.loads(_strip_code_fence(text))
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return {
            "ai_contribution": data.get("aiContribution") or 0,
            "human_contribution": data.get("humanContribution") or 100,
            "explanation": data.get("explanation") or "Analysis completed",
            "total_edits": data.get("totalEdits") or 1,
        }
    except ValueError:
        LOG.warning("contribution_analysis_unparseable", extra={"chars": len(text or "")})
    ai_match = re.search(r"ai contribution.?\s*:?\s*(\d+)", text or "", re.IGNORECASE)
    human_match = re.search(r"human contribution.?\s*:?\s*(\d+)", text or "", re.IGNORECASE)
    edits_match = re.search(r"total\s*edits.?\s*:?\s*(\d+)", text or "", re.IGNORECASE)
    return {
        "ai_contribution": int(ai_match.group(1)) if ai_match else 0,
        "human_contribution": int(human_match.group(1)) if human_match else 100,
        "explanation": "Analysis completed (text parsing fallback)",
        "total_edits": int(edits_match.group(1)) if edits_match else 1,
    }


def _strip_code_fence(text: str) -> str:
    stripped = (text or "").strip()
    match = re.match(r"^```(?:json)?\s*(.*?)\s*```$", stripped, re.DOTALL)
    return match.group(1) if match else stripped


def build_chat_client(router: Optional[ModelRouter] = None) -> ChatOpenAI:
    """Default client factory: an OpenAI-compatible chat client for the routed provider."""
    selection = (router or ModelRouter()).select_provider("writing")
    api_key = selection.api_key()
    if selection.requires_api_key and not api_key:
        raise RuntimeError(f"Missing API key for provider {selection.name}")
    LOG.info("ai_client_configured", extra={"provider": selection.name, "model": selection.model})
    return ChatOpenAI(
        api_key=api_key or "not-needed",
        base_url=selection.base_url,
        model=selection.model,
        temperature=0.7,
        max_retries=0,
        timeout=float(os.getenv("COAUTHOR_AI_TIMEOUT_SEC", "60")),
    )


class AIGateway:
    def __init__(
        self,
        client_factory: Optional[Callable[[], Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._client_factory = client_factory or build_chat_client
        self.retry_policy = retry_policy or RetryPolicy.from_env()
        self._sleep = sleep or asyncio.sleep
        self._client: Any = None
        self._state = GatewayState.PENDING
        self._init_error: Optional[str] = None

    @property
    def state(self) -> GatewayState:
        return self._state

    def _ensure_client(self) -> Any:
        if self._state is GatewayState.READY:
            return self._client
        if self._state is GatewayState.FAILED:
            raise AIServiceUnavailable("AI service is not initialized", last_error=self._init_error)
        try:
            self._client = self._client_factory()
        except Exception as exc:
            self._state = GatewayState.FAILED
            self._init_error = str(exc)
            LOG.error("ai_client_init_failed", extra={"err": str(exc)})
            raise AIServiceUnavailable("AI service is not initialized", last_error=str(exc)) from exc
        self._state = GatewayState.READY
        return self._client

    async def _call(self, client: Any, prompt: str, params: SamplingParams) -> str:
        res = await client.ainvoke(
            prompt,
            temperature=params.temperature,
            max_tokens=params.max_output_tokens,
            top_p=params.top_p,
        )
        text = res.content if hasattr(res, "content") else res
        if not isinstance(text, str):
            text = str(text)
        return text

    async def generate(
        self,
        prompt: str,
        params: Optional[SamplingParams] = None,
        *,
        operation: str = "Content generation",
    ) -> GenerationResult:
        """Run one generation with retry.

        Transient failures are retried up to ``retry_policy.max_retries``
        times with exponential backoff; anything else stops immediately.
        Raises ``AIServiceUnavailable`` carrying the attempt count and the last
        upstream error message.
        """
        client = self._ensure_client()
        params = params or SamplingParams()
        policy = self.retry_policy
        last_error: Optional[BaseException] = None
        attempts = 0
        for attempt in range(policy.max_attempts):
            attempts = attempt + 1
            try:
                text = await self._call(client, prompt, params)
            except Exception as exc:
                last_error = exc
                AI_ATTEMPTS.labels(operation=operation, result="error").inc()
                LOG.warning(
                    "ai_attempt_failed",
                    extra={"operation": operation, "attempt": attempts, "err": str(exc)},
                )
                if attempt == policy.max_retries or not is_transient_error(exc):
                    break
                delay = policy.delay_ms(attempt)
                LOG.info("ai_retry_scheduled", extra={"operation": operation, "delay_ms": delay})
                await self._sleep(delay / 1000.0)
                continue
            AI_ATTEMPTS.labels(operation=operation, result="ok").inc()
            AI_OUTCOMES.labels(operation=operation, outcome="success").inc()
            if attempt > 0:
                LOG.info("ai_retry_succeeded", extra={"operation": operation, "attempt": attempts})
            return GenerationResult(text=text, attempts=attempts)

        AI_OUTCOMES.labels(operation=operation, outcome="failure").inc()
        last_message = str(last_error) if last_error else "unknown error"
        raise AIServiceUnavailable(
            f"{operation} failed after {attempts} attempts. Last error: {last_message}",
            attempts=attempts,
            last_error=last_message,
        ) from last_error

    async def generate_suggestions(
        self,
        content: str,
        instructions: Optional[str] = None,
        params: Optional[SamplingParams] = None,
    ) -> List[str]:
        if instructions:
            prompt = (
                "I have the following content and specific instructions for analysis:\n\n"
                f"Content:\n{content}\n\n"
                f"Instructions:\n{instructions}\n\n"
                "Please provide a list of 3-5 detailed suggestions based on these instructions.\n"
                "Format your response as a list of suggestions, one per line."
            )
        else:
            prompt = (
                "I have the following content and I would like suggestions for improvements:\n\n"
                f"{content}\n\n"
                "Please provide a list of 3-5 suggestions to improve this content. For each suggestion:\n"
                "1. Describe the suggestion concisely\n"
                "2. Explain briefly why it would improve the content\n\n"
                "Format your response as a list of suggestions, one per line."
            )
        params = params or SamplingParams(temperature=0.6, max_output_tokens=1024)
        result = await self.generate(prompt, params, operation="Suggestions generation")
        return parse_suggestions(result.text)

    async def analyze_contributions(
        self,
        content: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        lines = [
            "I need to analyze the following content to determine the approximate percentage "
            "of AI versus human contribution:",
            "",
            "Content to analyze:",
            content,
        ]
        if history:
            lines += ["", "Edit history (most recent first):"]
            lines += [f"- {h.get('type', 'edit')}: {h.get('description', '')}" for h in history]
        lines += [
            "",
            "Please analyze the content and provide:",
            "1. Estimated percentage of AI contribution (0-100%)",
            "2. Estimated percentage of human contribution (0-100%)",
            "3. Brief explanation of your analysis",
            "4. Approximate number of edits that might have been made",
            "",
            "Format your response as a JSON object with keys: aiContribution, humanContribution, explanation, totalEdits",
        ]
        result = await self.generate(
            "\n".join(lines),
            SamplingParams(temperature=0.3, max_output_tokens=1024),
            operation="Contribution analysis",
        )
        return parse_contribution_analysis(result.text)

    async def health_check(self) -> bool:
        try:
            result = await self.generate(
                "Hello, this is a test message.",
                SamplingParams(temperature=0.1, max_output_tokens=50),
                operation="Health check",
            )
        except AIServiceUnavailable as exc:
            LOG.warning("ai_health_check_failed", extra={"err": exc.last_error})
            return False
        return bool(result.text)


_gateway: Optional[AIGateway] = None


def get_ai_gateway() -> AIGateway:
    global _gateway
    if _gateway is None:
        _gateway = AIGateway()
    return _gateway
