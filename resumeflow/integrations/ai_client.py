"""Rate-limited AI client for structured résumé extraction.

Wraps one OpenAI-compatible chat endpoint. Every call is paced by a minimum
interval measured from the end of the previous call, and rate-limit errors
are retried with exponential backoff (or the upstream's own retry hint).
"""

import asyncio
import json
import math
import os
import random
import re
import time
from typing import Any, Awaitable, Callable

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..core.errors import InvalidResponse, PipelineError, RateLimited, UpstreamError
from ..core.models.candidate import ParsedCandidateData
from ..observability.logger import get_logger

logger = get_logger(__name__)

RATE_LIMIT_MARKERS = ("429", "too many requests", "quota", "rate limit", "rate_limit", "resource_exhausted")
HARD_QUOTA_MARKERS = ("insufficient_quota", "per day", "daily", "billing")

_RETRY_HINTS = (
    re.compile(
        r"(?:retry|try again) (?:in|after) ([\d.]+)\s*(ms|milliseconds?|s|secs?|seconds?)?\b",
        re.IGNORECASE,
    ),
    re.compile(r"\"retryDelay\"\s*:\s*\"([\d.]+)(s)\"", re.IGNORECASE),
)
_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_PHONE = re.compile(r"(?:\+?\d[\d .-]{7,}\d)")

EXTRACTION_PROMPT = """Extract structured information from the following CV/resume text.
Return ONLY a JSON object with exactly these keys:
{{
  "fullName": "string",
  "email": "string",
  "phone": "string",
  "skills": ["string"],
  "experience": [{{"company": "string", "position": "string", "duration": "string", "description": "string"}}],
  "education": [{{"school": "string", "degree": "string", "major": "string", "duration": "string", "gpa": "string"}}],
  "summary": "string",
  "yearsOfExperience": number
}}
Use null or an empty list when a value is unknown. Do not add markdown or prose.

CV text:
{text}
"""


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 characters per token)."""
    return math.ceil(len(text) / 4)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def is_rate_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def parse_retry_hint(message: str) -> int | None:
    """Extract an explicit "retry in N seconds" hint, in milliseconds."""
    for pattern in _RETRY_HINTS:
        match = pattern.search(message)
        if not match:
            continue
        try:
            value = float(match.group(1))
        except ValueError:
            continue
        unit = (match.group(2) or "s").lower()
        if unit.startswith("m"):
            return math.ceil(value)
        return math.ceil(value * 1000)
    return None


def _header_retry_after(error: BaseException) -> int | None:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return math.ceil(float(value) * 1000)
    except ValueError:
        return None


def classify_error(error: BaseException) -> PipelineError:
    """Map a transport exception onto the pipeline taxonomy."""
    if isinstance(error, PipelineError):
        return error

    message = str(error)
    status = getattr(error, "status_code", None)
    if isinstance(error, openai.RateLimitError) or status == 429 or is_rate_limit_message(message):
        hint = parse_retry_hint(message) or _header_retry_after(error)
        lowered = message.lower()
        # A quota error without a retry hint will not clear by waiting a minute
        quota_exhausted = any(marker in lowered for marker in HARD_QUOTA_MARKERS) or (
            "quota" in lowered and hint is None
        )
        return RateLimited(message, retry_after_ms=hint, quota_exhausted=quota_exhausted)

    return UpstreamError(message)


def _is_transient_rate_limit(error: BaseException) -> bool:
    # A hard quota wall is handed straight to the job layer
    return isinstance(error, RateLimited) and not error.quota_exhausted


def compute_retry_delay(
    error: RateLimited,
    retry_count: int,
    initial_delay_ms: int = 5000,
    max_delay_ms: int = 60000,
    max_jitter_ms: int = 1000,
    rng: random.Random | None = None,
) -> int:
    """Backoff before retry number ``retry_count`` (0-based), in milliseconds.

    An upstream hint overrides the exponential schedule; both are capped at
    ``max_delay_ms``.
    """
    if error.retry_after_ms is not None:
        return min(error.retry_after_ms, max_delay_ms)
    jitter = (rng or random).random() * max_jitter_ms
    return min(int(initial_delay_ms * (2**retry_count) + jitter), max_delay_ms)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def extract_json_object(text: str, required_arrays: tuple[str, ...] = ("skills",)) -> dict[str, Any]:
    """Pull the JSON object out of a model response.

    Markdown fences are stripped. A missing object, malformed JSON, or a
    required key that is not an array is an InvalidResponse.
    """
    if not text:
        raise InvalidResponse("Empty response from AI service")

    match = _JSON_OBJECT.search(_FENCE.sub("", text))
    if not match:
        raise InvalidResponse("No JSON object found in response")

    try:
        data = json.loads(match.group())
    except json.JSONDecodeError as e:
        raise InvalidResponse(f"Malformed JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise InvalidResponse("Response JSON is not an object")

    for key in required_arrays:
        if not isinstance(data.get(key), list):
            raise InvalidResponse(f"Response is missing required array '{key}'")
    return data


def fill_contact_fallbacks(data: ParsedCandidateData, source_text: str) -> ParsedCandidateData:
    """Fill email and phone from the source text when the model left them out."""
    if not data.email:
        match = _EMAIL.search(source_text)
        if match:
            data.email = match.group()
    if not data.phone:
        match = _PHONE.search(source_text)
        if match:
            data.phone = match.group().strip()
    return data


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AIExtractionClient:
    """Paced, retrying client around a single "extract structured data" call.

    One instance owns the inter-call timestamp; the read-modify-write of that
    timestamp happens under an asyncio lock.
    """

    _TEST_VOCABULARY = (
        "Python", "JavaScript", "TypeScript", "Node.js", "React", "MongoDB",
        "PostgreSQL", "Docker", "Kubernetes", "SQL", "Java", "AWS",
    )

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 60,
        temperature: float = 0.3,
        max_output_tokens: int = 2000,
        min_interval_ms: int = 6000,
        max_retries: int = 3,
        initial_delay_ms: int = 5000,
        max_delay_ms: int = 60000,
        max_jitter_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        test_mode: bool | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: API key (falls back to OPENAI_API_KEY)
            model: Model name on the configured endpoint
            base_url: OpenAI-compatible endpoint; None means api.openai.com
            min_interval_ms: Minimum gap between the end of one call and the next
            max_retries: Rate-limit retries after the first attempt
            clock: Monotonic clock in seconds, injectable for tests
            sleep: Async sleep in seconds, injectable for tests
        """
        if test_mode is None:
            test_mode = bool(os.getenv("RESUMEFLOW_TEST_MODE"))
        self.test_mode = test_mode
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.min_interval_ms = min_interval_ms
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_jitter_ms = max_jitter_ms

        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()
        self._last_call_end: float | None = None
        self.calls_made = 0

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        # Created on first use so queue-only processes need no credentials
        self.client: AsyncOpenAI | None = None

        logger.info(
            "ai_client_initialized",
            model=model,
            base_url=base_url,
            min_interval_ms=min_interval_ms,
            test_mode=self.test_mode,
        )

    @classmethod
    def from_config(cls, config: dict[str, Any], **overrides: Any) -> "AIExtractionClient":
        ai_cfg = config.get("ai", {})
        retry_cfg = ai_cfg.get("retry", {})
        api_key_env = ai_cfg.get("api_key_env", "OPENAI_API_KEY")
        kwargs: dict[str, Any] = {
            "api_key": os.getenv(api_key_env),
            "model": ai_cfg.get("model", "gpt-4o-mini"),
            "base_url": ai_cfg.get("base_url"),
            "timeout": ai_cfg.get("timeout", 60),
            "temperature": ai_cfg.get("temperature", 0.3),
            "max_output_tokens": ai_cfg.get("max_output_tokens", 2000),
            "min_interval_ms": ai_cfg.get("min_interval_ms", 6000),
            "max_retries": retry_cfg.get("max_retries", 3),
            "initial_delay_ms": retry_cfg.get("initial_delay_ms", 5000),
            "max_delay_ms": retry_cfg.get("max_delay_ms", 60000),
            "max_jitter_ms": retry_cfg.get("max_jitter_ms", 1000),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    async def extract_structured_data(self, cleaned_text: str) -> ParsedCandidateData:
        """Turn cleaned résumé text into ParsedCandidateData.

        Raises:
            RateLimited: still rate limited after the retry budget
            InvalidResponse: the response is not the agreed JSON shape
            UpstreamError: any other upstream failure (not retried here)
        """
        prompt = EXTRACTION_PROMPT.format(text=cleaned_text)
        data = await self.complete_json(prompt, required_arrays=("skills",))
        try:
            parsed = ParsedCandidateData.model_validate(data)
        except ValidationError as e:
            raise InvalidResponse(f"Response does not match candidate schema: {e.error_count()} errors") from e
        return fill_contact_fallbacks(parsed, cleaned_text)

    async def complete_json(
        self,
        prompt: str,
        required_arrays: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """Send ``prompt`` and return the JSON object from the answer."""
        logger.info("ai_request", model=self.model, estimated_tokens=estimate_tokens(prompt))

        output_text = ""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._backoff_seconds,
            retry=retry_if_exception(_is_transient_rate_limit),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                output_text = await self._paced_call(prompt)

        return extract_json_object(output_text, required_arrays)

    async def _paced_call(self, prompt: str) -> str:
        async with self._lock:
            if self._last_call_end is not None:
                remaining_ms = self.min_interval_ms - (self._clock() - self._last_call_end) * 1000
                if remaining_ms > 0:
                    logger.debug("ai_call_paced", wait_ms=round(remaining_ms))
                    await self._sleep(remaining_ms / 1000)
            self.calls_made += 1
            try:
                return await self._generate(prompt)
            except PipelineError:
                raise
            except Exception as e:
                error = classify_error(e)
                logger.warning("ai_call_failed", error_type=type(error).__name__, error=str(e))
                raise error from e
            finally:
                self._last_call_end = self._clock()

    def _backoff_seconds(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if not isinstance(error, RateLimited):
            return 0.0
        delay_ms = compute_retry_delay(
            error,
            retry_state.attempt_number - 1,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            max_jitter_ms=self.max_jitter_ms,
            rng=self._rng,
        )
        return delay_ms / 1000

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "ai_rate_limited_retrying",
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
            delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    def ensure_ready(self) -> None:
        """Build the transport, failing fast when no API key is configured."""
        if self.test_mode or self.client is not None:
            return
        if not self.api_key:
            raise ValueError("AI API key must be provided or set in the configured env var")
        # Retries are ours; the SDK's own would bypass pacing
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _generate(self, prompt: str) -> str:
        """Raw transport call; returns the model's text output."""
        if self.test_mode:
            return self._fabricate_response(prompt)

        self.ensure_ready()
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": "You are a structured extraction model. Reply with JSON only."},
                {"role": "user", "content": prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
            response_format={"type": "json_object"},
        )
        usage = getattr(completion, "usage", None)
        logger.info(
            "ai_response_received",
            response_id=getattr(completion, "id", None),
            tokens_total=getattr(usage, "total_tokens", 0) if usage else 0,
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""

    def _fabricate_response(self, prompt: str) -> str:
        """Deterministic offline answer used when RESUMEFLOW_TEST_MODE is set."""
        text = prompt.split("CV text:", 1)[-1]
        lowered = text.lower()
        skills = [skill for skill in self._TEST_VOCABULARY if skill.lower() in lowered]
        years = re.search(r"(\d+(?:\.\d+)?)\+?\s*years", lowered)
        return json.dumps(
            {
                "fullName": None,
                "skills": skills,
                "experience": [],
                "education": [],
                "summary": text.strip()[:200] or None,
                "yearsOfExperience": float(years.group(1)) if years else None,
            }
        )
