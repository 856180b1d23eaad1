"""
SmartNotes Backend — Google Gemini Service Implementation
==========================================================

What:  Concrete LLMService backed by Google Gemini: transcription, summaries,
       keyword/action extraction, search suggestions and text embeddings.
Why:   One multimodal provider covers every AI function the app needs.
How:   Every call goes through a circuit breaker and tenacity retry with
       exponential backoff + jitter; all failures surface as LLMServiceError.
Who:   Instantiated once at import; called by VoiceService and SearchService.

Resilience Strategy:
    1. Tenacity retry for transient upstream errors (timeouts, 429, 5xx)
    2. Circuit breaker shared by all operations: when Gemini is down, calls
       fail instantly and the services switch to their fallbacks
    3. Per-call request IDs and latency logging
"""

import asyncio
import json
import logging
import mimetypes
import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from smartnotes.config import settings
from smartnotes.exceptions import CircuitBreakerOpenError, LLMServiceError
from smartnotes.services.llm_base import LLMService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upstream errors worth retrying; anything else fails on the first attempt
TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.ResourceExhausted,
    google_exceptions.ServiceUnavailable,
)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not thread-safe; uvicorn async workers share a single process.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Response parsing helpers
# ══════════════════════════════════════════════════════════════════════════

def _load_json(raw: str) -> Any:
    """Parses model JSON output, tolerating a ```json fenced block."""
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    return json.loads(cleaned)


def parse_string_list(raw: str, key: Optional[str] = None) -> List[str]:
    """
    Extract a list of non-empty strings from model JSON output.

    Accepts either a bare JSON array or an object holding the array under `key`.
    Raises ValueError on anything else so the caller records a failure.
    """
    data = _load_json(raw)
    if isinstance(data, dict) and key:
        data = data.get(key)
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of strings")
    return [str(item).strip() for item in data if str(item).strip()]


def parse_transcription(raw: str) -> Tuple[str, float]:
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object with 'text' and 'confidence'")
    text = str(data.get("text") or "").strip() or "Unable to transcribe audio"
    try:
        # Missing or zero confidence means the model did not report one
        confidence = float(data.get("confidence") or 0.5)
    except (TypeError, ValueError):
        confidence = 0.5
    return text, min(max(confidence, 0.0), 1.0)


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(LLMService):
    """
    Google Gemini implementation of every AI function.

    Error Handling Chain:
        API call fails → tenacity retries transient errors
        → retries exhausted / non-transient error → circuit breaker failure
        → LLMServiceError raised to the calling service, which falls back
    """

    TRANSCRIBE_PROMPT = """Transcribe this voice recording word for word.
Respond with a JSON object: {"text": "<transcript>", "confidence": <0.0-1.0>}.
confidence is your estimate of transcript accuracy. Use an empty text if nothing is spoken."""

    SUMMARY_PROMPT = """Summarize the following note in two or three sentences.
Return ONLY the summary, no preamble.

Note:
"""

    KEYWORDS_PROMPT = """Extract up to 8 short keywords or key phrases from the note below.
Respond with a JSON array of lowercase strings.

Note:
"""

    ACTIONS_PROMPT = """List the concrete action items (tasks, follow-ups, reminders) in the note below.
Respond with a JSON array of strings, one imperative sentence each. Use [] if there are none.

Note:
"""

    SUGGEST_PROMPT = """A user is typing into the search box of their note-taking app.
Partial query: "{query}"
Some of their note titles: {titles}
Suggest up to 5 completed search queries. Respond with a JSON array of strings."""

    def __init__(self):
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(settings.gemini_model)
        self.embedding_model = settings.gemini_embedding_model

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, embedding_model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            self.embedding_model,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    # ── Public operations ─────────────────────────────────────────────────

    async def transcribe_audio(self, audio_path: str) -> Tuple[str, float]:
        async def call(request_id: str) -> Tuple[str, float]:
            mime_type = mimetypes.guess_type(audio_path)[0] or "audio/mp4"
            audio_file = await asyncio.to_thread(
                genai.upload_file, path=audio_path, mime_type=mime_type
            )
            raw = await self._generate_with_retry(
                [self.TRANSCRIBE_PROMPT, audio_file], request_id, json_output=True
            )
            return parse_transcription(raw)

        logger.info("Transcribing recording %s", Path(audio_path).name)
        return await self._guarded("transcribe", call)

    async def summarize(self, text: str) -> str:
        async def call(request_id: str) -> str:
            return await self._generate_with_retry([self.SUMMARY_PROMPT + text], request_id)

        return await self._guarded("summarize", call)

    async def extract_keywords(self, text: str) -> List[str]:
        async def call(request_id: str) -> List[str]:
            raw = await self._generate_with_retry(
                [self.KEYWORDS_PROMPT + text], request_id, json_output=True
            )
            return [k.lower() for k in parse_string_list(raw, key="keywords")]

        return await self._guarded("keywords", call)

    async def extract_action_items(self, text: str) -> List[str]:
        async def call(request_id: str) -> List[str]:
            raw = await self._generate_with_retry(
                [self.ACTIONS_PROMPT + text], request_id, json_output=True
            )
            return parse_string_list(raw, key="actions")

        return await self._guarded("actions", call)

    async def suggest_queries(self, query: str, context: Sequence[str]) -> List[str]:
        async def call(request_id: str) -> List[str]:
            prompt = self.SUGGEST_PROMPT.format(query=query, titles=json.dumps(list(context)[:20]))
            raw = await self._generate_with_retry([prompt], request_id, json_output=True)
            return parse_string_list(raw, key="suggestions")[:5]

        return await self._guarded("suggest", call)

    async def embed(self, texts: Sequence[str], for_query: bool = False) -> List[List[float]]:
        if not texts:
            return []

        async def call(request_id: str) -> List[List[float]]:
            task_type = "retrieval_query" if for_query else "retrieval_document"
            vectors = await self._embed_with_retry(list(texts), task_type, request_id)
            if len(vectors) != len(texts):
                raise ValueError(
                    f"Embedding count mismatch: sent {len(texts)}, got {len(vectors)}"
                )
            return vectors

        return await self._guarded("embed", call)

    # ── Plumbing ──────────────────────────────────────────────────────────

    async def _guarded(
        self, operation: str, call: Callable[[str], Awaitable[T]]
    ) -> T:
        """
        Run one provider operation under the circuit breaker.

        Raises:
            CircuitBreakerOpenError: Circuit is open (too many recent failures)
            LLMServiceError: The operation failed after retries
        """
        request_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        try:
            result = await call(request_id)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Gemini %s failed: %s: %s",
                request_id,
                operation,
                type(e).__name__,
                str(e),
            )
            raise LLMServiceError(
                message=f"AI {operation} failed. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "request_id": request_id,
                    "operation": operation,
                    "error_type": type(e).__name__,
                },
            ) from e

        self.circuit_breaker.record_success()
        return result

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _generate_with_retry(
        self, parts: List[Any], request_id: str, json_output: bool = False
    ) -> str:
        """Single generate_content call; tenacity retries transient failures."""
        start_time = time.time()
        generation_config = {"response_mime_type": "application/json"} if json_output else None

        try:
            response = await self.model.generate_content_async(
                parts,
                generation_config=generation_config,
                request_options={"timeout": settings.gemini_timeout},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        text = response.text.strip() if response.text else ""
        logger.info(
            "[%s] Gemini call completed in %.0fms, %d chars",
            request_id,
            (time.time() - start_time) * 1000,
            len(text),
        )
        return text

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _embed_with_retry(
        self, texts: List[str], task_type: str, request_id: str
    ) -> List[List[float]]:
        start_time = time.time()
        result = await asyncio.to_thread(
            genai.embed_content,
            model=self.embedding_model,
            content=texts,
            task_type=task_type,
        )
        vectors = result["embedding"]
        # A single string input comes back as one flat vector
        if vectors and isinstance(vectors[0], (int, float)):
            vectors = [vectors]
        logger.debug(
            "[%s] Embedded %d texts in %.0fms",
            request_id,
            len(texts),
            (time.time() - start_time) * 1000,
        )
        return [list(map(float, v)) for v in vectors]

    async def health_check(self) -> bool:
        """Lists models (no token cost) to verify API key and connectivity."""
        try:
            models = await asyncio.to_thread(lambda: list(genai.list_models()))
            target = f"models/{settings.gemini_model}"
            if target not in [m.name for m in models]:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


# Singleton: the circuit breaker state must be shared across requests
gemini_service = GeminiService()
