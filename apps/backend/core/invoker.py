"""
Resilient provider invocation.

One invoke() call = one chunk sent to one provider, under:
- the daily quota (checked before taking a permit, committed once on success)
- the global concurrency permit
- a pacing delay before every attempt
- retry with exponential backoff for rate limits and transient failures,
  honouring provider retry-after hints
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception_type, stop_after_attempt

from core.errors import (
    ContextTooLarge,
    FatalProviderError,
    ProviderUnavailable,
    QuotaExhausted,
    RateLimited,
    RetriesExhausted,
    RetryableProviderError,
    TransientProviderError,
)
from core.quota import ConcurrencyGate, QuotaBook
from pipeline.models import AttemptOutcome, InvocationAttempt, RecordBatch, TextChunk
from providers.base import Capability, ExtractionProvider, ExtractionRequest

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = re.compile(r'\b(?:status(?:[ _]code)?|error code|http)\W{0,3}429\b', re.IGNORECASE)
RATE_LIMIT_KEYWORDS = ('rate_limit', 'rate limit', 'ratelimit', 'quota', 'resource_exhausted', 'too many requests')
CONTEXT_KEYWORDS = (
    'context_length_exceeded', 'context length', 'context window', 'maximum context',
    'too many tokens', 'token limit', 'prompt is too long', 'input is too long',
    'request too large', 'max_tokens_exceeded',
)

RETRY_AFTER_PATTERNS = [
    (re.compile(r'"retryDelay"\s*:\s*"(\d+(?:\.\d+)?)s"'), 1.0),
    (re.compile(r'retry[-_ ]after["\s:=]+(\d+(?:\.\d+)?)\s*(?:s\b|sec|seconds)?', re.IGNORECASE), 1.0),
    (re.compile(r'try again in (\d+(?:\.\d+)?)\s*ms\b', re.IGNORECASE), 0.001),
    (re.compile(r'try again in (\d+(?:\.\d+)?)\s*(?:s\b|sec|seconds)?', re.IGNORECASE), 1.0),
]

Sleep = Callable[[float], Awaitable[None]]


def parse_retry_after(message: Optional[str]) -> Optional[float]:
    """Extract a provider-supplied retry delay (seconds) from an error message."""
    if not message:
        return None
    for pattern, scale in RETRY_AFTER_PATTERNS:
        match = pattern.search(message)
        if match:
            return float(match.group(1)) * scale
    return None


def _signals_429(error: BaseException, status_code: Optional[int]) -> bool:
    """429 from an error-code attribute or a status-labelled message; never from a response body."""
    if status_code is not None:
        return False
    code = getattr(error, 'code', None)
    if code is not None and str(code) == '429':
        return True
    return bool(RATE_LIMIT_STATUS.search(str(error)))


def classify_error(error: BaseException) -> Exception:
    """
    Map a raw provider failure to the invoker's taxonomy.

    Order: explicit 429, context-length signals, rate/quota wording,
    5xx/timeout/network, everything else fatal.
    """
    if isinstance(error, (RetryableProviderError, ContextTooLarge, FatalProviderError, ProviderUnavailable)):
        return error

    status_code = getattr(error, 'status_code', None)
    body = getattr(error, 'body', '') or ''
    message = f"{error} {body}".strip()
    lowered = message.lower()
    hinted = getattr(error, 'retry_after', None)
    retry_after = hinted if hinted is not None else parse_retry_after(message)

    if status_code == 429:
        return RateLimited(message, retry_after=retry_after)
    if status_code == 413 or any(k in lowered for k in CONTEXT_KEYWORDS):
        return ContextTooLarge(message, {'status_code': status_code} if status_code else None)
    if _signals_429(error, status_code) or any(k in lowered for k in RATE_LIMIT_KEYWORDS):
        return RateLimited(message, retry_after=retry_after)
    if (status_code is not None and status_code >= 500) or isinstance(
        error, (httpx.TimeoutException, httpx.NetworkError, asyncio.TimeoutError, ConnectionError)
    ):
        return TransientProviderError(message, retry_after=retry_after)
    return FatalProviderError(message, {'status_code': status_code} if status_code else None)


def _outcome_for(error: Exception) -> AttemptOutcome:
    if isinstance(error, RateLimited):
        return AttemptOutcome.RATE_LIMITED
    if isinstance(error, TransientProviderError):
        return AttemptOutcome.TRANSIENT_ERROR
    return AttemptOutcome.FATAL_ERROR


class ResilientInvoker:
    """Executes provider calls under quota, permit, pacing and retry control."""

    def __init__(
        self,
        quota_book: QuotaBook,
        gate: ConcurrencyGate,
        call_interval: float = 5.0,
        base_delay: float = 30.0,
        multiplier: float = 1.5,
        max_delay: float = 300.0,
        max_attempts: int = 3,
        max_retry_wait: Optional[float] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.quota_book = quota_book
        self.gate = gate
        self.call_interval = call_interval
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.max_attempts = max(1, max_attempts)
        self.max_retry_wait = max_retry_wait if max_retry_wait is not None else max_delay
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config, quota_book: Optional[QuotaBook] = None,
                    gate: Optional[ConcurrencyGate] = None, sleep: Optional[Sleep] = None) -> 'ResilientInvoker':
        return cls(
            quota_book or QuotaBook.from_config(config),
            gate or ConcurrencyGate(config.max_concurrency),
            call_interval=config.call_interval,
            base_delay=config.retry_base_delay,
            multiplier=config.retry_multiplier,
            max_delay=config.retry_max_delay,
            max_attempts=config.max_attempts,
            sleep=sleep,
        )

    def remaining_quota(self, provider_id: str) -> int:
        return self.quota_book.state_for(provider_id).remaining()

    def backoff_delay(self, attempt_number: int, error: Optional[BaseException] = None) -> float:
        """Delay before the retry that follows attempt `attempt_number` (1-based)."""
        retry_after = getattr(error, 'retry_after', None)
        if retry_after is not None:
            return min(max(0.0, retry_after), self.max_retry_wait)
        return min(self.base_delay * (self.multiplier ** (attempt_number - 1)), self.max_delay)

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.backoff_delay(retry_state.attempt_number, error)

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception()
        logger.warning(
            f"[invoker] Attempt {retry_state.attempt_number}/{self.max_attempts} failed "
            f"({error.__class__.__name__}), retrying in {retry_state.next_action.sleep:.1f}s"
        )

    async def invoke(
        self,
        provider: ExtractionProvider,
        chunk: TextChunk,
        capability: Capability = Capability.TEXT,
        site_id: Optional[str] = None,
        base_record=None,
    ) -> RecordBatch:
        """
        Send one chunk to a provider.

        Raises:
            QuotaExhausted: daily ceiling reached; no call made, no permit held
            ContextTooLarge: chunk too large for the provider; not retried
            FatalProviderError / ProviderUnavailable: non-retryable failure
            RetriesExhausted: every attempt failed with a retryable error
        """
        if not provider.supports(capability):
            raise FatalProviderError(f"Provider '{provider.provider_id}' does not support {capability.value}")

        quota = self.quota_book.state_for(provider.provider_id)
        if not quota.has_capacity():
            raise QuotaExhausted(provider.provider_id, quota.daily_call_count, quota.ceiling)

        request = ExtractionRequest(chunk.text, capability, site_id, base_record)
        attempts: List[InvocationAttempt] = []

        async with self.gate.permit():
            if not quota.try_reserve():
                raise QuotaExhausted(provider.provider_id, quota.daily_call_count, quota.ceiling)
            committed = False
            try:
                retrying = AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=self._wait,
                    retry=retry_if_exception_type(RetryableProviderError),
                    before_sleep=self._log_retry,
                    sleep=self._sleep,
                )
                try:
                    async for attempt in retrying:
                        with attempt:
                            text = await self._attempt(provider, request, attempts)
                except RetryError as e:
                    last_error = e.last_attempt.exception()
                    logger.error(
                        f"[invoker] {provider.provider_id} chunk {chunk.chunk_index + 1}/{chunk.total_chunks}: "
                        f"all {len(attempts)} attempts failed, last error: {last_error}"
                    )
                    raise RetriesExhausted(provider.provider_id, attempts, last_error) from last_error

                quota.commit()
                committed = True
            finally:
                if not committed:
                    quota.release()

        logger.info(
            f"[invoker] {provider.provider_id} chunk {chunk.chunk_index + 1}/{chunk.total_chunks} "
            f"succeeded after {len(attempts)} attempt(s), {len(text)} chars"
        )
        return RecordBatch(provider.provider_id, chunk.chunk_index, text, attempts)

    async def _attempt(self, provider: ExtractionProvider, request: ExtractionRequest,
                       attempts: List[InvocationAttempt]) -> str:
        if self.call_interval > 0:
            await self._sleep(self.call_interval)

        record = InvocationAttempt(len(attempts) + 1, datetime.now(timezone.utc))
        attempts.append(record)
        try:
            text = await provider.complete(request)
        except asyncio.CancelledError:
            record.outcome = AttemptOutcome.FATAL_ERROR
            record.error = 'cancelled'
            raise
        except Exception as e:
            classified = classify_error(e)
            record.outcome = _outcome_for(classified)
            record.retry_after = getattr(classified, 'retry_after', None)
            record.error = str(classified)[:500]
            if classified is e:
                raise
            raise classified from e

        record.outcome = AttemptOutcome.SUCCESS
        return text
