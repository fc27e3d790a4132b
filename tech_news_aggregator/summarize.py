"""Generated summaries through an OpenAI-compatible chat completions endpoint.

Transient failures (connection errors, timeouts, rate limiting, 5xx) are
retried with growing delays; anything else fails immediately. Calls are
spaced by a fixed minimum interval. Callers that must always end up with a
summary use `summarize_or_fallback`, which degrades to the templated summary.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from tech_news_aggregator.config import Config, env_ai_defaults
from tech_news_aggregator.http import DomainRateLimiter
from tech_news_aggregator.normalize import template_summary
from tech_news_aggregator.storage import StoreError
from tech_news_aggregator.types import (
    Article,
    ProgressCallback,
    Settings,
    SummaryComplete,
    SummaryProgress,
    SummaryStart,
)


logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "Summarize the following content in at most 100 words."


class SummarizerError(Exception):
    """Base error raised when a summary cannot be produced."""

    def __init__(self, message: str, error_code: str = "summarizer_error") -> None:
        super().__init__(message)
        self.error_code = error_code


class SummarizerUnavailableError(SummarizerError):
    """Endpoint unreachable, timed out, rate limited or failing; worth retrying."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "summarizer_unavailable")


class SummarizerAuthError(SummarizerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "summarizer_auth_failed")


class SummarizerInvalidResponseError(SummarizerError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "summarizer_response_invalid")


class SummarizerNotConfiguredError(SummarizerError):
    def __init__(self, message: str = "AI summaries need a base URL and an API key") -> None:
        super().__init__(message, "summarizer_not_configured")


@dataclass(frozen=True)
class SummaryOutcome:
    summary: str
    is_ai: bool
    error: Optional[str] = None


class Summarizer:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        client: Any = None,
        max_attempts: int = 3,
        backoff_seconds: Sequence[float] = (2, 4, 8),
        interval_seconds: float = 1.0,
        timeout_seconds: float = 30,
        max_input_chars: int = 3000,
        max_tokens: int = 200,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.model = model
        self.client = client or AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = list(backoff_seconds) or [0.0]
        self.max_input_chars = max_input_chars
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self._limiter = DomainRateLimiter(max_requests_per_period=1, period_seconds=float(interval_seconds))
        self._limiter_key = base_url or "summarizer"

    def _handle_errors(self, error: Exception) -> SummarizerError:
        if isinstance(error, APITimeoutError):
            logger.warning("Summary request timed out: %s", error)
            return SummarizerUnavailableError("summary request timed out")
        if isinstance(error, APIConnectionError):
            logger.warning("Summary endpoint unreachable: %s", error)
            return SummarizerUnavailableError("summary endpoint unreachable")
        if isinstance(error, RateLimitError):
            logger.warning("Summary endpoint rate limited: %s", error)
            return SummarizerUnavailableError("summary endpoint rate limited")
        if isinstance(error, (AuthenticationError, PermissionDeniedError)):
            logger.error("Summary endpoint rejected the credentials: %s", error)
            return SummarizerAuthError("summary endpoint rejected the credentials")
        if isinstance(error, APIStatusError):
            if error.status_code >= 500:
                logger.warning("Summary endpoint error %s: %s", error.status_code, error)
                return SummarizerUnavailableError(f"summary endpoint error ({error.status_code})")
            logger.error("Summary request rejected (%s): %s", error.status_code, error)
            return SummarizerError(f"summary request rejected ({error.status_code})")
        if isinstance(error, APIError):
            logger.warning("Summary endpoint error: %s", error)
            return SummarizerUnavailableError("summary endpoint error")
        if isinstance(error, (IndexError, AttributeError, TypeError, ValueError)):
            logger.error("Unexpected summary response: %s", error)
            return SummarizerInvalidResponseError("summary endpoint returned an unexpected response")
        logger.error("Summary request failed: %s", error)
        return SummarizerError("summary request failed")

    def _user_message(self, title: str, content: str) -> str:
        body = content[: self.max_input_chars]
        if title:
            return f"Title: {title}\n\nContent: {body}"
        return body

    async def _complete_once(self, title: str, content: str) -> str:
        await self._limiter.acquire(self._limiter_key)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": self._user_message(title, content)},
                ],
                max_tokens=self.max_tokens,
            )
            text = response.choices[0].message.content
            if not text or not text.strip():
                raise ValueError("empty summary")
            return text.strip()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise self._handle_errors(e) from e

    async def summarize(self, content: str, title: str = "") -> str:
        """Summary of `content`, retrying transient failures.

        Raises the last SummarizerError once attempts are exhausted.
        """

        attempt = 1
        while True:
            try:
                return await self._complete_once(title, content)
            except SummarizerUnavailableError as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.backoff_seconds[min(attempt - 1, len(self.backoff_seconds) - 1)]
                logger.warning(
                    "Summary attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def summarize_or_fallback(self, title: str, content: str, source: str = "") -> SummaryOutcome:
        try:
            return SummaryOutcome(summary=await self.summarize(content or title, title=title), is_ai=True)
        except SummarizerError as e:
            logger.info("Using templated summary for %r: %s", title, e)
            return SummaryOutcome(summary=template_summary(title, content, source), is_ai=False, error=str(e))


def resolve_ai_settings(settings: Settings) -> Settings:
    """Fill empty AI settings from AI_BASE_URL / AI_API_KEY / AI_MODEL."""

    env = env_ai_defaults()
    return replace(
        settings,
        ai_base_url=settings.ai_base_url or env["ai_base_url"],
        ai_api_key=settings.ai_api_key or env["ai_api_key"],
        ai_model=settings.ai_model or env["ai_model"],
    )


def build_summarizer(cfg: Config, settings: Settings) -> Optional[Summarizer]:
    """Summarizer for the current settings, or None when no endpoint is configured."""

    s = resolve_ai_settings(settings)
    if not s.ai_configured:
        return None
    sc = cfg.section("summary")
    return Summarizer(
        base_url=s.ai_base_url,
        api_key=s.ai_api_key,
        model=s.ai_model or str(sc.get("default_model") or "gpt-4o-mini"),
        max_attempts=int(sc.get("max_attempts", 3)),
        backoff_seconds=[float(x) for x in sc.get("backoff_seconds") or [2, 4, 8]],
        interval_seconds=float(sc.get("interval_seconds", 1.0)),
        timeout_seconds=float(sc.get("request_timeout_seconds", 30)),
        max_input_chars=int(sc.get("max_input_chars", 3000)),
        max_tokens=int(sc.get("max_tokens", 200)),
        system_prompt=str(sc.get("system_prompt") or DEFAULT_SYSTEM_PROMPT),
    )


async def regenerate_summaries(
    store,
    summarizer: Summarizer,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> int:
    """Rewrite every templated summary, reporting progress as it goes.

    Each record ends up with either a generated summary or, when generation
    keeps failing, a fresh templated one; both count as updated. A record the
    store can no longer save (deleted meanwhile) is reported and skipped. Setting
    `cancel_event` stops the batch before the next record. Returns the number
    of records updated.
    """

    def emit(event) -> None:
        if on_progress is not None:
            on_progress(event)

    articles: list[Article] = store.articles_needing_summary()
    total = len(articles)
    updated = 0
    processed = 0
    cancelled = False
    emit(SummaryStart(total=total))
    logger.info("Regenerating %d summaries", total)

    for i, a in enumerate(articles, start=1):
        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
            logger.info("Summary regeneration cancelled after %d of %d", processed, total)
            break
        outcome = await summarizer.summarize_or_fallback(a.title, a.content, a.source)
        last_error = outcome.error
        try:
            store.update_summary(a.id, outcome.summary, outcome.is_ai)
        except StoreError as e:
            logger.error("Saving summary of %r failed: %s", a.title, e)
            last_error = str(e)
        else:
            updated += 1
        processed = i
        emit(SummaryProgress(current=i, total=total, title=a.title, updated=updated, last_error=last_error))

    emit(SummaryComplete(total_updated=updated, total_processed=processed, cancelled=cancelled))
    return updated
