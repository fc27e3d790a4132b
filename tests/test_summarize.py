"""Tests for summary generation, retries and batch regeneration.

The OpenAI SDK is mocked so no request leaves the process.
"""

from __future__ import annotations

import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_article, make_config
from openai import (
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
)

from tech_news_aggregator.summarize import (
    Summarizer,
    SummarizerAuthError,
    SummarizerError,
    SummarizerInvalidResponseError,
    SummarizerUnavailableError,
    build_summarizer,
    regenerate_summaries,
)
from tech_news_aggregator.types import Settings, SummaryComplete, SummaryProgress, SummaryStart


def _completion(text: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _status_error(cls, status: int):
    return cls(message=f"status {status}", response=MagicMock(status_code=status), body={})


@pytest.fixture
def client() -> MagicMock:
    c = MagicMock()
    c.chat.completions.create = AsyncMock(return_value=_completion(" A short summary. "))
    return c


@pytest.fixture
def summarizer(client) -> Summarizer:
    return Summarizer(
        base_url="https://llm.example.com/v1",
        api_key="sk-test",
        model="test-model",
        client=client,
        backoff_seconds=(0, 0, 0),
        interval_seconds=0,
    )


class TestSummarize:
    async def test_success(self, summarizer, client):
        out = await summarizer.summarize("long body", title="Title")

        assert out == "A short summary."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][1]["content"].startswith("Title: Title")

    async def test_input_is_truncated(self, summarizer, client):
        await summarizer.summarize("x" * 10000)

        sent = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert len(sent) == 3000

    async def test_transient_errors_are_retried(self, summarizer, client):
        client.chat.completions.create = AsyncMock(
            side_effect=[
                APIConnectionError(request=None),
                _status_error(InternalServerError, 503),
                _completion("third time lucky"),
            ]
        )

        assert await summarizer.summarize("body") == "third time lucky"
        assert client.chat.completions.create.await_count == 3

    async def test_gives_up_after_max_attempts(self, summarizer, client):
        client.chat.completions.create = AsyncMock(side_effect=APITimeoutError(request=None))

        with pytest.raises(SummarizerUnavailableError):
            await summarizer.summarize("body")
        assert client.chat.completions.create.await_count == 3

    async def test_auth_failures_are_not_retried(self, summarizer, client):
        client.chat.completions.create = AsyncMock(side_effect=_status_error(AuthenticationError, 401))

        with pytest.raises(SummarizerAuthError) as exc:
            await summarizer.summarize("body")
        assert exc.value.error_code == "summarizer_auth_failed"
        assert client.chat.completions.create.await_count == 1

    async def test_client_errors_are_not_retried(self, summarizer, client):
        client.chat.completions.create = AsyncMock(side_effect=_status_error(BadRequestError, 400))

        with pytest.raises(SummarizerError):
            await summarizer.summarize("body")
        assert client.chat.completions.create.await_count == 1

    async def test_empty_reply_is_invalid(self, summarizer, client):
        client.chat.completions.create = AsyncMock(return_value=_completion("   "))

        with pytest.raises(SummarizerInvalidResponseError):
            await summarizer.summarize("body")

    async def test_fallback_to_template(self, summarizer, client):
        client.chat.completions.create = AsyncMock(side_effect=APIConnectionError(request=None))

        outcome = await summarizer.summarize_or_fallback("Big news", "", "HN")

        assert outcome.is_ai is False
        assert outcome.summary == "[HN] Big news"
        assert outcome.error


class TestBuildSummarizer:
    def test_none_without_endpoint(self, monkeypatch):
        monkeypatch.delenv("AI_BASE_URL", raising=False)
        monkeypatch.delenv("AI_API_KEY", raising=False)

        assert build_summarizer(make_config(), Settings()) is None

    def test_environment_fills_missing_settings(self, monkeypatch):
        monkeypatch.setenv("AI_BASE_URL", "https://llm.example.com/v1")
        monkeypatch.setenv("AI_API_KEY", "sk-env")
        monkeypatch.delenv("AI_MODEL", raising=False)

        s = build_summarizer(make_config(), Settings())

        assert s is not None
        assert s.model == "gpt-4o-mini"


class TestRegenerate:
    def _seed(self, store, n=3):
        return [
            store.insert_article(make_article(f"https://example.com/{i}", title=f"Story {i}", heat_score=float(10 - i)))
            for i in range(n)
        ]

    async def test_reports_progress_and_updates_every_record(self, store, summarizer, client):
        seeded = self._seed(store)
        client.chat.completions.create = AsyncMock(
            side_effect=[_completion("one")] + [APIConnectionError(request=None)] * 3 + [_completion("three")]
        )
        events = []

        updated = await regenerate_summaries(store, summarizer, on_progress=events.append)

        assert updated == 3
        assert events[0] == SummaryStart(total=3)
        progress = [e for e in events if isinstance(e, SummaryProgress)]
        assert [p.current for p in progress] == [1, 2, 3]
        assert [p.updated for p in progress] == [1, 2, 3]
        assert progress[0].last_error is None
        assert progress[1].last_error is not None
        assert events[-1] == SummaryComplete(total_updated=3, total_processed=3, cancelled=False)

        first, second, third = (store.get_article(a.id) for a in seeded)
        assert (first.summary, first.summary_is_ai) == ("one", True)
        assert second.summary_is_ai is False and second.summary.startswith("[Test Source] Story 1")
        assert (third.summary, third.summary_is_ai) == ("three", True)
        assert store.articles_needing_summary() == [second]

    async def test_cancel_stops_before_next_record(self, store, summarizer):
        self._seed(store)
        cancel = threading.Event()
        events = []

        def on_progress(event):
            events.append(event)
            if isinstance(event, SummaryProgress):
                cancel.set()

        updated = await regenerate_summaries(store, summarizer, on_progress=on_progress, cancel_event=cancel)

        assert updated == 1
        assert events[-1] == SummaryComplete(total_updated=1, total_processed=1, cancelled=True)
        assert len(store.articles_needing_summary()) == 2

    async def test_record_deleted_mid_batch_is_skipped(self, store, summarizer, client):
        seeded = self._seed(store)

        async def create(**kwargs):
            if client.chat.completions.create.await_count == 1:
                with store.transaction() as conn:
                    conn.execute("DELETE FROM articles WHERE id = ?", (seeded[1].id,))
            return _completion("generated")

        client.chat.completions.create = AsyncMock(side_effect=create)
        events = []

        updated = await regenerate_summaries(store, summarizer, on_progress=events.append)

        assert updated == 2
        progress = [e for e in events if isinstance(e, SummaryProgress)]
        assert [p.current for p in progress] == [1, 2, 3]
        assert [p.updated for p in progress] == [1, 1, 2]
        assert seeded[1].id in progress[1].last_error
        assert events[-1] == SummaryComplete(total_updated=2, total_processed=3)
        assert store.get_article(seeded[2].id).summary == "generated"

    async def test_empty_batch(self, store, summarizer):
        events = []

        assert await regenerate_summaries(store, summarizer, on_progress=events.append) == 0
        assert events == [SummaryStart(total=0), SummaryComplete(total_updated=0, total_processed=0)]


class TestDefaultPacing:
    """Backoff and call spacing as configured out of the box."""

    @pytest.fixture
    def paced(self, client) -> Summarizer:
        s = build_summarizer(make_config(), Settings(ai_base_url="https://llm.example.com/v1", ai_api_key="sk-test"))
        s.client = client
        return s

    async def test_backoff_waits_two_then_four_seconds(self, paced, client, monkeypatch):
        paced._limiter = MagicMock(acquire=AsyncMock())
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        client.chat.completions.create = AsyncMock(side_effect=APIConnectionError(request=None))

        with pytest.raises(SummarizerUnavailableError):
            await paced.summarize("body")

        assert client.chat.completions.create.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_calls_are_spaced_by_one_second(self, paced, client):
        loop = asyncio.get_running_loop()
        started: list[float] = []

        async def create(**kwargs):
            started.append(loop.time())
            return _completion("ok")

        client.chat.completions.create = AsyncMock(side_effect=create)

        await paced.summarize("first")
        await paced.summarize("second")

        assert started[1] - started[0] >= 0.95
