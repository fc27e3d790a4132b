"""Tests for the ingestion cycle and manual adds.

Sources are served by fake fetchers so the cycle runs without network access.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from conftest import NOW, make_article, make_config, make_source

from tech_news_aggregator.http import FetchError
from tech_news_aggregator.normalize import format_timestamp
from tech_news_aggregator.pipeline import (
    MANUAL_SOURCE,
    CycleAlreadyRunningError,
    IngestionPipeline,
    ManualAddError,
    fetch_all,
    select_sources,
)
from tech_news_aggregator.summarize import SummaryOutcome
from tech_news_aggregator.types import Category, Engagement, RawContent, Settings


def _raw(source: str, n: int) -> list[RawContent]:
    return [RawContent(title=f"{source} story {i}", link=f"https://{source.lower()}.example.com/{i}") for i in range(n)]


def _pipeline(cfg, store, fetcher=None, **kw) -> IngestionPipeline:
    return IngestionPipeline(cfg, store, fetcher=fetcher, clock=lambda: NOW, **kw)


class TestSelectSources:
    def test_priority_order_and_cap(self):
        sources = [make_source("A", priority=1), make_source("B", priority=5), make_source("C", is_active=False)]

        assert [s.name for s in select_sources(sources, NOW, max_sources=5)] == ["B", "A"]
        assert [s.name for s in select_sources(sources, NOW, max_sources=1)] == ["B"]

    def test_due_only_skips_recently_fetched(self):
        recent = make_source("Recent", last_fetch_at=format_timestamp(NOW - timedelta(minutes=10)))
        stale = make_source("Stale", last_fetch_at=format_timestamp(NOW - timedelta(hours=2)))
        never = make_source("Never")

        picked = select_sources([recent, stale, never], NOW, max_sources=10, due_only=True)

        assert {s.name for s in picked} == {"Stale", "Never"}


class TestFetchAll:
    async def test_failures_are_isolated(self):
        sources = [make_source(n) for n in "ABCDE"]

        async def fetch(source):
            if source.name in ("B", "D"):
                raise FetchError(source.url, "HTTP 500", status=500)
            return _raw(source.name, 2)

        outcomes, timed_out = await fetch_all(sources, fetch)

        assert not timed_out
        assert [o.source for o in outcomes] == list("ABCDE")
        assert [o.ok for o in outcomes] == [True, False, True, False, True]
        assert "HTTP 500" in outcomes[1].error

    async def test_concurrency_is_bounded(self):
        in_flight = 0
        peak = 0

        async def fetch(source):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return []

        await fetch_all([make_source(f"S{i}") for i in range(10)], fetch, max_concurrent=3)

        assert peak == 3

    async def test_slow_source_times_out_alone(self):
        async def fetch(source):
            if source.name == "Slow":
                await asyncio.sleep(5)
            return _raw(source.name, 1)

        outcomes, timed_out = await fetch_all(
            [make_source("Slow"), make_source("Fast")], fetch, per_source_timeout=0.05
        )

        assert not timed_out
        assert not outcomes[0].ok and "timed out" in outcomes[0].error
        assert outcomes[1].ok

    async def test_cycle_timeout_keeps_finished_sources(self):
        async def fetch(source):
            if source.name == "Hang":
                await asyncio.sleep(5)
            return _raw(source.name, 1)

        outcomes, timed_out = await fetch_all(
            [make_source("Done"), make_source("Hang")], fetch, per_source_timeout=10, cycle_timeout=0.1
        )

        assert timed_out
        assert outcomes[0].ok and len(outcomes[0].records) == 1
        assert outcomes[1].error == "cycle timed out"


class TestRunCycle:
    async def test_partial_failure_still_stores_the_rest(self, cfg, store):
        store.seed_sources([make_source(n) for n in ("A", "B", "C", "D", "E")])

        async def fetch(source):
            if source.name in ("B", "D"):
                raise FetchError(source.url, "connection refused")
            return _raw(source.name, 1)

        result = await _pipeline(cfg, store, fetch).run_cycle(Settings())

        assert result.failed_source_count == 2
        assert result.inserted_count == 3
        assert store.count_articles() == 3
        assert all(s.last_fetch_at == format_timestamp(NOW) for s in store.list_sources())

    async def test_second_cycle_inserts_nothing(self, cfg, store):
        store.seed_sources([make_source("A")])

        async def fetch(source):
            return _raw("A", 3)

        pipeline = _pipeline(cfg, store, fetch)
        first = await pipeline.run_cycle(Settings())
        second = await pipeline.run_cycle(Settings())

        assert first.inserted_count == 3
        assert second.inserted_count == 0
        assert second.skipped_duplicates == 3
        assert store.count_articles() == 3

    async def test_same_url_twice_in_one_batch(self, cfg, store):
        store.seed_sources([make_source("A"), make_source("B")])

        async def fetch(source):
            return [RawContent(title=f"from {source.name}", link="https://example.com/shared/")]

        result = await _pipeline(cfg, store, fetch).run_cycle(Settings())

        assert result.inserted_count == 1
        assert result.skipped_duplicates == 1
        assert store.get_article_by_url("https://example.com/shared") is not None

    async def test_archived_and_deleted_urls_are_not_reingested(self, cfg, store):
        store.seed_sources([make_source("A")])
        store.insert_article(make_article("https://a.example.com/0", is_archived=True))
        five_days_ago = format_timestamp(NOW - timedelta(days=5))
        store.insert_article(make_article("https://a.example.com/1", published_at=five_days_ago, fetched_at=five_days_ago))

        async def fetch(source):
            return _raw("A", 3)

        pipeline = _pipeline(cfg, store, fetch)
        settings = Settings(min_heat_score=0.0)
        await pipeline.run_cycle(settings)
        # /1 was purged by the first cycle's cleanup and must stay gone
        assert store.get_article_by_url("https://a.example.com/1") is None

        result = await pipeline.run_cycle(settings)

        assert result.inserted_count == 0
        assert store.get_article_by_url("https://a.example.com/0").is_archived
        assert store.get_article_by_url("https://a.example.com/1") is None

    async def test_records_without_url_are_counted_not_fatal(self, cfg, store):
        store.seed_sources([make_source("A")])

        async def fetch(source):
            return [RawContent(title="no link", link=""), RawContent(title="ok", link="https://example.com/ok")]

        result = await _pipeline(cfg, store, fetch).run_cycle(Settings())

        assert result.inserted_count == 1
        assert result.failed_records == 1

    async def test_article_fields(self, cfg, store):
        store.seed_sources([make_source("Lab", category=Category.RESEARCH, weight=0.9)])

        async def fetch(source):
            return [
                RawContent(
                    title="  New   model  ",
                    link="https://lab.example.com/post?utm_source=rss",
                    body="Weights and evaluation results.",
                    published="2024-03-01T10:00:00Z",
                    engagement=Engagement(likes=2),
                )
            ]

        await _pipeline(cfg, store, fetch).run_cycle(Settings())

        a = store.get_article_by_url("https://lab.example.com/post")
        assert a.title == "New model"
        assert a.category is Category.RESEARCH
        assert a.published_at == "2024-03-01T10:00:00+00:00"
        assert a.fetched_at == format_timestamp(NOW)
        assert a.summary.startswith("[Lab] New model")
        assert a.image_url.startswith("https://picsum.photos/seed/")
        # 2 likes * 3 + 0.9 * 15 - 3h * 0.5
        assert a.heat_score == pytest.approx(6 + 13.5 - 1.5)

    async def test_only_one_cycle_at_a_time(self, cfg, store):
        store.seed_sources([make_source("A")])
        release = asyncio.Event()
        started = asyncio.Event()

        async def fetch(source):
            started.set()
            await release.wait()
            return _raw("A", 1)

        pipeline = _pipeline(cfg, store, fetch)
        first = asyncio.create_task(pipeline.run_cycle(Settings()))
        await started.wait()

        assert pipeline.cycle_running
        with pytest.raises(CycleAlreadyRunningError):
            await pipeline.run_cycle(Settings())

        release.set()
        result = await first
        assert result.inserted_count == 1
        assert not pipeline.cycle_running

    async def test_cycle_timeout_reports_and_keeps_partial_results(self, store):
        cfg = make_config(
            ingest={"summarize_on_ingest": False},
            concurrency={"cycle_timeout_seconds": 0.1, "per_source_timeout_seconds": 10},
        )
        store.seed_sources([make_source("Quick"), make_source("Stuck")])

        async def fetch(source):
            if source.name == "Stuck":
                await asyncio.sleep(5)
            return _raw(source.name, 2)

        result = await _pipeline(cfg, store, fetch).run_cycle(Settings())

        assert result.timed_out
        assert result.inserted_count == 2
        assert result.failed_source_count == 1

    async def test_new_articles_get_generated_summaries(self, store):
        cfg = make_config(ingest={"summarize_on_ingest": True, "max_ai_summaries_per_cycle": 1})
        store.seed_sources([make_source("A")])

        class FakeSummarizer:
            calls = 0

            async def summarize_or_fallback(self, title, content, source=""):
                FakeSummarizer.calls += 1
                return SummaryOutcome(summary=f"AI: {title}", is_ai=True)

        async def fetch(source):
            return _raw("A", 2)

        pipeline = _pipeline(cfg, store, fetch, summarizer_factory=lambda s: FakeSummarizer())
        await pipeline.run_cycle(Settings())

        assert FakeSummarizer.calls == 1
        ai = [a for a in store.list_articles().items if a.summary_is_ai]
        assert len(ai) == 1 and ai[0].summary.startswith("AI: ")

    async def test_slow_summaries_stay_within_cycle_timeout(self, store):
        cfg = make_config(
            ingest={"summarize_on_ingest": True, "max_ai_summaries_per_cycle": 10},
            concurrency={"cycle_timeout_seconds": 0.3},
        )
        store.seed_sources([make_source("A")])

        class SlowSummarizer:
            async def summarize_or_fallback(self, title, content, source=""):
                await asyncio.sleep(0.2)
                return SummaryOutcome(summary=f"AI: {title}", is_ai=True)

        async def fetch(source):
            return _raw("A", 5)

        loop = asyncio.get_running_loop()
        started = loop.time()
        pipeline = _pipeline(cfg, store, fetch, summarizer_factory=lambda s: SlowSummarizer())
        result = await pipeline.run_cycle(Settings())

        assert loop.time() - started < 0.8
        assert result.timed_out
        assert result.inserted_count == 5
        ai = [a for a in store.list_articles().items if a.summary_is_ai]
        assert len(ai) < 5
        assert not pipeline.cycle_running

    async def test_summaries_skipped_when_disabled(self, store):
        cfg = make_config(ingest={"summarize_on_ingest": True})
        store.seed_sources([make_source("A")])

        def factory(settings):
            raise AssertionError("summarizer must not be built")

        async def fetch(source):
            return _raw("A", 1)

        result = await _pipeline(cfg, store, fetch, summarizer_factory=factory).run_cycle(
            Settings(ai_summary_enabled=False)
        )

        assert result.inserted_count == 1


PAGE = """
<html><head>
  <title>Fallback title</title>
  <meta property="og:title" content="A pasted article">
  <meta name="description" content="What the article says.">
  <meta property="og:image" content="/img/lead.png">
</head><body><article><p>Body text.</p></article></body></html>
"""


class TestManualAdd:
    async def test_adds_manual_article(self, cfg, store):
        async def page(url):
            return PAGE

        a = await _pipeline(cfg, store, page_fetcher=page).manual_add("https://blog.example.com/post/")

        assert a.url == "https://blog.example.com/post"
        assert a.source == MANUAL_SOURCE
        assert a.is_manual
        assert a.title == "A pasted article"
        assert a.image_url == "https://blog.example.com/img/lead.png"
        assert a.source_weight == 0.6
        assert a.heat_score == pytest.approx(0.6 * 15)
        assert store.get_article(a.id).is_manual

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/x"])
    async def test_invalid_url(self, cfg, store, url):
        with pytest.raises(ManualAddError) as exc:
            await _pipeline(cfg, store).manual_add(url)
        assert exc.value.reason == "invalid_url"

    async def test_already_exists(self, cfg, store):
        store.insert_article(make_article("https://blog.example.com/post"))

        async def page(url):
            raise AssertionError("must not fetch a known URL")

        with pytest.raises(ManualAddError) as exc:
            await _pipeline(cfg, store, page_fetcher=page).manual_add("https://BLOG.example.com/post")
        assert exc.value.reason == "already_exists"

    async def test_unreachable(self, cfg, store):
        async def page(url):
            raise FetchError(url, "HTTP 404", status=404)

        with pytest.raises(ManualAddError) as exc:
            await _pipeline(cfg, store, page_fetcher=page).manual_add("https://blog.example.com/gone")
        assert exc.value.reason == "unreachable"
        assert store.count_articles() == 0

    async def test_unparsable(self, cfg, store):
        async def page(url):
            return "<html><body><p>no title anywhere</p></body></html>"

        with pytest.raises(ManualAddError) as exc:
            await _pipeline(cfg, store, page_fetcher=page).manual_add("https://blog.example.com/blank")
        assert exc.value.reason == "unparsable"
