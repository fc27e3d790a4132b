from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from tech_news_aggregator.adapters import ParseLimits, fetch_source
from tech_news_aggregator.cleanup import run_cleanup
from tech_news_aggregator.config import Config
from tech_news_aggregator.dedup import dedup_by_url
from tech_news_aggregator.extract import extract_page_meta
from tech_news_aggregator.heat import heat_at
from tech_news_aggregator.http import HTML_ACCEPT, FetchError, build_http_client, new_session
from tech_news_aggregator.normalize import (
    CONTENT_MAX_CHARS,
    canonical_url,
    classify_category,
    format_timestamp,
    normalize_text,
    normalize_timestamp,
    parse_timestamp,
    placeholder_image,
    template_summary,
    truncate_content,
)
from tech_news_aggregator.render import build_renderer
from tech_news_aggregator.storage import DuplicateUrlError, Store, StoreError
from tech_news_aggregator.summarize import Summarizer, build_summarizer
from tech_news_aggregator.types import (
    Article,
    Category,
    CycleResult,
    Engagement,
    RawContent,
    Settings,
    Source,
    SourceOutcome,
    utc_now,
)


logger = logging.getLogger(__name__)

MANUAL_SOURCE = "Manual"

SourceFetcher = Callable[[Source], Awaitable[list[RawContent]]]
PageFetcher = Callable[[str], Awaitable[str]]


class CycleAlreadyRunningError(RuntimeError):
    pass


class ManualAddError(Exception):
    """A pasted URL could not be added; `reason` is one of the REASONS codes."""

    REASONS = ("invalid_url", "already_exists", "unreachable", "unparsable")

    def __init__(self, reason: str, url: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.url = url


def _is_due(source: Source, now: datetime) -> bool:
    last = parse_timestamp(source.last_fetch_at) if source.last_fetch_at else None
    if last is None:
        return True
    return last + timedelta(minutes=source.fetch_interval_minutes) <= now


def select_sources(
    sources: list[Source],
    now: datetime,
    *,
    max_sources: int,
    due_only: bool = False,
) -> list[Source]:
    """Active sources for one cycle, highest priority first, capped at `max_sources`."""

    picked = [s for s in sources if s.is_active and (not due_only or _is_due(s, now))]
    picked.sort(key=lambda s: -s.priority)
    return picked[: max(0, max_sources)]


async def fetch_all(
    sources: list[Source],
    fetch_one: SourceFetcher,
    *,
    max_concurrent: int = 3,
    per_source_timeout: float = 20,
    cycle_timeout: float = 60,
) -> tuple[list[SourceOutcome], bool]:
    """Fetch every source with at most `max_concurrent` in flight.

    Each source gets its own timeout; a failing or slow source only fails
    itself. When `cycle_timeout` expires the unfinished sources are cancelled
    and reported as failed, and whatever already completed is returned.
    Returns the outcomes in source order and whether the cycle timed out.
    """

    sem = asyncio.Semaphore(max(1, max_concurrent))

    async def run(source: Source) -> SourceOutcome:
        async with sem:
            try:
                records = await asyncio.wait_for(fetch_one(source), timeout=per_source_timeout)
            except asyncio.TimeoutError:
                logger.warning("Source %s timed out after %.0fs", source.name, per_source_timeout)
                return SourceOutcome(source=source.name, error=f"timed out after {per_source_timeout:.0f}s")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Source %s failed: %s", source.name, e)
                return SourceOutcome(source=source.name, error=str(e) or e.__class__.__name__)
        logger.debug("Source %s returned %d records", source.name, len(records))
        return SourceOutcome(source=source.name, records=tuple(records))

    if not sources:
        return [], False

    tasks = [asyncio.create_task(run(s)) for s in sources]
    _done, pending = await asyncio.wait(tasks, timeout=cycle_timeout)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("Cycle timed out; %d sources abandoned", len(pending))

    outcomes: list[SourceOutcome] = []
    for source, task in zip(sources, tasks):
        if task in pending:
            outcomes.append(SourceOutcome(source=source.name, error="cycle timed out"))
        else:
            outcomes.append(task.result())
    return outcomes, bool(pending)


def build_article(
    raw: RawContent,
    source: Source,
    now: datetime,
    content_max_chars: int = CONTENT_MAX_CHARS,
) -> Optional[Article]:
    """Normalize one candidate record; None when it has no usable URL or title."""

    url = canonical_url(raw.link)
    title = normalize_text(raw.title)
    if not url or not title:
        return None

    content = truncate_content(raw.body or "", content_max_chars)
    published = normalize_timestamp(raw.published, fallback=now)
    engagement = raw.engagement
    heat = heat_at(engagement, source.weight, parse_timestamp(published) or now, now)
    return Article(
        id=str(uuid.uuid4()),
        title=title,
        url=url,
        source=source.name,
        category=source.category,
        published_at=published,
        fetched_at=format_timestamp(now),
        summary=template_summary(title, content, source.name),
        content=content,
        image_url=raw.image_url or placeholder_image(url),
        source_weight=source.weight,
        tags=tuple(t for t in raw.tags if t),
        heat_score=heat,
        view_count=engagement.views,
        like_count=engagement.likes,
        comment_count=engagement.comments,
        share_count=engagement.shares,
    )


class IngestionPipeline:
    """One ingestion cycle at a time: fetch, normalize, dedup, score, store.

    `fetcher` replaces the network fetch of a source (default: the source
    adapters over a shared aiohttp session); `summarizer_factory` builds the
    summarizer for the current settings (default: from config + settings).
    """

    def __init__(
        self,
        cfg: Config,
        store: Store,
        *,
        fetcher: SourceFetcher | None = None,
        page_fetcher: PageFetcher | None = None,
        summarizer_factory: Callable[[Settings], Optional[Summarizer]] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self._fetcher = fetcher
        self._page_fetcher = page_fetcher
        self._summarizer_factory = summarizer_factory or (lambda s: build_summarizer(cfg, s))
        self._clock = clock
        self._cycle_lock = threading.Lock()

        ingest = cfg.section("ingest")
        self.limits = ParseLimits(
            max_items_per_feed=int(ingest.get("max_items_per_feed", 12)),
            max_links_per_page=int(ingest.get("max_links_per_page", 12)),
        )
        self.content_max_chars = int(ingest.get("content_max_chars", CONTENT_MAX_CHARS))

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    async def run_cycle(self, settings: Settings, *, due_only: bool = False) -> CycleResult:
        """Run one ingestion cycle; raises CycleAlreadyRunningError if one is in flight."""

        if not self._cycle_lock.acquire(blocking=False):
            raise CycleAlreadyRunningError("an ingestion cycle is already running")
        try:
            if self._fetcher is not None:
                return await self._run(settings, self._fetcher, due_only)

            async with new_session(self.cfg) as session:
                client = build_http_client(self.cfg, session)
                renderer = build_renderer(self.cfg)
                try:
                    return await self._run(
                        settings,
                        lambda s: fetch_source(s, client, renderer, self.limits),
                        due_only,
                    )
                finally:
                    if renderer is not None:
                        await renderer.close()
        finally:
            self._cycle_lock.release()

    async def _run(self, settings: Settings, fetcher: SourceFetcher, due_only: bool) -> CycleResult:
        conc = self.cfg.section("concurrency")
        now = self._clock()
        cycle_timeout = float(conc.get("cycle_timeout_seconds", 60))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + cycle_timeout

        sources = select_sources(
            self.store.list_sources(active_only=True),
            now,
            max_sources=int(conc.get("max_sources_per_cycle", 20)),
            due_only=due_only,
        )
        logger.info("Starting ingestion cycle over %d sources", len(sources))

        outcomes, timed_out = await fetch_all(
            sources,
            fetcher,
            max_concurrent=int(conc.get("max_concurrent_sources", 3)),
            per_source_timeout=float(conc.get("per_source_timeout_seconds", 20)),
            cycle_timeout=cycle_timeout,
        )

        try:
            self.store.mark_fetched([s.name for s in sources], format_timestamp(now))
        except StoreError as e:
            logger.error("Could not record fetch times: %s", e)

        by_name = {s.name: s for s in sources}
        failed_sources = sum(1 for o in outcomes if not o.ok)
        failed_records = 0
        candidates: list[Article] = []
        for o in outcomes:
            if not o.ok:
                continue
            source = by_name[o.source]
            for raw in o.records:
                try:
                    a = build_article(raw, source, now, self.content_max_chars)
                except Exception as e:
                    logger.warning("Dropping record %r from %s: %s", raw.link, source.name, e)
                    failed_records += 1
                    continue
                if a is None:
                    logger.debug("Dropping record without URL/title from %s", source.name)
                    failed_records += 1
                    continue
                candidates.append(a)

        try:
            dedup = dedup_by_url(candidates, key=lambda a: a.url, known_urls=self.store.known_urls)
        except StoreError as e:
            logger.error("Dedup lookup failed, nothing stored this cycle: %s", e)
            return CycleResult(
                inserted_count=0,
                failed_source_count=failed_sources,
                failed_records=len(candidates) + failed_records,
                timed_out=timed_out,
            )

        inserted: list[Article] = []
        skipped = dedup.skipped
        for a in dedup.accepted:
            try:
                inserted.append(self.store.insert_article(a))
            except DuplicateUrlError:
                skipped += 1
            except StoreError as e:
                logger.error("Storing %s failed: %s", a.url, e)
                failed_records += 1

        summarizer = self._ingest_summarizer(inserted, settings)
        if summarizer is not None:
            # generated summaries share the cycle budget with fetching
            remaining = max(0.0, deadline - loop.time())
            try:
                await asyncio.wait_for(self._summarize_new(inserted, summarizer), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning("Cycle time ran out during summaries; the rest keep templated summaries")
                timed_out = True

        try:
            self.store.recompute_heat(now)
            run_cleanup(self.store, settings, now)
        except StoreError as e:
            logger.error("Post-cycle maintenance failed: %s", e)

        result = CycleResult(
            inserted_count=len(inserted),
            failed_source_count=failed_sources,
            skipped_duplicates=skipped,
            failed_records=failed_records,
            timed_out=timed_out,
        )
        logger.info("Ingestion cycle done: %s", result.describe())
        return result

    def _ingest_summarizer(self, inserted: list[Article], settings: Settings) -> Optional[Summarizer]:
        ingest = self.cfg.section("ingest")
        if not inserted or not settings.ai_summary_enabled or not ingest.get("summarize_on_ingest", True):
            return None
        return self._summarizer_factory(settings)

    async def _summarize_new(self, inserted: list[Article], summarizer: Summarizer) -> None:
        ingest = self.cfg.section("ingest")
        cap = int(ingest.get("max_ai_summaries_per_cycle", 10))
        for a in sorted(inserted, key=lambda x: -x.heat_score)[:cap]:
            outcome = await summarizer.summarize_or_fallback(a.title, a.content, a.source)
            if not outcome.is_ai:
                continue
            try:
                self.store.update_summary(a.id, outcome.summary, is_ai=True)
            except StoreError as e:
                logger.error("Saving summary of %s failed: %s", a.url, e)

    async def _fetch_page(self, url: str) -> str:
        if self._page_fetcher is not None:
            return await self._page_fetcher(url)
        async with new_session(self.cfg) as session:
            client = build_http_client(self.cfg, session)
            return await client.get_text(url, accept=HTML_ACCEPT)

    async def manual_add(self, url: str) -> Article:
        """Fetch a single pasted URL and store it as a manual article.

        Raises ManualAddError with reason invalid_url, already_exists,
        unreachable or unparsable.
        """

        key = canonical_url(url)
        if not key:
            raise ManualAddError("invalid_url", url, f"not an http(s) URL: {url!r}")
        if self.store.url_exists(key):
            raise ManualAddError("already_exists", url, f"already stored: {key}")

        try:
            html = await self._fetch_page(url.strip())
        except FetchError as e:
            raise ManualAddError("unreachable", url, f"could not fetch {url}: {e}") from e

        meta = extract_page_meta(html, base_url=url.strip())
        title = normalize_text(meta.title or "")
        if not title:
            raise ManualAddError("unparsable", url, f"no title found at {url}")

        now = self._clock()
        content = truncate_content(meta.description or meta.text, self.content_max_chars)
        weight = float(self.cfg.section("ingest").get("manual_source_weight", 0.6))
        article = Article(
            id=str(uuid.uuid4()),
            title=title,
            url=key,
            source=MANUAL_SOURCE,
            category=classify_category(title, content, default=Category.TECH),
            published_at=format_timestamp(now),
            fetched_at=format_timestamp(now),
            summary=template_summary(title, content, MANUAL_SOURCE),
            content=content,
            image_url=meta.image_url or placeholder_image(key),
            source_weight=weight,
            heat_score=heat_at(Engagement(), weight, now, now),
            is_manual=True,
        )
        try:
            stored = self.store.insert_article(article)
        except DuplicateUrlError as e:
            raise ManualAddError("already_exists", url, f"already stored: {key}") from e
        logger.info("Manually added %s", key)
        return stored
