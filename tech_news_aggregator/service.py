"""Operations offered to a presentation layer (desktop UI, web API or the CLI).

`NewsService` owns the store, the ingestion pipeline and the single in-memory
copy of the settings. Settings are persisted on every update, and each
cycle or batch reads the current copy when it starts.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import fields, replace
from typing import Any, Optional

from tech_news_aggregator.cleanup import run_cleanup
from tech_news_aggregator.config import Config, load_default_sources
from tech_news_aggregator.pipeline import IngestionPipeline, PageFetcher, SourceFetcher
from tech_news_aggregator.search import MAX_RESULTS, SearchFilters
from tech_news_aggregator.storage import Store
from tech_news_aggregator.summarize import (
    Summarizer,
    SummarizerNotConfiguredError,
    build_summarizer,
    regenerate_summaries,
)
from tech_news_aggregator.types import (
    Article,
    Category,
    CleanupResult,
    CycleResult,
    ListResult,
    ProgressCallback,
    Settings,
    Source,
    utc_now,
)


logger = logging.getLogger(__name__)

_SETTING_NAMES = {f.name for f in fields(Settings)}


class NewsService:
    def __init__(
        self,
        cfg: Config,
        store: Store | None = None,
        *,
        fetcher: SourceFetcher | None = None,
        page_fetcher: PageFetcher | None = None,
        summarizer_factory=None,
    ) -> None:
        self.cfg = cfg
        self.store = store or Store(cfg.db_path, seed_sources=load_default_sources())
        self._summarizer_factory = summarizer_factory or (lambda s: build_summarizer(cfg, s))
        self.pipeline = IngestionPipeline(
            cfg,
            self.store,
            fetcher=fetcher,
            page_fetcher=page_fetcher,
            summarizer_factory=self._summarizer_factory,
        )
        self._settings_lock = threading.Lock()
        self._settings = self.store.get_settings()

    def close(self) -> None:
        self.store.close()

    # ---- settings ----

    def get_settings(self) -> Settings:
        with self._settings_lock:
            return self._settings

    def update_settings(self, **changes: Any) -> Settings:
        """Apply and persist setting changes; unknown names raise ValueError."""

        unknown = set(changes) - _SETTING_NAMES
        if unknown:
            raise ValueError(f"unknown settings: {', '.join(sorted(unknown))}")
        with self._settings_lock:
            updated = replace(self._settings, **changes)
            if updated.max_article_age_days < 1 or updated.max_articles < 0 or updated.purge_grace_hours < 0:
                raise ValueError("cleanup thresholds must be positive")
            self.store.save_settings(updated)
            self._settings = updated
        logger.info("Settings updated: %s", ", ".join(sorted(changes)))
        return updated

    # ---- ingestion ----

    async def run_ingestion_cycle_once(self, *, due_only: bool = False) -> CycleResult:
        return await self.pipeline.run_cycle(self.get_settings(), due_only=due_only)

    async def manual_add(self, url: str) -> Article:
        return await self.pipeline.manual_add(url)

    # ---- reading ----

    def list_articles(
        self,
        page: int = 1,
        page_size: int = 20,
        category: str | None = None,
        order: str = "latest",
    ) -> ListResult:
        return self.store.list_articles(page=page, page_size=page_size, category=category, order=order)

    def search(
        self,
        keyword: str,
        *,
        category: str | None = None,
        source: str | None = None,
        since: str | None = None,
        until: str | None = None,
        limit: int = MAX_RESULTS,
    ) -> list[Article]:
        if category and category.lower() == "all":
            category = None
        filters = SearchFilters(
            category=Category.parse(category).value if category else None,
            source=source,
            since=since,
            until=until,
        )
        return self.store.search(keyword, filters, limit=limit)

    def get_article(self, article_id: str) -> Article:
        return self.store.get_article(article_id)

    # ---- article state ----

    def toggle_bookmark(self, article_id: str, value: bool) -> None:
        self.store.set_bookmark(article_id, value)

    def toggle_read(self, article_id: str, value: bool) -> None:
        self.store.set_read(article_id, value)

    def record_view(self, article_id: str) -> Article:
        return self.store.increment_counter(article_id, "view_count", utc_now())

    def record_click(self, article_id: str) -> Article:
        return self.store.increment_counter(article_id, "click_count", utc_now())

    def recompute_heat(self) -> int:
        return self.store.recompute_heat(utc_now())

    def cleanup(self) -> CleanupResult:
        return run_cleanup(self.store, self.get_settings(), utc_now())

    def reindex(self) -> int:
        return self.store.reindex()

    # ---- sources ----

    def list_sources(self, active_only: bool = False) -> list[Source]:
        return self.store.list_sources(active_only=active_only)

    def set_source_active(self, name: str, active: bool) -> None:
        self.store.set_source_active(name, active)

    # ---- summaries ----

    def _require_summarizer(self) -> Summarizer:
        summarizer: Optional[Summarizer] = self._summarizer_factory(self.get_settings())
        if summarizer is None:
            raise SummarizerNotConfiguredError()
        return summarizer

    async def summarize(self, text: str) -> str:
        return await self._require_summarizer().summarize(text)

    async def regenerate_summaries(
        self,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> int:
        return await regenerate_summaries(self.store, self._require_summarizer(), on_progress, cancel_event)
