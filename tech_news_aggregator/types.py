from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Union


class SourceKind(str, Enum):
    FEED = "rss"
    API = "api"
    WEB = "web"
    HEADLESS = "headless"

    @classmethod
    def parse(cls, value: str) -> "SourceKind":
        v = (value or "").strip().lower()
        aliases = {"feed": "rss", "atom": "rss", "json": "api", "html": "web", "spa": "headless"}
        return cls(aliases.get(v, v))


class Category(str, Enum):
    TECH = "Tech"
    RESEARCH = "Research"
    PRODUCT = "Product"
    INDUSTRY = "Industry"
    FUN = "Fun"

    @classmethod
    def parse(cls, value: str | None) -> "Category":
        if not value:
            return cls.TECH
        for c in cls:
            if c.value.lower() == str(value).strip().lower():
                return c
        return cls.TECH


@dataclass(frozen=True)
class Engagement:
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0


@dataclass(frozen=True)
class RawContent:
    """One candidate record produced by a source adapter, before normalization."""

    title: str
    link: str
    body: Optional[str] = None
    image_url: Optional[str] = None
    published: Optional[str] = None
    engagement: Engagement = field(default_factory=Engagement)
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Source:
    name: str
    url: str
    kind: SourceKind
    category: Category = Category.TECH
    weight: float = 0.4
    priority: int = 0
    fetch_interval_minutes: int = 60
    is_active: bool = True
    last_fetch_at: Optional[str] = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Article:
    id: str
    title: str
    url: str
    source: str
    category: Category
    published_at: str
    fetched_at: str
    summary: str = ""
    content: str = ""
    image_url: str = ""
    source_weight: float = 0.4
    tags: tuple[str, ...] = ()

    # ranking / state
    heat_score: float = 0.0
    view_count: int = 0
    click_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    is_read: bool = False
    is_bookmarked: bool = False
    is_archived: bool = False
    is_manual: bool = False
    summary_is_ai: bool = False

    @property
    def engagement(self) -> Engagement:
        return Engagement(
            views=self.view_count,
            likes=self.like_count,
            comments=self.comment_count,
            shares=self.share_count,
        )


@dataclass(frozen=True)
class Settings:
    theme: str = "auto"
    ai_model: str = ""
    ai_base_url: str = ""
    ai_api_key: str = ""
    ai_summary_enabled: bool = True

    # cleanup thresholds; the default floor is what an unengaged article
    # decays to after max_article_age_days, so age archiving runs first
    max_article_age_days: int = 30
    min_heat_score: float = -360.0
    purge_grace_hours: int = 48
    max_articles: int = 300

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_base_url and self.ai_api_key)


@dataclass(frozen=True)
class SourceOutcome:
    source: str
    records: tuple[RawContent, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CycleResult:
    inserted_count: int
    failed_source_count: int
    skipped_duplicates: int = 0
    failed_records: int = 0
    timed_out: bool = False

    def describe(self) -> str:
        msg = f"{self.inserted_count} new articles, {self.failed_source_count} sources failed"
        if self.timed_out:
            msg += " (cycle timed out)"
        return msg


@dataclass(frozen=True)
class ListResult:
    items: list[Article]
    total: int
    page: int
    page_size: int


@dataclass(frozen=True)
class CleanupResult:
    archived: int = 0
    purged: int = 0
    trimmed: int = 0


# summary regeneration progress events


@dataclass(frozen=True)
class SummaryStart:
    total: int


@dataclass(frozen=True)
class SummaryProgress:
    current: int
    total: int
    title: str
    updated: int
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SummaryComplete:
    total_updated: int
    total_processed: int
    cancelled: bool = False


SummaryEvent = Union[SummaryStart, SummaryProgress, SummaryComplete]
ProgressCallback = Callable[[SummaryEvent], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
