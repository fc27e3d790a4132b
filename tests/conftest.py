"""Shared fixtures: a temporary store, a default config and record builders."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from tech_news_aggregator.config import DEFAULTS, Config, _merge
from tech_news_aggregator.storage import Store
from tech_news_aggregator.types import Article, Category, Source, SourceKind


NOW = datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc)


def make_config(**overrides) -> Config:
    return Config(raw=_merge(DEFAULTS, overrides))


def make_source(name: str, **kw) -> Source:
    kw.setdefault("url", f"https://{name.lower().replace(' ', '-')}.example.com/feed")
    kw.setdefault("kind", SourceKind.FEED)
    return Source(name=name, **kw)


def make_article(url: str, **kw) -> Article:
    kw.setdefault("id", str(uuid.uuid4()))
    kw.setdefault("title", "Some title")
    kw.setdefault("source", "Test Source")
    kw.setdefault("category", Category.TECH)
    kw.setdefault("published_at", "2024-03-01T12:00:00+00:00")
    kw.setdefault("fetched_at", "2024-03-01T12:30:00+00:00")
    return Article(url=url, **kw)


@pytest.fixture
def store(tmp_path) -> Store:
    s = Store(tmp_path / "news.db")
    yield s
    s.close()


@pytest.fixture
def cfg() -> Config:
    return make_config(ingest={"summarize_on_ingest": False})
