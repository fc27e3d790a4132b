from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from tech_news_aggregator.heat import AUTHORITY_WEIGHTS
from tech_news_aggregator.sources import DEFAULT_SOURCES
from tech_news_aggregator.types import Category, Source, SourceKind


DEFAULT_CONFIG_PATH = Path("config/config.yaml")
DEFAULT_SOURCES_PATH = Path("config/sources.yaml")

DEFAULTS: dict[str, Any] = {
    "http": {
        "user_agent": (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        "timeout_seconds": 20,
        "max_connections": 20,
        "proxy": None,
        "proxy_bypass_domains": [
            ".cn",
            "oschina.net",
            "v2ex.com",
            "36kr.com",
            "jiqizhixin.com",
            "qbitai.com",
        ],
    },
    "concurrency": {
        "max_concurrent_sources": 3,
        "max_in_flight_requests": 6,
        "per_source_timeout_seconds": 20,
        "cycle_timeout_seconds": 60,
        "max_sources_per_cycle": 20,
    },
    "rate_limit": {"max_requests_per_period": 2, "period_seconds": 1.0},
    "retry": {
        "max_attempts": 2,
        "base_delay_seconds": 0.5,
        "max_delay_seconds": 4.0,
        "retry_statuses": [429, 500, 502, 503, 504],
    },
    "ingest": {
        "max_items_per_feed": 12,
        "max_links_per_page": 12,
        "content_max_chars": 2000,
        "manual_source_weight": 0.6,
        "summarize_on_ingest": True,
        "max_ai_summaries_per_cycle": 10,
    },
    "summary": {
        "interval_seconds": 1.0,
        "max_attempts": 3,
        "backoff_seconds": [2, 4, 8],
        "request_timeout_seconds": 30,
        "max_input_chars": 3000,
        "max_tokens": 200,
        "default_model": "gpt-4o-mini",
        "system_prompt": (
            "Summarize the following content in at most 100 words, "
            "highlighting the key facts. Answer in the language of the content."
        ),
    },
    "storage": {"db_path": "~/.tech_news_aggregator/news.db"},
    "headless": {"enabled": False, "wait_until": "networkidle", "timeout_seconds": 30},
    "logging": {"level": "INFO"},
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass(frozen=True)
class Config:
    raw: dict[str, Any]

    def section(self, name: str) -> dict[str, Any]:
        return dict(self.raw.get(name) or {})

    @property
    def db_path(self) -> Path:
        env = os.environ.get("NEWS_DB_PATH")
        value = env or str(self.raw["storage"]["db_path"])
        if value == ":memory:":
            return Path(value)
        return Path(value).expanduser()

    @property
    def proxy(self) -> str | None:
        configured = self.raw["http"].get("proxy")
        if configured:
            return str(configured)
        for var in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
            if os.environ.get(var):
                return os.environ[var]
        return None

    @property
    def log_level(self) -> str:
        return str(self.raw.get("logging", {}).get("level", "INFO")).upper()


def load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: str | Path | None = None) -> Config:
    """Load the YAML config, falling back to built-in defaults.

    An explicitly given path must exist; the default path is optional.
    """

    if path is None:
        raw = load_yaml(DEFAULT_CONFIG_PATH) if DEFAULT_CONFIG_PATH.exists() else {}
    else:
        raw = load_yaml(path)
    return Config(raw=_merge(DEFAULTS, raw))


def env_ai_defaults() -> dict[str, str]:
    return {
        "ai_base_url": os.environ.get("AI_BASE_URL", ""),
        "ai_api_key": os.environ.get("AI_API_KEY", ""),
        "ai_model": os.environ.get("AI_MODEL", ""),
    }


def source_from_dict(d: dict[str, Any]) -> Source:
    authority = str(d.get("authority") or "unclassified").lower()
    weight = d.get("weight")
    if weight is None:
        weight = AUTHORITY_WEIGHTS.get(authority, AUTHORITY_WEIGHTS["unclassified"])
    return Source(
        name=str(d["name"]),
        url=str(d["url"]),
        kind=SourceKind.parse(str(d.get("kind", "rss"))),
        category=Category.parse(d.get("category")),
        weight=float(weight),
        priority=int(d.get("priority", 0)),
        fetch_interval_minutes=int(d.get("fetch_interval_minutes", 60)),
        is_active=bool(d.get("active", True)),
        options=dict(d.get("options") or {}),
    )


def load_default_sources(path: str | Path | None = None) -> list[Source]:
    """Seed list: a sources YAML when one is given or present, else the built-in list."""

    p = Path(path) if path is not None else DEFAULT_SOURCES_PATH
    if path is not None or p.exists():
        entries = load_yaml(p).get("sources") or []
    else:
        entries = DEFAULT_SOURCES
    return [source_from_dict(s) for s in entries if s.get("name") and s.get("url")]
