from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import urlparse, urlunparse

from dateutil import parser as dateparser

from tech_news_aggregator.discover import strip_fragment_and_tracking_params
from tech_news_aggregator.types import Category


CONTENT_MAX_CHARS = 2000

_DEFAULT_PORTS = {"http": "80", "https": "443"}


def canonical_url(url: str) -> str:
    """Dedup key for a URL.

    Trims whitespace, lower-cases scheme and host, drops default ports, the
    fragment and tracking parameters, and strips the trailing slash. Path and
    query case are preserved. Returns "" for anything that is not an
    absolute http(s) URL.
    """

    raw = (url or "").strip()
    if not raw:
        return ""
    try:
        p = urlparse(raw)
    except ValueError:
        return ""

    scheme = p.scheme.lower()
    if scheme not in ("http", "https") or not p.netloc:
        return ""

    netloc = p.netloc.lower()
    host, sep, port = netloc.rpartition(":")
    if sep and port == _DEFAULT_PORTS.get(scheme):
        netloc = host

    cleaned = urlparse(strip_fragment_and_tracking_params(urlunparse(p._replace(scheme=scheme, netloc=netloc))))
    path = cleaned.path.rstrip("/")
    return urlunparse(cleaned._replace(path=path, fragment=""))


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse RFC 3339, RFC 2822, epoch seconds and loose date strings.

    Returns a tz-aware UTC datetime, or None when the value is unusable.
    Naive values are taken as UTC.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    s = str(value).strip()
    if not s:
        return None
    if s.isdigit() and 9 <= len(s) <= 11:
        return datetime.fromtimestamp(int(s), tz=timezone.utc)

    try:
        return _to_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return _to_utc(parsedate_to_datetime(s))
    except (TypeError, ValueError, IndexError):
        pass
    try:
        dt = dateparser.parse(s)
    except (ValueError, OverflowError, TypeError):
        return None
    return _to_utc(dt) if dt is not None else None


def format_timestamp(dt: datetime) -> str:
    return _to_utc(dt).replace(microsecond=0).isoformat()


def normalize_timestamp(value: Any, fallback: datetime) -> str:
    """Canonical UTC timestamp string; unparsable input falls back to `fallback`."""

    dt = parse_timestamp(value)
    return format_timestamp(dt if dt is not None else fallback)


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def truncate_content(text: str | None, max_chars: int = CONTENT_MAX_CHARS) -> str:
    text = normalize_text(text or "")
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 1)].rstrip() + "…"


def placeholder_image(url: str) -> str:
    """Deterministic generated image for records without one."""

    seed = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
    return f"https://picsum.photos/seed/{seed}/640/360"


_CATEGORY_KEYWORDS: list[tuple[Category, tuple[str, ...]]] = [
    (
        Category.RESEARCH,
        ("arxiv", "paper", "research", "benchmark", "dataset", "study", "论文", "研究", "模型训练"),
    ),
    (
        Category.PRODUCT,
        ("launch", "release", "released", "introducing", "announces", "github", "open source", "发布", "上线", "开源"),
    ),
    (
        Category.INDUSTRY,
        ("funding", "raises", "acquisition", "acquires", "ipo", "startup", "revenue", "regulation", "融资", "收购", "监管"),
    ),
    (
        Category.FUN,
        ("meme", "game", "fun", "weird", "humor", "趣", "好玩", "段子"),
    ),
]


def _keyword_in(keyword: str, text: str) -> bool:
    if keyword.isascii():
        return re.search(r"\b" + re.escape(keyword) + r"\b", text) is not None
    return keyword in text


def classify_category(title: str, content: str = "", default: Category = Category.TECH) -> Category:
    """Keyword classification for records that carry no source category."""

    text = f"{title} {content}".lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(_keyword_in(k, text) for k in keywords):
            return category
    return default


def template_summary(title: str, content: str, source: str = "") -> str:
    """Deterministic summary used when no generated summary is available."""

    snippet = normalize_text(content)
    if len(snippet) > 80:
        snippet = snippet[:80].rstrip() + "..."
    lead = f"[{source}] " if source else ""
    if snippet and snippet != normalize_text(title):
        return f"{lead}{title}: {snippet}"
    return f"{lead}{title}"
