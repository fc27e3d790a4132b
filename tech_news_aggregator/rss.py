from __future__ import annotations

import calendar
import logging
import time
from typing import Any, Optional

import feedparser

from tech_news_aggregator.extract import extract_text_from_html_fragment
from tech_news_aggregator.types import Engagement, RawContent


logger = logging.getLogger(__name__)

MAX_FEED_ITEMS = 12


class MalformedFeedError(ValueError):
    pass


# Markers of a challenge/error page served instead of the feed.
_HTML_MARKERS = (
    "<!doctype html",
    "<html",
    "just a moment",
    "checking your browser",
    "access denied",
    "<title>404",
    "page not found",
)


def looks_like_html_page(text: str) -> bool:
    head = (text or "")[:2048].lower()
    if "<rss" in head or "<feed" in head or "<rdf:rdf" in head:
        return False
    return any(m in head for m in _HTML_MARKERS)


def _entry_published(e: Any) -> Optional[str]:
    # Keep the raw string; normalization happens downstream. struct_time is
    # only used when the feed gave no textual date feedparser kept.
    for key in ("published", "updated", "created"):
        value = e.get(key)
        if value:
            return str(value)
    for key in ("published_parsed", "updated_parsed"):
        value = e.get(key)
        if value:
            return time.strftime("%Y-%m-%dT%H:%M:%SZ", value)
    return None


def _entry_image(e: Any) -> Optional[str]:
    for enc in e.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href and str(enc.get("type", "image/")).startswith("image"):
            return str(href)
    for media in (e.get("media_content") or []) + (e.get("media_thumbnail") or []):
        if media.get("url"):
            return str(media["url"])
    return None


def _entry_body(e: Any) -> Optional[str]:
    raw = e.get("summary") or e.get("description")
    if not raw and e.get("content"):
        raw = (e["content"][0] or {}).get("value")
    if not raw:
        return None
    text = extract_text_from_html_fragment(str(raw))
    return text or None


def _entry_comments(e: Any) -> int:
    # slash:comments, when the feed carries it
    value = e.get("slash_comments")
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def _recency_key(e: Any) -> tuple[int, float]:
    tp = e.get("published_parsed") or e.get("updated_parsed")
    if not tp:
        return (0, 0.0)
    try:
        return (1, float(calendar.timegm(tp)))
    except (TypeError, ValueError, OverflowError):
        return (0, 0.0)


def parse_entry(e: Any) -> Optional[RawContent]:
    title = (e.get("title") or "").strip()
    link = (e.get("link") or "").strip()
    if not title or not link:
        return None
    return RawContent(
        title=extract_text_from_html_fragment(title) or title,
        link=link,
        body=_entry_body(e),
        image_url=_entry_image(e),
        published=_entry_published(e),
        engagement=Engagement(comments=_entry_comments(e)),
        tags=tuple(str(t.get("term")) for t in (e.get("tags") or []) if t.get("term")),
    )


def parse_feed(text: str, source_name: str = "", max_items: int = MAX_FEED_ITEMS) -> list[RawContent]:
    """Parse a syndication document into at most `max_items` records.

    A bad entry is skipped; it never aborts the batch.
    """

    if looks_like_html_page(text):
        logger.warning("Feed %s returned an HTML page instead of RSS/Atom, skipping", source_name)
        return []

    feed = feedparser.parse(text)
    if feed.bozo and not feed.entries:
        raise MalformedFeedError(f"could not parse feed {source_name}: {feed.get('bozo_exception')}")

    entries = sorted(feed.entries or [], key=_recency_key, reverse=True)
    records: list[RawContent] = []
    for e in entries:
        if len(records) >= max_items:
            break
        try:
            rec = parse_entry(e)
        except Exception as exc:
            logger.debug("Skipping malformed entry in %s: %s", source_name, exc)
            continue
        if rec is not None:
            records.append(rec)
    return records
