"""Source adapters.

The set of source kinds is closed (feed, JSON API, static web page, rendered
web page). Each kind is a pair of operations, fetch raw content and parse it
into `RawContent` records, dispatched on `Source.kind` here rather than through
a class hierarchy. Parsing never aborts a batch for one bad entry.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from tech_news_aggregator.discover import extract_records
from tech_news_aggregator.extract import extract_text_from_html_fragment
from tech_news_aggregator.http import FEED_ACCEPT, HTML_ACCEPT, JSON_ACCEPT, FetchError, HttpClient
from tech_news_aggregator.render import Renderer
from tech_news_aggregator.rss import MAX_FEED_ITEMS, parse_feed
from tech_news_aggregator.types import Engagement, RawContent, Source, SourceKind


logger = logging.getLogger(__name__)


class ParseError(ValueError):
    """The payload of a source is not in the shape its kind expects."""


@dataclass(frozen=True)
class ParseLimits:
    max_items_per_feed: int = MAX_FEED_ITEMS
    max_links_per_page: int = 12


_FIELD_FALLBACKS: dict[str, tuple[str, ...]] = {
    "title": ("title", "name", "headline"),
    "link": ("link", "url", "href"),
    "published": ("published_at", "published", "pubDate", "date", "created_at", "updated_at"),
    "body": ("summary", "description", "content", "text", "body"),
    "image": ("image_url", "image", "thumbnail"),
    "views": ("views", "view_count"),
    "likes": ("likes", "points", "score", "stars"),
    "comments": ("comments", "num_comments", "comment_count"),
    "shares": ("shares", "share_count"),
}


def _lookup(item: dict[str, Any], key: str, fields: dict[str, str]) -> Any:
    path = fields.get(key)
    if path:
        value: Any = item
        for part in str(path).split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value
    for k in _FIELD_FALLBACKS[key]:
        if item.get(k) not in (None, ""):
            return item[k]
    return None


def _as_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return 0


def parse_api_item(item: Any, fields: dict[str, str]) -> Optional[RawContent]:
    if not isinstance(item, dict):
        return None
    title = _lookup(item, "title", fields)
    link = _lookup(item, "link", fields)
    if not isinstance(title, str) or not isinstance(link, str) or not title.strip() or not link.strip():
        return None

    published = _lookup(item, "published", fields)
    body = _lookup(item, "body", fields)
    image = _lookup(item, "image", fields)
    return RawContent(
        title=title.strip(),
        link=link.strip(),
        body=extract_text_from_html_fragment(body) if isinstance(body, str) and body else None,
        image_url=image if isinstance(image, str) and image else None,
        published=str(published) if published not in (None, "") else None,
        engagement=Engagement(
            views=_as_count(_lookup(item, "views", fields)),
            likes=_as_count(_lookup(item, "likes", fields)),
            comments=_as_count(_lookup(item, "comments", fields)),
            shares=_as_count(_lookup(item, "shares", fields)),
        ),
    )


def parse_api_payload(text: str, options: dict[str, Any] | None = None, source_name: str = "") -> list[RawContent]:
    """Parse a JSON endpoint answering with a list of objects.

    `options["items_key"]` (dotted path) points at the list when the endpoint
    wraps it in an envelope; `options["fields"]` maps record fields onto
    item keys. Extra fields are ignored.
    """

    options = options or {}
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ParseError(f"{source_name}: response is not JSON: {e}") from e

    items_key = options.get("items_key")
    if items_key:
        for part in str(items_key).split("."):
            data = data.get(part) if isinstance(data, dict) else None
    if not isinstance(data, list):
        raise ParseError(f"{source_name}: expected a list of objects, got {type(data).__name__}")

    fields = {str(k): str(v) for k, v in (options.get("fields") or {}).items()}
    records: list[RawContent] = []
    for item in data:
        try:
            rec = parse_api_item(item, fields)
        except Exception as e:
            logger.debug("Skipping malformed item from %s: %s", source_name, e)
            continue
        if rec is None:
            logger.debug("Skipping item without title/link from %s", source_name)
            continue
        records.append(rec)
    return records


async def fetch_raw(source: Source, client: HttpClient, renderer: Renderer | None = None) -> str:
    kind = source.kind
    if kind is SourceKind.FEED:
        return await client.get_text(source.url, accept=FEED_ACCEPT)
    if kind is SourceKind.API:
        return await client.get_text(source.url, accept=JSON_ACCEPT)
    if kind is SourceKind.WEB:
        return await client.get_text(source.url, accept=HTML_ACCEPT)
    if kind is SourceKind.HEADLESS:
        if renderer is None:
            raise FetchError(source.url, "headless rendering is not enabled")
        return await renderer.render(source.url)
    raise ValueError(f"unsupported source kind: {kind}")


def parse_raw(source: Source, raw: str, limits: ParseLimits | None = None) -> list[RawContent]:
    limits = limits or ParseLimits()
    kind = source.kind
    if kind is SourceKind.FEED:
        max_items = int(source.options.get("max_items", limits.max_items_per_feed))
        return parse_feed(raw, source_name=source.name, max_items=max_items)
    if kind is SourceKind.API:
        return parse_api_payload(raw, source.options, source_name=source.name)
    if kind in (SourceKind.WEB, SourceKind.HEADLESS):
        return extract_records(raw, source.url, source.options, max_links=limits.max_links_per_page)
    raise ValueError(f"unsupported source kind: {kind}")


async def fetch_source(
    source: Source,
    client: HttpClient,
    renderer: Renderer | None = None,
    limits: ParseLimits | None = None,
) -> list[RawContent]:
    raw = await fetch_raw(source, client, renderer)
    records = parse_raw(source, raw, limits)
    logger.debug("Parsed %d records from %s", len(records), source.name)
    return records
