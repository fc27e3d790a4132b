from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from tech_news_aggregator.types import Engagement, RawContent


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveredLink:
    url: str
    title: str | None


_DEFAULT_DENY_SUBSTRINGS = (
    "/video/",
    "/live/",
    "/podcast",
    "/subscribe",
    "/signin",
    "/login",
    "/account",
    "javascript:",
)


_DEFAULT_TRACKING_PARAMS_PREFIXES = (
    "utm_",
)


_DEFAULT_TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "guccounter",
    "guce_referrer",
    "guce_referrer_sig",
    "soc_src",
    "soc_trk",
    "cmpid",
    "spm",
}


_HUB_PATH_SUBSTRINGS = (
    "/topic/",
    "/topics/",
    "/tag/",
    "/tags/",
    "/category/",
    "/categories/",
    "/author/",
    "/authors/",
    "/search",
)


def _same_domain(seed_url: str, url: str) -> bool:
    try:
        return urlparse(seed_url).netloc.lower() == urlparse(url).netloc.lower()
    except ValueError:
        return False


def _normalize_url(seed_url: str, href: str) -> str | None:
    if not href:
        return None
    href = href.strip()
    if any(href.lower().startswith(x) for x in ("mailto:", "tel:", "#")):
        return None
    try:
        return urljoin(seed_url, href)
    except ValueError:
        return None


def strip_fragment_and_tracking_params(url: str) -> str:
    """Remove URL fragments and common tracking params to improve de-duplication."""

    try:
        p = urlparse(url)
    except ValueError:
        return url
    if not p.scheme or not p.netloc:
        return url

    keep_params: list[tuple[str, str]] = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        kl = k.lower()
        if any(kl.startswith(prefix) for prefix in _DEFAULT_TRACKING_PARAMS_PREFIXES):
            continue
        if kl in _DEFAULT_TRACKING_PARAMS:
            continue
        keep_params.append((k, v))

    query = urlencode(keep_params, doseq=True)
    return urlunparse(p._replace(query=query, fragment=""))


_DATE_IN_PATH_RE = re.compile(r"\/\d{4}\/\d{2}\/\d{2}\/|\/\d{4}-\d{2}-\d{2}\/", re.IGNORECASE)


def _score_candidate(seed_url: str, url: str, title: str | None) -> float:
    path = urlparse(url).path.lower()
    segs = [s for s in path.split("/") if s]

    score = min(len(segs), 8) * 0.4
    if _DATE_IN_PATH_RE.search(path):
        score += 4.0
    if path.endswith(".html") or path.endswith(".htm") or "/article" in path:
        score += 2.0
    if segs and "-" in segs[-1]:
        score += 1.5
    if any(s in path for s in _HUB_PATH_SUBSTRINGS):
        score -= 8.0
    if strip_fragment_and_tracking_params(url).rstrip("/") == strip_fragment_and_tracking_params(seed_url).rstrip("/"):
        score -= 10.0

    if title:
        t = title.strip()
        if len(t) >= 16:
            score += 0.6
        elif len(t) <= 5:
            score -= 0.6
    return score


def discover_links_from_html(
    *,
    seed_url: str,
    html: str,
    selector: str = "a[href]",
    max_links: int = 12,
    same_domain_only: bool = False,
    allow_regex: str | None = None,
    deny_regex: str | None = None,
    rank: bool = False,
) -> list[DiscoveredLink]:
    """Extract (anchor text, href) pairs from a listing page.

    `selector` picks the anchors for a given site. Links without anchor text,
    duplicates and obvious navigation URLs are dropped. With `rank` the
    candidates are ordered by how article-like their URL looks, otherwise
    document order is kept.
    """

    soup = BeautifulSoup(html or "", "lxml")

    allow_re = re.compile(allow_regex) if allow_regex else None
    deny_re = re.compile(deny_regex) if deny_regex else None

    candidates: list[DiscoveredLink] = []
    seen: set[str] = set()

    for a in soup.select(selector):
        if a.name != "a":
            a = a.find("a", href=True)
            if a is None:
                continue
        url = _normalize_url(seed_url, str(a.get("href") or ""))
        if not url or not url.lower().startswith(("http://", "https://")):
            continue

        url = strip_fragment_and_tracking_params(url)
        url_l = url.lower()
        if any(s in url_l for s in _DEFAULT_DENY_SUBSTRINGS):
            continue
        if same_domain_only and not _same_domain(seed_url, url):
            continue
        if deny_re and deny_re.search(url):
            continue
        if allow_re and not allow_re.search(url):
            continue
        if urlparse(url).path in {"/", ""}:
            continue

        title = a.get_text(" ", strip=True) or None
        if not title:
            continue

        if url_l in seen:
            continue
        seen.add(url_l)
        candidates.append(DiscoveredLink(url=url, title=title))

    if rank:
        scored = [(_score_candidate(seed_url, c.url, c.title), i, c) for i, c in enumerate(candidates)]
        scored.sort(key=lambda x: (-x[0], x[1]))
        candidates = [c for _s, _i, c in scored]
    return candidates[:max_links]


def parse_number(text: str) -> int:
    """Parse GitHub style counters: "1,234" -> 1234, "1.2k" -> 1200."""

    t = (text or "").replace(",", "").replace(" ", "").strip().lower()
    if not t:
        return 0
    mult = 1
    if t.endswith("k"):
        mult, t = 1000, t[:-1]
    elif t.endswith("m"):
        mult, t = 1_000_000, t[:-1]
    try:
        return int(float(t) * mult)
    except ValueError:
        return 0


def parse_github_trending(html: str, base_url: str = "https://github.com", min_stars: int = 0) -> list[RawContent]:
    """Repositories from a GitHub trending page, filtered by star count."""

    soup = BeautifulSoup(html or "", "lxml")
    out: list[RawContent] = []
    for row in soup.select("article.Box-row"):
        try:
            name_el = row.select_one("h2 a")
            if name_el is None or not name_el.get("href"):
                continue
            href = str(name_el.get("href"))
            name = re.sub(r"\s+", "", name_el.get_text(" ", strip=True))

            desc_el = row.select_one("p")
            description = desc_el.get_text(" ", strip=True) if desc_el else ""
            lang_el = row.select_one("span[itemprop='programmingLanguage']")
            language = lang_el.get_text(strip=True) if lang_el else ""
            stars_el = row.select_one("a[href$='/stargazers']")
            stars = parse_number(stars_el.get_text(" ", strip=True) if stars_el else "")
        except (AttributeError, TypeError) as e:
            logger.debug("Skipping malformed trending row: %s", e)
            continue

        if stars < min_stars:
            continue

        title = f"{name} [{language}]" if language else name
        out.append(
            RawContent(
                title=title,
                link=urljoin(base_url, href),
                body=description or "GitHub trending project",
                engagement=Engagement(likes=stars),
                tags=(language,) if language else (),
            )
        )
    return out


def extract_records(html: str, page_url: str, options: dict[str, Any], max_links: int) -> list[RawContent]:
    """Apply a source's extraction strategy to a fetched (or rendered) page."""

    strategy = str(options.get("strategy") or "links")
    if strategy == "github_trending":
        return parse_github_trending(html, base_url=page_url, min_stars=int(options.get("min_stars", 0)))
    if strategy != "links":
        raise ValueError(f"unknown extraction strategy: {strategy}")

    links = discover_links_from_html(
        seed_url=page_url,
        html=html,
        selector=str(options.get("selector") or "a[href]"),
        max_links=int(options.get("max_links", max_links)),
        same_domain_only=bool(options.get("same_domain_only", False)),
        allow_regex=options.get("allow_regex"),
        deny_regex=options.get("deny_regex"),
        rank=bool(options.get("rank", False)),
    )
    return [RawContent(title=l.title or l.url, link=l.url) for l in links]
