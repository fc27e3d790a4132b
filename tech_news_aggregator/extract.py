from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


@dataclass(frozen=True)
class PageMeta:
    title: Optional[str]
    description: Optional[str]
    image_url: Optional[str]
    text: str


def _meta_content(soup: BeautifulSoup, *selectors: str) -> Optional[str]:
    for sel in selectors:
        tag = soup.select_one(sel)
        if tag and tag.get("content"):
            value = str(tag.get("content") or "").strip()
            if value:
                return value
    return None


def _title_from_soup(soup: BeautifulSoup) -> str | None:
    t = _meta_content(
        soup,
        'meta[property="og:title"]',
        'meta[name="twitter:title"]',
        'meta[name="title"]',
    )
    if t:
        return t

    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(" ", strip=True)

    h1 = soup.find("h1")
    if h1:
        t = h1.get_text(" ", strip=True)
        if t:
            return t

    return None


def extract_text_from_html_fragment(html_fragment: str) -> str:
    """Convert an HTML snippet (e.g., RSS summary) to plain text."""

    if "<" not in (html_fragment or "") and "&" not in (html_fragment or ""):
        return (html_fragment or "").strip()
    soup = BeautifulSoup(html_fragment or "", "lxml")
    return soup.get_text(" ", strip=True)


def _main_text_from_soup(soup: BeautifulSoup) -> str:
    # Remove common noisy blocks
    for tag in soup.select("script, style, noscript, nav, footer, header, aside"):
        tag.decompose()

    # Prefer <article>, otherwise fallback to body
    root = soup.find("article") or soup.body or soup

    parts: list[str] = []
    for p in root.find_all(["p", "h1", "h2", "h3", "li"], recursive=True):
        text = p.get_text(" ", strip=True)
        if text:
            parts.append(text)

    text = "\n".join(parts)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_page_meta(html: str, base_url: str = "") -> PageMeta:
    """Title, description, lead image and body text of a single page."""

    soup = BeautifulSoup(html or "", "lxml")
    title = _title_from_soup(soup)
    description = _meta_content(
        soup,
        'meta[name="description"]',
        'meta[property="og:description"]',
        'meta[name="twitter:description"]',
    )
    image = _meta_content(soup, 'meta[property="og:image"]', 'meta[name="twitter:image"]')
    if image and base_url:
        image = urljoin(base_url, image)
    text = _main_text_from_soup(soup)
    return PageMeta(title=title, description=description, image_url=image, text=text)
