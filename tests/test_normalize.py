"""Tests for URL, timestamp and text normalization."""

from datetime import datetime, timezone

import pytest

from tech_news_aggregator.normalize import (
    canonical_url,
    classify_category,
    normalize_timestamp,
    parse_timestamp,
    placeholder_image,
    template_summary,
    truncate_content,
)
from tech_news_aggregator.types import Category


FALLBACK = datetime(2024, 5, 5, 5, 5, 5, tzinfo=timezone.utc)


class TestCanonicalUrl:
    def test_scheme_host_case_and_trailing_slash(self):
        assert canonical_url("HTTP://Example.com/a/") == canonical_url("http://example.com/a")
        assert canonical_url("http://example.com/a") == "http://example.com/a"

    def test_trims_whitespace(self):
        assert canonical_url("  https://example.com/post  ") == "https://example.com/post"

    def test_keeps_path_case(self):
        assert canonical_url("https://Example.com/Some/Path") == "https://example.com/Some/Path"

    def test_drops_default_port(self):
        assert canonical_url("https://example.com:443/x") == "https://example.com/x"
        assert canonical_url("http://example.com:8080/x") == "http://example.com:8080/x"

    def test_drops_fragment_and_tracking_params(self):
        url = "https://example.com/story?id=7&utm_source=rss&fbclid=abc#comments"
        assert canonical_url(url) == "https://example.com/story?id=7"

    def test_bare_host(self):
        assert canonical_url("https://Example.com/") == "https://example.com"

    @pytest.mark.parametrize("bad", ["", "   ", "not a url", "ftp://example.com/file", "/relative/path"])
    def test_rejects_non_http_urls(self, bad):
        assert canonical_url(bad) == ""


class TestTimestamps:
    def test_equal_instants_normalize_identically(self):
        rfc3339 = normalize_timestamp("2024-03-01T00:00:00Z", FALLBACK)
        rfc2822 = normalize_timestamp("Fri, 01 Mar 2024 00:00:00 +0000", FALLBACK)
        date_only = normalize_timestamp("2024-03-01", FALLBACK)

        assert rfc3339 == rfc2822 == date_only == "2024-03-01T00:00:00+00:00"

    def test_offsets_are_converted_to_utc(self):
        assert normalize_timestamp("2024-03-01T08:00:00+08:00", FALLBACK) == "2024-03-01T00:00:00+00:00"
        assert normalize_timestamp("Thu, 29 Feb 2024 19:00:00 -0500", FALLBACK) == "2024-03-01T00:00:00+00:00"

    def test_mixed_formats_sort_chronologically(self):
        raw = [
            "Sat, 02 Mar 2024 09:30:00 GMT",
            "2024-03-01",
            "2024-03-01T23:59:59Z",
            "2024-02-28T10:00:00-02:00",
        ]
        normalized = sorted(normalize_timestamp(r, FALLBACK) for r in raw)

        assert normalized == [
            "2024-02-28T12:00:00+00:00",
            "2024-03-01T00:00:00+00:00",
            "2024-03-01T23:59:59+00:00",
            "2024-03-02T09:30:00+00:00",
        ]

    def test_unparsable_falls_back(self):
        assert normalize_timestamp("yesterday-ish", FALLBACK) == "2024-05-05T05:05:05+00:00"
        assert normalize_timestamp(None, FALLBACK) == "2024-05-05T05:05:05+00:00"

    def test_epoch_seconds(self):
        assert parse_timestamp(1709251200) == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert parse_timestamp("1709251200") == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2024-03-01 10:00:00") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


class TestText:
    def test_truncate_content_respects_budget(self):
        text = "word " * 1000
        out = truncate_content(text, 50)
        assert len(out) <= 50
        assert out.endswith("…")

    def test_truncate_collapses_whitespace(self):
        assert truncate_content("a\n\n  b\tc", 100) == "a b c"

    def test_placeholder_image_is_deterministic(self):
        a = placeholder_image("https://example.com/a")
        assert a == placeholder_image("https://example.com/a")
        assert a != placeholder_image("https://example.com/b")
        assert a.startswith("https://picsum.photos/seed/")

    def test_template_summary(self):
        assert template_summary("Title", "", "HN") == "[HN] Title"
        s = template_summary("Title", "x" * 200, "HN")
        assert s.startswith("[HN] Title: ")
        assert s.endswith("...")


class TestClassifyCategory:
    def test_research_keywords(self):
        assert classify_category("New benchmark for LLM reasoning") is Category.RESEARCH

    def test_cjk_keywords(self):
        assert classify_category("某公司完成新一轮融资") is Category.INDUSTRY

    def test_word_boundaries(self):
        # "function" must not count as "fun"
        assert classify_category("A function to parse dates") is Category.TECH

    def test_default(self):
        assert classify_category("Nothing special here", default=Category.FUN) is Category.FUN
