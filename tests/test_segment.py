"""Tests for the CJK-aware segmenter."""

from tech_news_aggregator.segment import has_cjk, query_tokens, segment_for_index


class TestSegmentForIndex:
    def test_latin_text_passes_through_unchanged(self):
        text = "Rust 1.80 ships LazyCell, and more!"
        assert segment_for_index(text) == text

    def test_cjk_runs_get_word_boundaries(self):
        out = segment_for_index("人工智能改变世界")
        tokens = out.split()
        assert "人工智能" in tokens
        assert len(tokens) > 1

    def test_mixed_text_keeps_latin_tokens(self):
        out = segment_for_index("OpenAI发布GPT-5模型")
        tokens = out.split()
        assert "OpenAI" in tokens
        assert "GPT-5" in tokens
        assert "发布" in tokens
        assert "模型" in tokens

    def test_empty(self):
        assert segment_for_index("") == ""


class TestQueryTokens:
    def test_latin_words(self):
        assert query_tokens("  rust, async runtime ") == ["rust", "async", "runtime"]

    def test_cjk_query(self):
        assert query_tokens("人工智能") == ["人工智能"]

    def test_deduplicates_case_insensitively(self):
        assert query_tokens("AI ai Ai") == ["AI"]

    def test_punctuation_only(self):
        assert query_tokens("!!! ???") == []


def test_has_cjk():
    assert has_cjk("hello 世界")
    assert not has_cjk("hello world")
