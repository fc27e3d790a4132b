"""Tests for configuration and the default source list."""

from pathlib import Path

import pytest
import yaml

from tech_news_aggregator.config import load_config, load_default_sources, source_from_dict
from tech_news_aggregator.heat import AUTHORITY_WEIGHTS
from tech_news_aggregator.types import Category, SourceKind


class TestLoadConfig:
    def test_file_values_override_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"concurrency": {"max_concurrent_sources": 5}}), encoding="utf-8")

        cfg = load_config(path)

        assert cfg.section("concurrency")["max_concurrent_sources"] == 5
        # untouched keys keep their defaults
        assert cfg.section("concurrency")["cycle_timeout_seconds"] == 60
        assert cfg.section("summary")["max_attempts"] == 3

    def test_explicit_path_must_exist(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_db_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NEWS_DB_PATH", str(tmp_path / "env.db"))

        assert load_config().db_path == tmp_path / "env.db"

    def test_db_path_expands_home(self, monkeypatch):
        monkeypatch.delenv("NEWS_DB_PATH", raising=False)

        assert load_config().db_path == Path("~/.tech_news_aggregator/news.db").expanduser()

    def test_shipped_config_parses(self):
        cfg = load_config(Path(__file__).resolve().parent.parent / "config" / "config.yaml")

        assert cfg.log_level == "INFO"
        assert cfg.section("ingest")["summarize_on_ingest"] is True


class TestSources:
    def test_source_from_dict_defaults(self):
        s = source_from_dict({"name": "Blog", "url": "https://blog.example.com/feed"})

        assert s.kind is SourceKind.FEED
        assert s.category is Category.TECH
        assert s.weight == AUTHORITY_WEIGHTS["unclassified"]
        assert s.is_active

    def test_authority_sets_weight(self):
        s = source_from_dict(
            {"name": "Lab", "url": "https://lab.example.com", "kind": "web", "authority": "research", "category": "research"}
        )

        assert s.weight == AUTHORITY_WEIGHTS["research"]
        assert s.kind is SourceKind.WEB
        assert s.category is Category.RESEARCH

    def test_explicit_weight_wins(self):
        s = source_from_dict({"name": "X", "url": "https://x.example.com", "authority": "official", "weight": 0.1})

        assert s.weight == 0.1

    def test_builtin_list(self):
        sources = load_default_sources()

        names = [s.name for s in sources]
        assert len(names) == len(set(names))
        assert {s.kind for s in sources} >= {SourceKind.FEED, SourceKind.API, SourceKind.WEB}
        assert all(s.url.startswith("https://") for s in sources)

    def test_yaml_list(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "sources": [
                        {"name": "A", "url": "https://a.example.com/rss", "kind": "rss"},
                        {"name": "no url"},
                    ]
                }
            ),
            encoding="utf-8",
        )

        assert [s.name for s in load_default_sources(path)] == ["A"]
