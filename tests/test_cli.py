"""Tests for the command line entry point (no network commands)."""

import pytest

from tech_news_aggregator.cli import main


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.delenv("AI_BASE_URL", raising=False)
    monkeypatch.delenv("AI_API_KEY", raising=False)
    return str(tmp_path / "cli.db")


def test_list_empty_store(db, capsys):
    assert main(["--db", db, "list"]) == 0

    assert "0 of 0" in capsys.readouterr().out


def test_sources_are_seeded_and_can_be_disabled(db, capsys):
    assert main(["--db", db, "sources", "--disable", "Hacker News Frontpage"]) == 0

    out = capsys.readouterr().out
    assert "off  10 rss" in out
    assert "Hacker News AI" in out


def test_settings_round_trip(db, capsys):
    assert main(["--db", db, "settings", "--set", "theme=dark", "--set", "ai_summary_enabled=no"]) == 0
    capsys.readouterr()

    assert main(["--db", db, "settings"]) == 0

    out = capsys.readouterr().out
    assert "theme = dark" in out
    assert "ai_summary_enabled = False" in out


def test_unknown_setting_fails(db, capsys):
    assert main(["--db", db, "settings", "--set", "colour=blue"]) == 1

    assert "unknown settings" in capsys.readouterr().err


def test_bookmark_missing_article_fails(db, capsys):
    assert main(["--db", db, "bookmark", "nope"]) == 1

    assert "nope" in capsys.readouterr().err


def test_add_rejects_invalid_url(db, capsys):
    assert main(["--db", db, "add", "not a url"]) == 1

    assert "invalid_url" in capsys.readouterr().err


def test_summaries_need_an_endpoint(db, capsys):
    assert main(["--db", db, "summaries"]) == 1

    assert "summarizer" in capsys.readouterr().err


def test_reindex_empty_store(db, capsys):
    assert main(["--db", db, "reindex"]) == 0

    assert "0 articles indexed" in capsys.readouterr().out
