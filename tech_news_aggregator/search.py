"""Full-text index over article title, summary and content.

The index is an FTS5 table keyed by the `seq` integer key of `articles`. Text
is segmented before it is written (see `segment.py`) so that CJK phrases
become individual tokens for the `unicode61` tokenizer, and queries go
through the same segmenter. All index writes happen on the caller's
connection inside the caller's transaction, so a row is searchable as soon as
its insert/update commits.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from tech_news_aggregator.segment import query_tokens, segment_for_index


MAX_RESULTS = 100

# bm25 column weights: title, summary, content
_BM25_WEIGHTS = (10.0, 5.0, 1.0)

FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS articles_fts USING fts5(
    title,
    summary,
    content,
    tokenize = 'unicode61 remove_diacritics 2'
)
"""


@dataclass(frozen=True)
class SearchFilters:
    category: Optional[str] = None
    source: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None
    include_archived: bool = False


def index_article(conn: sqlite3.Connection, seq: int, title: str, summary: str, content: str) -> None:
    """Insert or replace the index entry of one article."""

    conn.execute("DELETE FROM articles_fts WHERE rowid = ?", (seq,))
    conn.execute(
        "INSERT INTO articles_fts (rowid, title, summary, content) VALUES (?, ?, ?, ?)",
        (seq, segment_for_index(title), segment_for_index(summary or ""), segment_for_index(content or "")),
    )


def remove_from_index(conn: sqlite3.Connection, seqs: list[int]) -> None:
    conn.executemany("DELETE FROM articles_fts WHERE rowid = ?", [(s,) for s in seqs])


def _quote(token: str) -> str:
    return '"' + token.replace('"', '""') + '"'


def build_match_query(query: str) -> Optional[str]:
    """FTS5 MATCH expression: every token prefix-matched, all required.

    Returns None when the query has no searchable tokens.
    """

    tokens = query_tokens(query)
    if not tokens:
        return None
    return " AND ".join(_quote(t) + "*" for t in tokens)


def filter_clauses(filters: SearchFilters, alias: str = "a") -> tuple[list[str], list[Any]]:
    """WHERE clauses shared by search and listing."""

    clauses: list[str] = []
    params: list[Any] = []
    if not filters.include_archived:
        clauses.append(f"{alias}.is_archived = 0")
    if filters.category:
        clauses.append(f"{alias}.category = ?")
        params.append(filters.category)
    if filters.source:
        clauses.append(f"{alias}.source = ?")
        params.append(filters.source)
    if filters.since:
        clauses.append(f"{alias}.published_at >= ?")
        params.append(filters.since)
    if filters.until:
        clauses.append(f"{alias}.published_at <= ?")
        params.append(filters.until)
    return clauses, params


def search_rows(
    conn: sqlite3.Connection,
    query: str,
    filters: SearchFilters | None = None,
    limit: int = MAX_RESULTS,
) -> list[sqlite3.Row]:
    """Ranked article rows matching `query`, best first.

    Filters narrow the candidate set before ranking. An empty query matches
    nothing.
    """

    match = build_match_query(query)
    if match is None:
        return []

    clauses, params = filter_clauses(filters or SearchFilters())
    where = " AND ".join(["articles_fts MATCH ?"] + clauses)
    w_title, w_summary, w_content = _BM25_WEIGHTS
    sql = (
        "SELECT a.* FROM articles_fts "
        "JOIN articles a ON a.seq = articles_fts.rowid "
        f"WHERE {where} "
        f"ORDER BY bm25(articles_fts, {w_title}, {w_summary}, {w_content}), a.heat_score DESC "
        "LIMIT ?"
    )
    return conn.execute(sql, [match, *params, min(int(limit), MAX_RESULTS)]).fetchall()


def rebuild_index(conn: sqlite3.Connection) -> int:
    """Re-segment every stored article into a fresh index."""

    conn.execute("DELETE FROM articles_fts")
    rows = conn.execute("SELECT seq, title, summary, content FROM articles").fetchall()
    for r in rows:
        index_article(conn, r["seq"], r["title"], r["summary"], r["content"])
    return len(rows)
