"""SQLite persistence for articles, sources, settings and the search index.

Writes go through one connection guarded by a lock (single writer); reads use
a per-thread connection and, with WAL journaling, proceed while a write is in
progress. Every article write maintains the full-text index in the same
transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import asdict, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from tech_news_aggregator.heat import heat_at
from tech_news_aggregator.normalize import parse_timestamp
from tech_news_aggregator.search import (
    FTS_SCHEMA,
    MAX_RESULTS,
    SearchFilters,
    filter_clauses,
    index_article,
    rebuild_index,
    remove_from_index,
    search_rows,
)
from tech_news_aggregator.types import Article, Category, ListResult, Settings, Source, SourceKind


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store operation failed (constraint violation, I/O, corrupt data)."""


class NotFoundError(StoreError):
    pass


class DuplicateUrlError(StoreError):
    pass


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS articles (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        url TEXT NOT NULL UNIQUE,
        source TEXT NOT NULL,
        category TEXT NOT NULL,
        published_at TEXT NOT NULL,
        fetched_at TEXT NOT NULL,
        image_url TEXT NOT NULL DEFAULT '',
        source_weight REAL NOT NULL DEFAULT 0.4,
        tags TEXT NOT NULL DEFAULT '[]',
        heat_score REAL NOT NULL DEFAULT 0,
        view_count INTEGER NOT NULL DEFAULT 0,
        click_count INTEGER NOT NULL DEFAULT 0,
        like_count INTEGER NOT NULL DEFAULT 0,
        comment_count INTEGER NOT NULL DEFAULT 0,
        share_count INTEGER NOT NULL DEFAULT 0,
        is_read INTEGER NOT NULL DEFAULT 0,
        is_bookmarked INTEGER NOT NULL DEFAULT 0,
        is_archived INTEGER NOT NULL DEFAULT 0,
        is_manual INTEGER NOT NULL DEFAULT 0,
        summary_is_ai INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_articles_published ON articles (published_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_articles_heat ON articles (heat_score DESC)",
    "CREATE INDEX IF NOT EXISTS idx_articles_category ON articles (category)",
    """
    CREATE TABLE IF NOT EXISTS sources (
        name TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        source_type TEXT NOT NULL,
        category TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        weight REAL NOT NULL DEFAULT 0.4,
        priority INTEGER NOT NULL DEFAULT 0,
        fetch_interval_minutes INTEGER NOT NULL DEFAULT 60,
        last_fetch_at TEXT,
        options TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settings (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        theme TEXT NOT NULL,
        ai_model TEXT NOT NULL,
        ai_base_url TEXT NOT NULL,
        ai_api_key TEXT NOT NULL,
        ai_summary_enabled INTEGER NOT NULL,
        max_article_age_days INTEGER NOT NULL,
        min_heat_score REAL NOT NULL,
        purge_grace_hours INTEGER NOT NULL,
        max_articles INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS url_tombstones (
        url TEXT PRIMARY KEY,
        removed_at TEXT NOT NULL
    )
    """,
    FTS_SCHEMA,
]

_SETTINGS_COLUMNS = [f.name for f in fields(Settings)]

# clicks are tracked for display only and do not feed the heat score
_HEAT_COUNTERS = {"view_count", "like_count", "comment_count", "share_count"}
_COUNTERS = _HEAT_COUNTERS | {"click_count"}


def row_to_article(row: sqlite3.Row) -> Article:
    try:
        tags = tuple(json.loads(row["tags"] or "[]"))
    except ValueError:
        tags = ()
    return Article(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        source=row["source"],
        category=Category.parse(row["category"]),
        published_at=row["published_at"],
        fetched_at=row["fetched_at"],
        summary=row["summary"] or "",
        content=row["content"] or "",
        image_url=row["image_url"] or "",
        source_weight=float(row["source_weight"]),
        tags=tags,
        heat_score=float(row["heat_score"]),
        view_count=int(row["view_count"]),
        click_count=int(row["click_count"]),
        like_count=int(row["like_count"]),
        comment_count=int(row["comment_count"]),
        share_count=int(row["share_count"]),
        is_read=bool(row["is_read"]),
        is_bookmarked=bool(row["is_bookmarked"]),
        is_archived=bool(row["is_archived"]),
        is_manual=bool(row["is_manual"]),
        summary_is_ai=bool(row["summary_is_ai"]),
    )


def row_to_source(row: sqlite3.Row) -> Source:
    try:
        options = json.loads(row["options"] or "{}")
    except ValueError:
        options = {}
    return Source(
        name=row["name"],
        url=row["url"],
        kind=SourceKind.parse(row["source_type"]),
        category=Category.parse(row["category"]),
        weight=float(row["weight"]),
        priority=int(row["priority"]),
        fetch_interval_minutes=int(row["fetch_interval_minutes"]),
        is_active=bool(row["is_active"]),
        last_fetch_at=row["last_fetch_at"],
        options=options if isinstance(options, dict) else {},
    )


def delete_articles(conn: sqlite3.Connection, rows: list[sqlite3.Row], removed_at: str) -> int:
    """Delete rows (needs `seq` and `url`), drop them from the index, and
    remember their URLs so they are not ingested again."""

    if not rows:
        return 0
    remove_from_index(conn, [r["seq"] for r in rows])
    conn.executemany(
        "INSERT OR REPLACE INTO url_tombstones (url, removed_at) VALUES (?, ?)",
        [(r["url"], removed_at) for r in rows],
    )
    conn.executemany("DELETE FROM articles WHERE seq = ?", [(r["seq"],) for r in rows])
    return len(rows)


class Store:
    def __init__(self, path: str | Path, seed_sources: Iterable[Source] | None = None) -> None:
        path = str(path)
        if path == ":memory:":
            # shared-cache URI so reader connections see the same database
            self._target = f"file:news-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._uri = True
        else:
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self._target = str(Path(path).expanduser())
            self._uri = False
        self.path = path

        self._lock = threading.RLock()
        self._local = threading.local()
        try:
            self._writer = self._connect(check_same_thread=False)
            if not self._uri:
                self._writer.execute("PRAGMA journal_mode=WAL")
            with self.transaction() as conn:
                for stmt in SCHEMA:
                    conn.execute(stmt)
                conn.execute(
                    f"INSERT OR IGNORE INTO settings (id, {', '.join(_SETTINGS_COLUMNS)}) "
                    f"VALUES (1, {', '.join('?' for _ in _SETTINGS_COLUMNS)})",
                    self._settings_params(Settings()),
                )
        except sqlite3.Error as e:
            raise StoreError(f"cannot open store at {path}: {e}") from e

        if seed_sources is not None:
            self.seed_sources(seed_sources)

    def _connect(self, check_same_thread: bool = True) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._target,
            uri=self._uri,
            isolation_level=None,
            check_same_thread=check_same_thread,
            timeout=30,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction on the writer connection."""

        with self._lock:
            conn = self._writer
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                # a failed COMMIT leaves the transaction open
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _read(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self._reader().execute(sql, list(params)).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
        with self._lock:
            self._writer.close()

    # ---- sources ----

    def seed_sources(self, sources: Iterable[Source]) -> int:
        """Insert the default sources on first run (empty table only)."""

        try:
            with self.transaction() as conn:
                if conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0] > 0:
                    return 0
                n = 0
                for s in sources:
                    self._upsert_source(conn, s)
                    n += 1
        except sqlite3.Error as e:
            raise StoreError(f"seeding sources failed: {e}") from e
        logger.info("Seeded %d default sources", n)
        return n

    def _upsert_source(self, conn: sqlite3.Connection, s: Source) -> None:
        conn.execute(
            """
            INSERT INTO sources
                (name, url, source_type, category, is_active, weight, priority,
                 fetch_interval_minutes, last_fetch_at, options)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                url = excluded.url,
                source_type = excluded.source_type,
                category = excluded.category,
                weight = excluded.weight,
                priority = excluded.priority,
                fetch_interval_minutes = excluded.fetch_interval_minutes,
                options = excluded.options
            """,
            (
                s.name,
                s.url,
                s.kind.value,
                s.category.value,
                int(s.is_active),
                float(s.weight),
                int(s.priority),
                int(s.fetch_interval_minutes),
                s.last_fetch_at,
                json.dumps(s.options, ensure_ascii=False),
            ),
        )

    def list_sources(self, active_only: bool = False) -> list[Source]:
        sql = "SELECT * FROM sources"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY priority DESC, name"
        return [row_to_source(r) for r in self._read(sql)]

    def set_source_active(self, name: str, active: bool) -> None:
        try:
            with self.transaction() as conn:
                cur = conn.execute("UPDATE sources SET is_active = ? WHERE name = ?", (int(active), name))
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        if cur.rowcount == 0:
            raise NotFoundError(f"no source named {name!r}")

    def mark_fetched(self, names: Iterable[str], when: str) -> None:
        try:
            with self.transaction() as conn:
                conn.executemany(
                    "UPDATE sources SET last_fetch_at = ? WHERE name = ?",
                    [(when, n) for n in names],
                )
        except sqlite3.Error as e:
            raise StoreError(f"updating last_fetch_at failed: {e}") from e

    # ---- settings ----

    @staticmethod
    def _settings_params(s: Settings) -> list[Any]:
        d = asdict(s)
        return [int(v) if isinstance(v, bool) else v for v in (d[c] for c in _SETTINGS_COLUMNS)]

    def get_settings(self) -> Settings:
        rows = self._read("SELECT * FROM settings WHERE id = 1")
        if not rows:
            return Settings()
        r = rows[0]
        return Settings(
            theme=r["theme"],
            ai_model=r["ai_model"],
            ai_base_url=r["ai_base_url"],
            ai_api_key=r["ai_api_key"],
            ai_summary_enabled=bool(r["ai_summary_enabled"]),
            max_article_age_days=int(r["max_article_age_days"]),
            min_heat_score=float(r["min_heat_score"]),
            purge_grace_hours=int(r["purge_grace_hours"]),
            max_articles=int(r["max_articles"]),
        )

    def save_settings(self, settings: Settings) -> None:
        assignments = ", ".join(f"{c} = ?" for c in _SETTINGS_COLUMNS)
        try:
            with self.transaction() as conn:
                conn.execute(f"UPDATE settings SET {assignments} WHERE id = 1", self._settings_params(settings))
        except sqlite3.Error as e:
            raise StoreError(f"saving settings failed: {e}") from e

    # ---- articles ----

    def known_urls(self, urls: Iterable[str]) -> set[str]:
        """Subset of `urls` already stored (archived included) or tombstoned."""

        wanted = list(dict.fromkeys(u for u in urls if u))
        known: set[str] = set()
        for i in range(0, len(wanted), 500):
            chunk = wanted[i : i + 500]
            marks = ", ".join("?" for _ in chunk)
            rows = self._read(
                f"SELECT url FROM articles WHERE url IN ({marks}) "
                f"UNION SELECT url FROM url_tombstones WHERE url IN ({marks})",
                chunk + chunk,
            )
            known.update(r["url"] for r in rows)
        return known

    def url_exists(self, url: str) -> bool:
        return bool(self.known_urls([url]))

    def insert_article(self, article: Article) -> Article:
        """Insert one article and index it. Raises DuplicateUrlError when the URL is taken."""

        a = article if article.id else replace(article, id=str(uuid.uuid4()))
        try:
            with self.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO articles
                        (id, title, summary, content, url, source, category, published_at,
                         fetched_at, image_url, source_weight, tags, heat_score, view_count,
                         click_count, like_count, comment_count, share_count, is_read,
                         is_bookmarked, is_archived, is_manual, summary_is_ai)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        a.id,
                        a.title,
                        a.summary,
                        a.content,
                        a.url,
                        a.source,
                        a.category.value,
                        a.published_at,
                        a.fetched_at,
                        a.image_url,
                        a.source_weight,
                        json.dumps(list(a.tags), ensure_ascii=False),
                        a.heat_score,
                        a.view_count,
                        a.click_count,
                        a.like_count,
                        a.comment_count,
                        a.share_count,
                        int(a.is_read),
                        int(a.is_bookmarked),
                        int(a.is_archived),
                        int(a.is_manual),
                        int(a.summary_is_ai),
                    ),
                )
                index_article(conn, int(cur.lastrowid), a.title, a.summary, a.content)
        except sqlite3.IntegrityError as e:
            raise DuplicateUrlError(f"article already stored: {a.url}") from e
        except sqlite3.Error as e:
            raise StoreError(f"inserting {a.url} failed: {e}") from e
        return a

    def get_article(self, article_id: str) -> Article:
        rows = self._read("SELECT * FROM articles WHERE id = ?", (article_id,))
        if not rows:
            raise NotFoundError(f"no article with id {article_id!r}")
        return row_to_article(rows[0])

    def get_article_by_url(self, url: str) -> Optional[Article]:
        rows = self._read("SELECT * FROM articles WHERE url = ?", (url,))
        return row_to_article(rows[0]) if rows else None

    def count_articles(self, include_archived: bool = True) -> int:
        sql = "SELECT COUNT(*) FROM articles"
        if not include_archived:
            sql += " WHERE is_archived = 0"
        return int(self._read(sql)[0][0])

    def list_articles(
        self,
        page: int = 1,
        page_size: int = 20,
        category: str | None = None,
        order: str = "latest",
        filters: SearchFilters | None = None,
    ) -> ListResult:
        """One page of live articles, newest first (or hottest first with order="heat")."""

        page = max(1, int(page))
        page_size = max(1, int(page_size))
        f = filters or SearchFilters()
        if category and category.lower() != "all":
            f = replace(f, category=Category.parse(category).value)
        clauses, params = filter_clauses(f)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        if order == "heat":
            order_by = "a.heat_score DESC, a.published_at DESC"
        else:
            order_by = "a.published_at DESC, a.fetched_at DESC"

        total = int(self._read(f"SELECT COUNT(*) FROM articles a{where}", params)[0][0])
        rows = self._read(
            f"SELECT a.* FROM articles a{where} ORDER BY {order_by} LIMIT ? OFFSET ?",
            [*params, page_size, (page - 1) * page_size],
        )
        return ListResult(items=[row_to_article(r) for r in rows], total=total, page=page, page_size=page_size)

    def search(self, query: str, filters: SearchFilters | None = None, limit: int = MAX_RESULTS) -> list[Article]:
        try:
            rows = search_rows(self._reader(), query, filters, limit)
        except sqlite3.Error as e:
            raise StoreError(f"search failed: {e}") from e
        return [row_to_article(r) for r in rows]

    def _update_one(self, article_id: str, sql: str, params: Iterable[Any]) -> None:
        try:
            with self.transaction() as conn:
                cur = conn.execute(sql, [*params, article_id])
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        if cur.rowcount == 0:
            raise NotFoundError(f"no article with id {article_id!r}")

    def set_bookmark(self, article_id: str, value: bool) -> None:
        self._update_one(article_id, "UPDATE articles SET is_bookmarked = ? WHERE id = ?", [int(value)])

    def set_read(self, article_id: str, value: bool) -> None:
        self._update_one(article_id, "UPDATE articles SET is_read = ? WHERE id = ?", [int(value)])

    def update_summary(self, article_id: str, summary: str, is_ai: bool) -> None:
        try:
            with self.transaction() as conn:
                row = conn.execute(
                    "SELECT seq, title, content FROM articles WHERE id = ?", (article_id,)
                ).fetchone()
                if row is None:
                    raise NotFoundError(f"no article with id {article_id!r}")
                conn.execute(
                    "UPDATE articles SET summary = ?, summary_is_ai = ? WHERE seq = ?",
                    (summary, int(is_ai), row["seq"]),
                )
                index_article(conn, row["seq"], row["title"], summary, row["content"])
        except sqlite3.Error as e:
            raise StoreError(f"updating summary of {article_id} failed: {e}") from e

    def increment_counter(self, article_id: str, column: str, now: datetime) -> Article:
        """Bump an engagement counter, rescoring the article when it feeds heat."""

        if column not in _COUNTERS:
            raise ValueError(f"not an engagement counter: {column}")
        try:
            with self.transaction() as conn:
                row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
                if row is None:
                    raise NotFoundError(f"no article with id {article_id!r}")
                a = row_to_article(row)
                a = replace(a, **{column: getattr(a, column) + 1})
                score = self._score(a, now) if column in _HEAT_COUNTERS else a.heat_score
                conn.execute(
                    f"UPDATE articles SET {column} = {column} + 1, heat_score = ? WHERE seq = ?",
                    (score, row["seq"]),
                )
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        return replace(a, heat_score=score)

    @staticmethod
    def _score(a: Article, now: datetime) -> float:
        published = parse_timestamp(a.published_at) or parse_timestamp(a.fetched_at) or now
        return heat_at(a.engagement, a.source_weight, published, now)

    def recompute_heat(self, now: datetime) -> int:
        """Rescore every live article from its counters and age."""

        try:
            with self.transaction() as conn:
                rows = conn.execute("SELECT * FROM articles WHERE is_archived = 0").fetchall()
                updates = [(self._score(row_to_article(r), now), r["seq"]) for r in rows]
                conn.executemany("UPDATE articles SET heat_score = ? WHERE seq = ?", updates)
        except sqlite3.Error as e:
            raise StoreError(f"recomputing heat failed: {e}") from e
        return len(updates)

    def reindex(self) -> int:
        try:
            with self.transaction() as conn:
                count = rebuild_index(conn)
        except sqlite3.Error as e:
            raise StoreError(f"rebuilding the search index failed: {e}") from e
        logger.info("Re-indexed %d articles", count)
        return count

    def articles_needing_summary(self, limit: int | None = None) -> list[Article]:
        """Live articles still carrying a templated (or empty) summary, hottest first."""

        sql = (
            "SELECT * FROM articles WHERE is_archived = 0 "
            "AND (summary_is_ai = 0 OR summary = '') "
            "ORDER BY heat_score DESC, published_at DESC"
        )
        params: list[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [row_to_article(r) for r in self._read(sql, params)]
