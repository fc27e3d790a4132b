from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta

from tech_news_aggregator.normalize import format_timestamp
from tech_news_aggregator.storage import Store, StoreError, delete_articles
from tech_news_aggregator.types import CleanupResult, Settings


logger = logging.getLogger(__name__)


def run_cleanup(store: Store, settings: Settings, now: datetime) -> CleanupResult:
    """Apply the retention rules in one write transaction.

    1. archive live rows published before `max_article_age_days`;
    2. delete rows scoring below `min_heat_score` that were fetched more than
       `purge_grace_hours` ago;
    3. delete the oldest fetched rows beyond `max_articles`.

    Bookmarked rows are exempt from all three. Deleted URLs are tombstoned.
    """

    stamp = format_timestamp(now)
    age_cutoff = format_timestamp(now - timedelta(days=settings.max_article_age_days))
    grace_cutoff = format_timestamp(now - timedelta(hours=settings.purge_grace_hours))

    try:
        with store.transaction() as conn:
            archived = conn.execute(
                "UPDATE articles SET is_archived = 1 "
                "WHERE is_archived = 0 AND is_bookmarked = 0 AND published_at < ?",
                (age_cutoff,),
            ).rowcount

            doomed = conn.execute(
                "SELECT seq, url FROM articles "
                "WHERE is_bookmarked = 0 AND heat_score < ? AND fetched_at < ?",
                (settings.min_heat_score, grace_cutoff),
            ).fetchall()
            purged = delete_articles(conn, doomed, stamp)

            trimmed = 0
            if settings.max_articles > 0:
                total = conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]
                excess = total - settings.max_articles
                if excess > 0:
                    oldest = conn.execute(
                        "SELECT seq, url FROM articles WHERE is_bookmarked = 0 "
                        "ORDER BY fetched_at ASC, seq ASC LIMIT ?",
                        (excess,),
                    ).fetchall()
                    trimmed = delete_articles(conn, oldest, stamp)
    except sqlite3.Error as e:
        raise StoreError(f"cleanup failed: {e}") from e

    result = CleanupResult(archived=archived, purged=purged, trimmed=trimmed)
    if archived or purged or trimmed:
        logger.info("Cleanup: %d archived, %d purged, %d trimmed", archived, purged, trimmed)
    return result
