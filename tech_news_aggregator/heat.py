from __future__ import annotations

from datetime import datetime

from tech_news_aggregator.types import Engagement


VIEW_WEIGHT = 1.0
LIKE_WEIGHT = 3.0
COMMENT_WEIGHT = 5.0
SHARE_WEIGHT = 4.0
AUTHORITY_FACTOR = 15.0
DECAY_PER_HOUR = 0.5

# authority bands, by source standing
AUTHORITY_WEIGHTS: dict[str, float] = {
    "official": 1.0,
    "research": 0.9,
    "community": 0.8,
    "media": 0.6,
    "unclassified": 0.4,
}

DISPLAY_MAX = 100.0


def hours_since(published_at: datetime, now: datetime) -> float:
    return (now - published_at).total_seconds() / 3600.0


def heat_score(engagement: Engagement, source_weight: float, hours_since_published: float) -> float:
    """Raw signed heat; recomputed from scratch, never accumulated.

    Future timestamps count as zero hours old.
    """

    return (
        engagement.views * VIEW_WEIGHT
        + engagement.likes * LIKE_WEIGHT
        + engagement.comments * COMMENT_WEIGHT
        + engagement.shares * SHARE_WEIGHT
        + source_weight * AUTHORITY_FACTOR
        - max(0.0, hours_since_published) * DECAY_PER_HOUR
    )


def heat_at(engagement: Engagement, source_weight: float, published_at: datetime, now: datetime) -> float:
    return heat_score(engagement, source_weight, hours_since(published_at, now))


def display_heat(score: float, upper: float = DISPLAY_MAX) -> float:
    """Clamp a stored score into the non-negative range shown to users."""

    return max(0.0, min(upper, score))
