from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DedupResult:
    accepted: list = field(default_factory=list)
    already_known: int = 0
    batch_duplicates: int = 0

    @property
    def skipped(self) -> int:
        return self.already_known + self.batch_duplicates


def dedup_by_url(
    candidates: Iterable[T],
    key: Callable[[T], str],
    known_urls: Callable[[list[str]], set[str]],
) -> DedupResult:
    """Drop candidates whose canonical URL is already known or repeats in the batch.

    `known_urls` answers which of the given keys the corpus already holds
    (archived and removed rows included), so re-ingestion never duplicates or
    resurrects a row. The first occurrence within the batch wins.
    """

    items = list(candidates)
    known = known_urls([key(c) for c in items]) if items else set()

    result = DedupResult()
    seen: set[str] = set()
    for c in items:
        k = key(c)
        if k in known:
            result.already_known += 1
            continue
        if k in seen:
            result.batch_duplicates += 1
            continue
        seen.add(k)
        result.accepted.append(c)

    if result.skipped:
        logger.debug(
            "Dedup: %d accepted, %d already stored, %d repeated in batch",
            len(result.accepted),
            result.already_known,
            result.batch_duplicates,
        )
    return result
