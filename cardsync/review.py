"""Weighted review selection.

Entries are drawn without replacement with probability proportional to a
per-mastery-level weight, so failed entries come up most often.
"""

import random
from typing import Dict, List, Mapping, Optional, Union

from cardsync.types import MasteryLevel, Record

DEFAULT_REVIEW_WEIGHTS: Dict[MasteryLevel, int] = {
    MasteryLevel.FAIL: 10,
    MasteryLevel.PARTIAL: 5,
    MasteryLevel.PASS: 1,
    MasteryLevel.UNREVIEWED: 5,
}


def normalize_weights(weights: Optional[Mapping[Union[MasteryLevel, int], int]]) -> Dict[MasteryLevel, int]:
    """Merge a partial weight table over the defaults, keyed by MasteryLevel."""
    table = dict(DEFAULT_REVIEW_WEIGHTS)
    for level, weight in (weights or {}).items():
        if weight < 0:
            raise ValueError(f"Review weight for {level} must be >= 0, got {weight}")
        table[MasteryLevel(int(level))] = weight
    return table


def select_for_review(
    records: List[Record],
    count: int = 10,
    weights: Optional[Mapping[Union[MasteryLevel, int], int]] = None,
    rng: Optional[random.Random] = None,
) -> List[Record]:
    """Pick up to ``count`` distinct records, weighted by mastery level.

    Deleted records are never selected. Records whose weight is 0 are only
    picked once every positively weighted record has been drawn.
    """
    rng = rng or random.Random()
    table = normalize_weights(weights)
    pool = [r for r in records if not r.deleted]
    selected: List[Record] = []

    while pool and len(selected) < count:
        pool_weights = [table[r.mastery_level] for r in pool]
        total = sum(pool_weights)
        if total <= 0:
            index = rng.randrange(len(pool))
        else:
            threshold = rng.random() * total
            # Float rounding fallback: last positively weighted record
            index = max(i for i, weight in enumerate(pool_weights) if weight > 0)
            for i, weight in enumerate(pool_weights):
                threshold -= weight
                if threshold < 0:
                    index = i
                    break
        selected.append(pool.pop(index))

    return selected
