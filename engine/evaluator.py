from __future__ import annotations

import itertools
from enum import IntEnum
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

from .cards import Card

RANK_ORDER = "23456789TJQKA"
RANK_VALUE = {rank: idx for idx, rank in enumerate(RANK_ORDER, start=2)}


class HandCategory(IntEnum):
    HIGH_CARD = 0
    PAIR = 1
    TWO_PAIR = 2
    THREE_OF_A_KIND = 3
    STRAIGHT = 4
    FLUSH = 5
    FULL_HOUSE = 6
    FOUR_OF_A_KIND = 7
    STRAIGHT_FLUSH = 8


class HandRank(NamedTuple):
    """Comparable ranking: category first, then the encoded deciding ranks."""

    category: HandCategory
    value: int

    @property
    def name(self) -> str:
        return describe_rank(self)


def describe_rank(rank: HandRank) -> str:
    return rank.category.name.lower()


def evaluate_best(cards: Sequence[Card]) -> HandRank:
    """Return the best 5-card ranking out of hole + community cards."""
    if len(cards) < 5:
        raise ValueError("Need at least 5 cards to evaluate a hand")
    best: Optional[HandRank] = None
    for combo in itertools.combinations(cards, 5):
        rank = _evaluate_five(combo)
        if best is None or rank > best:
            best = rank
    assert best is not None
    return best


def compare_hands(a: Sequence[Card], b: Sequence[Card]) -> int:
    left, right = evaluate_best(a), evaluate_best(b)
    if left > right:
        return 1
    if left < right:
        return -1
    return 0


def _encode(ranks: Iterable[int]) -> int:
    # Base-15 positional encoding: earlier ranks dominate later kickers.
    value = 0
    for rank in ranks:
        value = value * 15 + rank
    return value


def _evaluate_five(cards: Sequence[Card]) -> HandRank:
    ranks = sorted((RANK_VALUE[card.rank] for card in cards), reverse=True)
    is_flush = len({card.suit for card in cards}) == 1
    straight_high = _straight_high(ranks)

    counts: Dict[int, int] = {}
    for rank in ranks:
        counts[rank] = counts.get(rank, 0) + 1
    # Groups ordered by size, then rank: [(rank, count), ...]
    groups = sorted(counts.items(), key=lambda item: (item[1], item[0]), reverse=True)
    shape = [count for _, count in groups]
    grouped_ranks: List[int] = [rank for rank, _ in groups]

    if straight_high and is_flush:
        return HandRank(HandCategory.STRAIGHT_FLUSH, _encode([straight_high]))
    if shape[0] == 4:
        return HandRank(HandCategory.FOUR_OF_A_KIND, _encode(grouped_ranks))
    if shape[:2] == [3, 2]:
        return HandRank(HandCategory.FULL_HOUSE, _encode(grouped_ranks))
    if is_flush:
        return HandRank(HandCategory.FLUSH, _encode(ranks))
    if straight_high:
        return HandRank(HandCategory.STRAIGHT, _encode([straight_high]))
    if shape[0] == 3:
        return HandRank(HandCategory.THREE_OF_A_KIND, _encode(grouped_ranks))
    if shape[:2] == [2, 2]:
        return HandRank(HandCategory.TWO_PAIR, _encode(grouped_ranks))
    if shape[0] == 2:
        return HandRank(HandCategory.PAIR, _encode(grouped_ranks))
    return HandRank(HandCategory.HIGH_CARD, _encode(ranks))


def _straight_high(ranks: Sequence[int]) -> Optional[int]:
    distinct = sorted(set(ranks), reverse=True)
    if len(distinct) != 5:
        return None
    if distinct[0] - distinct[4] == 4:
        return distinct[0]
    if distinct == [14, 5, 4, 3, 2]:  # wheel, ace plays low
        return 5
    return None
