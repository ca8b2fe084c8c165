from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

RANKS = "AKQJT98765432"
SUITS = "hdcs"

# Hands persist cards as two-character labels ("Ah", "Td"); Card is the parsed form.


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __post_init__(self) -> None:
        if self.rank not in RANKS:
            raise ValueError(f"Invalid rank: {self.rank}")
        if self.suit not in SUITS:
            raise ValueError(f"Invalid suit: {self.suit}")

    @property
    def label(self) -> str:
        return f"{self.rank}{self.suit}"


def full_deck() -> List[str]:
    return [f"{rank}{suit}" for rank in RANKS[::-1] for suit in SUITS]


def shuffled_deck(seed: Optional[Union[int, str]] = None, exclude: Iterable[str] = ()) -> List[str]:
    """Fresh shuffled deck of labels, minus anything already on the table."""
    taken = set(exclude)
    deck = [label for label in full_deck() if label not in taken]
    random.Random(seed).shuffle(deck)
    return deck


def deal(deck: List[str], count: int) -> List[str]:
    if len(deck) < count:
        raise ValueError("Not enough cards left in deck")
    cards = deck[:count]
    del deck[:count]
    return cards


def parse_label(label: str) -> Card:
    if len(label) != 2:
        raise ValueError(f"Invalid card label: {label}")
    return Card(label[0], label[1])


def parse_cards(labels: Sequence[str]) -> List[Card]:
    return [parse_label(label) for label in labels]
