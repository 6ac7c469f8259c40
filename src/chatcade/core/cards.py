"""Playing cards and the scoring rules that several games share."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from ..utils.rng import RandomSource

SUITS = ("♠", "♥", "♦", "♣")
RANKS = ("A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")
FACE_RANKS = frozenset({"J", "Q", "K"})


@dataclass(frozen=True, slots=True)
class Card:
    rank: str
    suit: str

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"

    @property
    def order(self) -> int:
        """Rank order with aces high (2..14)."""
        if self.rank == "A":
            return 14
        if self.rank in FACE_RANKS:
            return {"J": 11, "Q": 12, "K": 13}[self.rank]
        return int(self.rank)

    def to_dict(self) -> dict:
        return {"rank": self.rank, "suit": self.suit}

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        return cls(str(data["rank"]), str(data["suit"]))


def standard_deck() -> List[Card]:
    return [Card(rank, suit) for suit in SUITS for rank in RANKS]


def shuffled_deck(rng: RandomSource) -> List[Card]:
    """A fresh 52-card deck; cards are drawn with ``pop()`` from the end."""
    return rng.shuffle(standard_deck())


def parse_cards(text: str) -> List[Card]:
    """Build cards from shorthand such as ``"A 9"`` (suits default to spades).

    >>> [str(c) for c in parse_cards("A 10")]
    ['A♠', '10♠']
    """
    return [Card(token.upper(), SUITS[0]) for token in text.split()]


def blackjack_value(card: Card) -> int:
    if card.rank == "A":
        return 11
    if card.rank in FACE_RANKS:
        return 10
    return int(card.rank)


def blackjack_score(cards: Iterable[Card]) -> int:
    """Best total with aces demoted from 11 to 1 while the hand is over 21.

    >>> blackjack_score(parse_cards("A 9"))
    20
    >>> blackjack_score(parse_cards("A A 9"))
    21
    >>> blackjack_score(parse_cards("10 A"))
    21
    >>> blackjack_score(parse_cards("K Q 5"))
    25
    """
    cards = list(cards)
    total = sum(blackjack_value(card) for card in cards)
    aces = sum(1 for card in cards if card.rank == "A")
    while total > 21 and aces:
        total -= 10
        aces -= 1
    return total


def is_natural(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and blackjack_score(cards) == 21


def baccarat_value(card: Card) -> int:
    if card.rank == "A":
        return 1
    if card.rank == "10" or card.rank in FACE_RANKS:
        return 0
    return int(card.rank)


def baccarat_total(cards: Iterable[Card]) -> int:
    """Hand total modulo 10.

    >>> baccarat_total(parse_cards("9 8"))
    7
    >>> baccarat_total(parse_cards("K A"))
    1
    """
    return sum(baccarat_value(card) for card in cards) % 10


def format_hand(cards: Iterable[Card]) -> str:
    return " ".join(str(card) for card in cards)
