"""Payout tables, reward tables and per-game constants."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

# ---------------------------------------------------------------------------
# Blackjack
# ---------------------------------------------------------------------------

BLACKJACK_NATURAL_MULTIPLIER = 2.5
BLACKJACK_WIN_MULTIPLIER = 2
BLACKJACK_PUSH_MULTIPLIER = 1
DEALER_STANDS_ON = 17
BLACKJACK_MODES: Tuple[str, ...] = ("single", "player", "dealer")

# ---------------------------------------------------------------------------
# Roulette (European single-zero wheel)
# ---------------------------------------------------------------------------

WHEEL_ORDER: Tuple[int, ...] = (
    0, 32, 15, 19, 4, 21, 2, 25, 17, 34, 6, 27, 13, 36, 11, 30, 8, 23, 10,
    5, 24, 16, 33, 1, 20, 14, 31, 9, 22, 18, 29, 7, 28, 12, 35, 3, 26,
)
RED_NUMBERS: FrozenSet[int] = frozenset(
    {1, 3, 5, 7, 9, 12, 14, 16, 18, 19, 21, 23, 25, 27, 30, 32, 34, 36}
)
BLACK_NUMBERS: FrozenSet[int] = frozenset(set(range(1, 37)) - RED_NUMBERS)


@dataclass(frozen=True)
class RouletteBetType:
    name: str
    label: str
    odds: int
    numbers: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def multiplier(self) -> int:
        """Gross return per coin staked."""
        return self.odds + 1

    def wins(self, number: int, target: int | None = None) -> bool:
        if self.name == "straight":
            return target == number
        return number in self.numbers


ROULETTE_BETS: Dict[str, RouletteBetType] = {
    "red": RouletteBetType("red", "Red", 1, RED_NUMBERS),
    "black": RouletteBetType("black", "Black", 1, BLACK_NUMBERS),
    "even": RouletteBetType("even", "Even", 1, frozenset(n for n in range(1, 37) if n % 2 == 0)),
    "odd": RouletteBetType("odd", "Odd", 1, frozenset(n for n in range(1, 37) if n % 2 == 1)),
    "low": RouletteBetType("low", "1-18", 1, frozenset(range(1, 19))),
    "high": RouletteBetType("high", "19-36", 1, frozenset(range(19, 37))),
    "straight": RouletteBetType("straight", "Number", 35),
}


def number_color(number: int) -> str:
    if number == 0:
        return "green"
    return "red" if number in RED_NUMBERS else "black"


# ---------------------------------------------------------------------------
# Baccarat
# ---------------------------------------------------------------------------

BACCARAT_MULTIPLIERS: Dict[str, float] = {"player": 2, "banker": 1.95, "tie": 9}
BACCARAT_NATURAL = 8

# ---------------------------------------------------------------------------
# Word games
# ---------------------------------------------------------------------------

HANGMAN_MAX_WRONG = 6
HANGMAN_WIN_MULTIPLIER = 2
HANGMAN_PERFECT_MULTIPLIER = 3
WORDLE_MAX_GUESSES = 6
WORDLE_WORD_LENGTH = 5
WORDLE_WIN_MULTIPLIER = 2

# ---------------------------------------------------------------------------
# Rewards for games played without a stake
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RewardTable:
    win: int = 0
    participation: int = 0
    perfect: int = 0


GAME_REWARDS: Dict[str, RewardTable] = {
    "tictactoe": RewardTable(win=30, participation=5),
    "pong": RewardTable(win=50, participation=10, perfect=75),
    "balatro": RewardTable(win=150, participation=25, perfect=200),
}

BALATRO_PARTICIPATION_STEP = 15
BALATRO_PARTICIPATION_CAP = 150


def get_rewards(kind: str) -> RewardTable:
    """Return the reward table for ``kind``."""
    if kind not in GAME_REWARDS:
        raise ValueError(f"No reward table for {kind!r}. Available: {sorted(GAME_REWARDS)}")
    return GAME_REWARDS[kind]


# ---------------------------------------------------------------------------
# Balatro
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BlindSet:
    small: int
    big: int
    boss: int

    def requirement(self, blind: str) -> int:
        return getattr(self, blind)


BALATRO_BLINDS: Dict[int, BlindSet] = {
    1: BlindSet(small=300, big=800, boss=2000),
    2: BlindSet(small=450, big=1200, boss=3000),
    3: BlindSet(small=600, big=1600, boss=4000),
}
BALATRO_BLIND_ORDER: Tuple[str, ...] = ("small", "big", "boss")
BALATRO_FINAL_ANTE = 8
BALATRO_HANDS = 4
BALATRO_DISCARDS = 3
BALATRO_HAND_SIZE = 8
BALATRO_MAX_SELECTION = 5
BALATRO_BASE_CHIPS = 50

# name -> (multiplier, base chips)
BALATRO_HANDS_TABLE: Dict[str, Tuple[int, int]] = {
    "Straight Flush": (8, 100),
    "Four of a Kind": (7, 60),
    "Full House": (4, 40),
    "Flush": (4, 35),
    "Straight": (4, 30),
    "Three of a Kind": (3, 30),
    "Two Pair": (2, 20),
    "Pair": (2, 10),
    "High Card": (1, 5),
}


def blinds_for_ante(ante: int) -> BlindSet:
    """Blind requirements for ``ante``; antes past the table reuse the last row."""
    return BALATRO_BLINDS.get(ante, BALATRO_BLINDS[max(BALATRO_BLINDS)])


# ---------------------------------------------------------------------------
# Pong
# ---------------------------------------------------------------------------

PONG_WIDTH = 30
PONG_HEIGHT = 10
PONG_PADDLE_START = 4
