"""Randomness helpers shared by every game.

Production play draws from the operating system CSPRNG; tests may pass a seed
to get a reproducible ``random.Random`` instead.
"""

from __future__ import annotations

import random
from typing import List, Optional, Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """Minimal interface the games rely on."""

    def randint(self, low: int, high: int) -> int: ...

    def shuffle(self, items: Sequence[T]) -> List[T]: ...

    def choice(self, items: Sequence[T]) -> T: ...


class GameRandom:
    """Uniform integers and shuffles over one underlying source."""

    def __init__(self, source: random.Random) -> None:
        self._source = source

    def randint(self, low: int, high: int) -> int:
        """Return an integer in ``[low, high]`` (both inclusive)."""
        if high < low:
            raise ValueError(f"Empty range [{low}, {high}]")
        # randrange draws by rejection sampling, so there is no modulo bias
        return low + self._source.randrange(high - low + 1)

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Return a shuffled copy of ``items``."""
        result = list(items)
        self._source.shuffle(result)
        return result

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise IndexError("Cannot choose from an empty sequence")
        return items[self.randint(0, len(items) - 1)]


def build_rng(*, seed: Optional[int] = None) -> GameRandom:
    """Return the secure generator, or a deterministic one when ``seed`` is given."""
    if seed is None:
        return GameRandom(random.SystemRandom())
    return GameRandom(random.Random(seed))
