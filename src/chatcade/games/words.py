"""Word lists for the guessing games."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Sequence

import structlog

LOGGER = structlog.get_logger(__name__)

HANGMAN_WORDS: Sequence[str] = (
    "ADVENTURE", "BALLOON", "CAMPFIRE", "DIAMOND", "ELEPHANT", "FIREWORK", "GALAXY",
    "HARBOR", "ICEBERG", "JUNGLE", "KEYBOARD", "LANTERN", "MOUNTAIN", "NOTEBOOK",
    "OCTOPUS", "PENGUIN", "QUARTZ", "RAINBOW", "SANDWICH", "TELESCOPE", "UMBRELLA",
    "VOLCANO", "WHISTLE", "XYLOPHONE", "YOGURT", "ZEPPELIN", "BICYCLE", "CASTLE",
    "DOLPHIN", "ENGINE", "FOREST", "GARDEN", "HORIZON", "ISLAND", "JOURNEY",
    "KITCHEN", "LIBRARY", "MAGNET", "NEBULA", "ORCHARD", "PYRAMID", "RIDDLE",
    "SUNFLOWER", "THUNDER", "UNICORN", "VIOLIN", "WIZARD", "PUZZLE", "ROCKET",
)

WORDLE_WORDS: Sequence[str] = (
    "APPLE", "BEACH", "BRAVE", "CHAIR", "CLOUD", "CRANE", "DANCE", "EAGLE", "FAITH",
    "FLAME", "GHOST", "GRAPE", "HEART", "HOUSE", "JOKER", "KNIFE", "LEMON", "LIGHT",
    "MANGO", "MONEY", "NIGHT", "OCEAN", "PIANO", "PLANT", "QUEEN", "RADIO", "RIVER",
    "SHINE", "SMILE", "STONE", "TABLE", "TIGER", "TRAIN", "UNCLE", "VOICE", "WATER",
    "WHALE", "YOUTH", "ZEBRA", "BREAD", "CANDY", "DREAM", "FROST", "GLOVE", "HONEY",
    "LAUGH", "MUSIC", "PEARL", "SWORD", "STORM",
)

_WORD = re.compile(r"^[A-Z]+$")


def load_words(path: Optional[Path], *, default: Sequence[str], length: Optional[int] = None) -> List[str]:
    """Read one word per line from ``path``; fall back to ``default``.

    Lines that are not purely alphabetic (or the wrong length) are skipped.
    """
    if path is None or not path.exists():
        return list(default)
    words = []
    for line in path.read_text(encoding="utf-8").splitlines():
        word = line.strip().upper()
        if not _WORD.match(word):
            continue
        if length is not None and len(word) != length:
            continue
        words.append(word)
    if not words:
        LOGGER.warning("words.empty_file", path=str(path))
        return list(default)
    return words
