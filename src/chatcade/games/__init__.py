"""Game definitions hosted by the engine."""

from __future__ import annotations

from typing import Dict, List, Type

from .baccarat import BaccaratGame
from .balatro import BalatroGame
from .base import EngineServices, GameDefinition
from .blackjack import BlackjackGame
from .hangman import HangmanGame
from .pong import PongGame
from .roulette import RouletteGame
from .tictactoe import TicTacToeGame
from .unoexpress import UnoExpressGame
from .wordle import WordleGame

GAME_TYPES: Dict[str, Type[GameDefinition]] = {
    game.kind: game
    for game in (
        BlackjackGame,
        RouletteGame,
        BaccaratGame,
        TicTacToeGame,
        HangmanGame,
        WordleGame,
        UnoExpressGame,
        PongGame,
        BalatroGame,
    )
}


def build_definitions(services: EngineServices) -> List[GameDefinition]:
    """Instantiate every registered game against ``services``."""
    return [game_type(services) for game_type in GAME_TYPES.values()]


__all__ = ["GAME_TYPES", "EngineServices", "GameDefinition", "build_definitions"]
