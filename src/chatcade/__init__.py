"""Multi-game session engine for chat channels."""

from . import games
from .core import errors, fsm, lobby, router, schemas, settlement, store
from .services.engine import GameEngine

__version__ = "0.1.0"

__all__ = [
    "GameEngine",
    "errors",
    "fsm",
    "games",
    "lobby",
    "router",
    "schemas",
    "settlement",
    "store",
]
