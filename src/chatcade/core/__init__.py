"""Core session machinery shared by every game."""

from . import cards, errors, fsm, lobby, router, rulesets, scheduler, schemas, settlement, store

__all__ = ["cards", "errors", "fsm", "lobby", "router", "rulesets", "scheduler", "schemas", "settlement", "store"]
