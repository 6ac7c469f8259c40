"""Exception taxonomy for the game engine.

Every ``EngineError`` carries a ``user_message`` that the engine boundary can show
to the participant who triggered it. ``FSMError`` is a bug and stays internal.
"""

from __future__ import annotations

from typing import Optional


class EngineError(RuntimeError):
    """Base class for recoverable engine failures."""

    default_message = "An error occurred."

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None) -> None:
        super().__init__(message or user_message or self.default_message)
        self.user_message = user_message or message or self.default_message


class ValidationError(EngineError):
    """Stale, malformed, out-of-turn or wrong-phase action."""

    default_message = "That action is not available right now."


class InsufficientFunds(EngineError):
    default_message = "You don't have enough coins for that bet."

    def __init__(self, participant_id: str, amount: int, balance: Optional[int] = None) -> None:
        message = f"You need {amount} coins for that bet."
        if balance is not None:
            message = f"You need {amount} coins for that bet but only have {balance}."
        super().__init__(message)
        self.participant_id = participant_id
        self.amount = amount
        self.balance = balance


class SessionNotFound(EngineError):
    default_message = "No active game found!"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message, user_message=self.default_message)


class KeyCollision(EngineError):
    default_message = "A game is already in progress here."


class TransientRenderFailure(EngineError):
    """The presentation layer could not publish a view."""

    default_message = "The game display could not be updated."


class SettlementFailure(EngineError):
    """A payout failed after the session was already terminal."""

    default_message = "A payout could not be completed."


class FSMError(RuntimeError):
    """Illegal phase transition; always a programming error, never shown to players."""
