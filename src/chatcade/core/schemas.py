"""Pydantic contracts for the inbound and outbound engine boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GameKind(str, Enum):
    """Games the engine knows how to host."""

    BLACKJACK = "blackjack"
    ROULETTE = "roulette"
    BACCARAT = "baccarat"
    TICTACTOE = "tictactoe"
    HANGMAN = "hangman"
    WORDLE = "wordle"
    UNOEXPRESS = "unoexpress"
    PONG = "pong"
    BALATRO = "balatro"


class StartRequest(BaseModel):
    """A participant asking to start a game in a channel."""

    model_config = ConfigDict(populate_by_name=True)

    requester_id: str = Field(..., alias="requesterId")
    requester_name: str = Field("", alias="requesterName")
    channel_id: str = Field(..., alias="channelId")
    server_id: Optional[str] = Field(None, alias="serverId")
    game_kind: GameKind = Field(..., alias="gameKind")
    opponent_id: Optional[str] = Field(None, alias="opponentId")
    opponent_name: Optional[str] = Field(None, alias="opponentName")
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.requester_name or self.requester_id


class ActionEvent(BaseModel):
    """A participant pressing a choice that the engine previously rendered."""

    model_config = ConfigDict(populate_by_name=True)

    actor_id: str = Field(..., alias="actorId")
    actor_name: str = Field("", alias="actorName")
    action_id: str = Field(..., alias="actionId", min_length=1)
    channel_id: str = Field(..., alias="channelId")
    server_id: Optional[str] = Field(None, alias="serverId")

    @property
    def display_name(self) -> str:
        return self.actor_name or self.actor_id


class Choice(BaseModel):
    id: str
    label: str
    disabled: bool = False


class RenderedView(BaseModel):
    """Structured, presentation-agnostic snapshot of a session or lobby."""

    title: str
    body: List[str] = Field(default_factory=list)
    fields: Dict[str, str] = Field(default_factory=dict)
    choices: List[Choice] = Field(default_factory=list)
    private: bool = False

    def choice_ids(self) -> List[str]:
        return [choice.id for choice in self.choices if not choice.disabled]


class ActionResponse(BaseModel):
    """What the engine hands back to the caller of ``start``/``handle_action``."""

    ok: bool = True
    session_key: Optional[str] = None
    view: Optional[RenderedView] = None
    message: Optional[str] = None
    ephemeral: bool = False

    @classmethod
    def rejected(cls, message: str) -> "ActionResponse":
        return cls(ok=False, message=message, ephemeral=True)


class ParticipantRef(BaseModel):
    id: str
    name: str


class OutcomeRecord(BaseModel):
    """Immutable summary of a finished game, handed to the outcome recorder."""

    model_config = ConfigDict(frozen=True)

    server_id: Optional[str] = None
    game_kind: str
    participants: List[ParticipantRef] = Field(default_factory=list)
    winner_id: Optional[str] = None
    duration_seconds: int = 0
    final_score: Dict[str, Any] = Field(default_factory=dict)
    mode: str = "single"


class Notice(BaseModel):
    """Ephemeral, user-only message that the cleanup sweep removes."""

    notice_id: str
    participant_id: str
    text: str
    created_at: float
