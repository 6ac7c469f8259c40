"""Timed pre-game lobbies with bets, quorum and refunds."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from .errors import EngineError, KeyCollision, SessionNotFound, ValidationError
from .scheduler import Ticker

if TYPE_CHECKING:  # pragma: no cover
    from ..economy.gateway import EconomyGateway

LOGGER = structlog.get_logger(__name__)

RENDER_EVERY_TICK_BELOW = 10
RENDER_EVERY_N_SECONDS = 5


class LobbyOutcome(str, Enum):
    STARTED = "started"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class LobbyEntry:
    participant_id: str
    name: str
    bet: int = 0


@dataclass
class Lobby:
    """A gathering of participants that becomes a session or is refunded."""

    channel_id: str
    game_kind: str
    creator_id: str
    creator_name: str
    wait_seconds: int
    started_at: float
    min_players: int = 1
    max_players: int = 6
    server_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    entries: List[LobbyEntry] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.game_kind, self.channel_id)

    @property
    def timer_key(self) -> str:
        return f"lobby:{self.game_kind}:{self.channel_id}"

    def time_left(self, now: float) -> int:
        return max(0, self.wait_seconds - int(now - self.started_at))

    def has(self, participant_id: str) -> bool:
        return any(entry.participant_id == participant_id for entry in self.entries)

    @property
    def full(self) -> bool:
        return len(self.entries) >= self.max_players

    @property
    def quorum_met(self) -> bool:
        return len(self.entries) >= self.min_players

    @property
    def pot(self) -> int:
        return sum(entry.bet for entry in self.entries)


def should_render(time_left: int) -> bool:
    """Every tick near the end, otherwise on five-second boundaries.

    >>> [t for t in range(20, -1, -1) if should_render(t)]
    [20, 15, 10, 9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    """
    return time_left <= RENDER_EVERY_TICK_BELOW or time_left % RENDER_EVERY_N_SECONDS == 0


RenderHook = Callable[[Lobby, int], Awaitable[None]]
StartHook = Callable[[Lobby], Awaitable[Any]]
CloseHook = Callable[[Lobby, LobbyOutcome], Awaitable[None]]


class LobbyScheduler:
    """Owns every open lobby and the countdown that closes it.

    Expiry, manual start and cancellation all begin by removing the lobby from
    the registry, so whichever runs first wins and the others find nothing.
    """

    def __init__(
        self,
        *,
        economy: "EconomyGateway",
        ticker: Ticker,
        on_start: StartHook,
        on_render: Optional[RenderHook] = None,
        on_close: Optional[CloseHook] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._economy = economy
        self._ticker = ticker
        self._on_start = on_start
        self._on_render = on_render
        self._on_close = on_close
        self._clock = clock
        self._lobbies: Dict[Tuple[str, str], Lobby] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get(self, kind: str, channel_id: str) -> Optional[Lobby]:
        return self._lobbies.get((kind, channel_id))

    def lobbies(self) -> List[Lobby]:
        return list(self._lobbies.values())

    def _claim(self, lobby: Lobby) -> bool:
        """Remove ``lobby`` if it is still registered; only one caller gets True."""
        if self._lobbies.get(lobby.key) is not lobby:
            return False
        del self._lobbies[lobby.key]
        self._ticker.stop(lobby.timer_key)
        return True

    def _require(self, kind: str, channel_id: str) -> Lobby:
        lobby = self.get(kind, channel_id)
        if lobby is None:
            raise SessionNotFound(f"No {kind} lobby in channel {channel_id}")
        return lobby

    def time_left(self, lobby: Lobby) -> int:
        return lobby.time_left(self._clock())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def open(self, lobby: Lobby, *, bet: int = 0) -> Lobby:
        """Debit the creator's bet, then register the lobby and start its countdown."""
        if lobby.key in self._lobbies:
            raise KeyCollision(
                f"Lobby {lobby.key} already open",
                user_message="There's already a game lobby in this channel!",
            )
        if bet > 0:
            await self._economy.debit(lobby.creator_id, bet, f"{lobby.game_kind} bet")
        if lobby.key in self._lobbies:
            if bet > 0:
                await self._economy.credit(lobby.creator_id, bet, f"{lobby.game_kind} refund")
            raise KeyCollision(
                f"Lobby {lobby.key} opened concurrently",
                user_message="There's already a game lobby in this channel!",
            )
        lobby.entries.append(LobbyEntry(lobby.creator_id, lobby.creator_name, bet))
        lobby.started_at = self._clock()
        self._lobbies[lobby.key] = lobby
        if lobby.wait_seconds > 0:
            self._ticker.start(lobby.timer_key, lambda: self.tick(lobby.game_kind, lobby.channel_id))
        LOGGER.info(
            "lobby.opened",
            game_kind=lobby.game_kind,
            channel=lobby.channel_id,
            creator=lobby.creator_id,
            wait=lobby.wait_seconds,
            bet=bet,
        )
        await self._render(lobby)
        return lobby

    async def join(self, kind: str, channel_id: str, participant_id: str, name: str, *, bet: int = 0) -> Lobby:
        lobby = self._require(kind, channel_id)
        self._check_joinable(lobby, participant_id)
        if bet > 0:
            await self._economy.debit(participant_id, bet, f"{kind} bet")
            if self.get(kind, channel_id) is not lobby or lobby.has(participant_id) or lobby.full:
                await self._economy.credit(participant_id, bet, f"{kind} refund")
                raise ValidationError("The lobby closed before you could join.")
        lobby.entries.append(LobbyEntry(participant_id, name, bet))
        LOGGER.info("lobby.joined", game_kind=kind, channel=channel_id, participant=participant_id, bet=bet)
        await self._render(lobby)
        return lobby

    @staticmethod
    def _check_joinable(lobby: Lobby, participant_id: str) -> None:
        if lobby.has(participant_id):
            raise ValidationError("You're already in this game!")
        if lobby.full:
            raise ValidationError("This game is full!")

    async def tick(self, kind: str, channel_id: str) -> bool:
        """One countdown step; returns False once the countdown is over."""
        lobby = self.get(kind, channel_id)
        if lobby is None:
            return False
        left = lobby.time_left(self._clock())
        if left <= 0:
            await self.expire(lobby)
            return False
        if should_render(left):
            await self._render(lobby, left)
        return True

    async def expire(self, lobby: Lobby) -> Optional[LobbyOutcome]:
        if not self._claim(lobby):
            return None
        if not lobby.quorum_met:
            LOGGER.info(
                "lobby.expired",
                game_kind=lobby.game_kind,
                channel=lobby.channel_id,
                players=len(lobby.entries),
                required=lobby.min_players,
            )
            await self._refund(lobby, f"{lobby.game_kind} refund")
            await self._closed(lobby, LobbyOutcome.REFUNDED)
            return LobbyOutcome.REFUNDED
        return await self._hand_off(lobby)

    async def start_now(self, kind: str, channel_id: str, actor_id: str) -> Optional[LobbyOutcome]:
        lobby = self._require(kind, channel_id)
        if actor_id != lobby.creator_id:
            raise ValidationError("Only the game creator can start early!")
        if not lobby.quorum_met:
            raise ValidationError(f"Need at least {lobby.min_players} players to start!")
        if not self._claim(lobby):
            return None
        return await self._hand_off(lobby)

    async def cancel(self, kind: str, channel_id: str, actor_id: str) -> Optional[LobbyOutcome]:
        lobby = self._require(kind, channel_id)
        if actor_id != lobby.creator_id:
            raise ValidationError("Only the game creator can cancel!")
        if not self._claim(lobby):
            return None
        LOGGER.info("lobby.cancelled", game_kind=kind, channel=channel_id, players=len(lobby.entries))
        await self._refund(lobby, f"{kind} lobby cancelled")
        await self._closed(lobby, LobbyOutcome.CANCELLED)
        return LobbyOutcome.CANCELLED

    async def close_all(self) -> None:
        """Refund and drop every lobby (engine shutdown)."""
        for lobby in self.lobbies():
            if self._claim(lobby):
                await self._refund(lobby, f"{lobby.game_kind} refund")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _hand_off(self, lobby: Lobby) -> LobbyOutcome:
        try:
            await self._on_start(lobby)
        except EngineError as exc:
            LOGGER.warning("lobby.handoff_failed", game_kind=lobby.game_kind, channel=lobby.channel_id, error=str(exc))
            await self._refund(lobby, f"{lobby.game_kind} refund")
            await self._closed(lobby, LobbyOutcome.REFUNDED)
            return LobbyOutcome.REFUNDED
        LOGGER.info("lobby.started", game_kind=lobby.game_kind, channel=lobby.channel_id, players=len(lobby.entries))
        return LobbyOutcome.STARTED

    async def _refund(self, lobby: Lobby, reason: str) -> None:
        for entry in lobby.entries:
            if entry.bet <= 0:
                continue
            try:
                await self._economy.credit(entry.participant_id, entry.bet, reason)
            except Exception as exc:  # noqa: BLE001
                LOGGER.error("lobby.refund_failed", participant=entry.participant_id, amount=entry.bet, error=str(exc))

    async def _render(self, lobby: Lobby, left: Optional[int] = None) -> None:
        if self._on_render is None:
            return
        await self._on_render(lobby, self.time_left(lobby) if left is None else left)

    async def _closed(self, lobby: Lobby, outcome: LobbyOutcome) -> None:
        if self._on_close is not None:
            await self._on_close(lobby, outcome)
