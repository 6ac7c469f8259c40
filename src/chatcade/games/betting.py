"""Shared flow for channel games with a timed betting window."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any

import structlog

from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import Lookup, Participant, Phase, Session
from ..core.lobby import should_render
from ..core.schemas import ActionResponse, StartRequest
from .base import GameDefinition

LOGGER = structlog.get_logger(__name__)


class BettingWindowGame(GameDefinition):
    """One session per channel that accepts bets until its window closes."""

    lookup = Lookup.CHANNEL
    turn_based = False

    @abstractmethod
    def session_key(self, channel_id: str) -> str: ...

    @abstractmethod
    def new_table(self, closes_at: float) -> Any: ...

    @abstractmethod
    async def close_betting(self, session: Session) -> None:
        """Called once when the window closes."""

    async def start(self, request: StartRequest) -> ActionResponse:
        if self.services.store.find_by_channel(request.channel_id, self.kind) is not None:
            raise KeyCollision(
                f"{self.kind} already running in {request.channel_id}",
                user_message=f"There's already a {self.title.lower()} game running in this channel!",
            )
        session = self.new_session(
            self.session_key(request.channel_id),
            channel_id=request.channel_id,
            creator_id=request.requester_id,
            server_id=request.server_id,
            participants=[],
            phase=Phase.BETTING,
            mode="multiplayer",
            state=self.new_table(self.now() + self.config.betting_window),
        )
        self.register(session)
        self.start_timer(session, self._countdown)
        LOGGER.info("betting.open", session_key=session.session_key, window=self.config.betting_window)
        return self.respond(session, message="Place your bets!")

    def time_left(self, session: Session) -> int:
        return max(0, int(session.state.closes_at - self.now()))

    async def _countdown(self, session: Session) -> bool:
        if session.phase is not Phase.BETTING:
            return False
        left = self.time_left(session)
        if left <= 0:
            await self.close_betting(session)
            return False
        if should_render(left):
            await self.services.publish(session)
        return True

    async def accept_stake(self, session: Session, actor_id: str, name: str, amount: int, reason: str) -> int:
        """Debit ``amount`` and record it; returns the participant's running total."""
        if session.phase is not Phase.BETTING or self.time_left(session) <= 0:
            raise ValidationError("Betting is closed!")
        await self.debit(actor_id, amount, reason)
        if not self.is_live(session) or session.phase is not Phase.BETTING:
            await self.refund(actor_id, amount, f"{self.title} refund")
            raise ValidationError("Betting closed before your bet was placed.")
        if not session.has_participant(actor_id):
            session.participants.append(Participant(actor_id, name))
            self.services.store.index_participant(session, actor_id)
        return session.add_bet(actor_id, amount)

    async def finish_without_bets(self, session: Session) -> None:
        session.status = "No bets were placed."
        LOGGER.info("betting.no_bets", session_key=session.session_key)
        await self.services.coordinator.finish(self, session)
        await self.services.publish(session)

    def is_terminal(self, session: Session) -> bool:
        return session.phase is Phase.ENDED
