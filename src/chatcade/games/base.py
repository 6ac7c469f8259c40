"""Shared contract and helpers for every hosted game."""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

import structlog

from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session, TurnCoordinator
from ..core.router import build_action_id
from ..core.schemas import (
    ActionEvent,
    ActionResponse,
    Choice,
    OutcomeRecord,
    ParticipantRef,
    RenderedView,
    StartRequest,
)
from ..core.scheduler import Ticker
from ..core.settlement import SettlementLine
from ..core.store import SessionStore
from ..utils.rng import RandomSource

if TYPE_CHECKING:  # pragma: no cover
    from ..config.settings import EngineConfig
    from ..core.lobby import Lobby, LobbyScheduler
    from ..economy.gateway import EconomyGateway
    from ..persistence.balatro_store import BalatroStore

LOGGER = structlog.get_logger(__name__)

HOUSE_ID = "house"
TIE_ID = "tie"
_NAME_SANITIZER = re.compile(r"[*_`~|>]")


def sanitize_name(name: str) -> str:
    """Strip markup characters from a display name.

    >>> sanitize_name("**bob_")
    'bob'
    """
    return _NAME_SANITIZER.sub("", name).strip() or "Player"


@dataclass
class EngineServices:
    """Collaborators handed to every game definition."""

    store: SessionStore
    economy: "EconomyGateway"
    rng: RandomSource
    config: "EngineConfig"
    ticker: Ticker
    coordinator: TurnCoordinator
    publish: Callable[[Session], Awaitable[None]]
    lobbies: "LobbyScheduler"
    clock: Callable[[], float] = time.time
    balatro_store: Optional["BalatroStore"] = None
    extras: Dict[str, Any] = field(default_factory=dict)


class GameDefinition(ABC):
    """A game plugged into the generic session state machine.

    Subclasses declare their action prefix, lookup strategy and which verbs
    are turn actions (validated by the coordinator) versus side actions such
    as bets, setup choices or private views.
    """

    kind: str = ""
    prefix: str = ""
    title: str = ""
    lookup: Lookup = Lookup.PARTICIPANT
    embeds_key: bool = False
    turn_based: bool = True
    turn_actions: FrozenSet[str] = frozenset()
    lobby_actions: FrozenSet[str] = frozenset()

    def __init__(self, services: EngineServices) -> None:
        self.services = services

    # ------------------------------------------------------------------
    # Routing and lifecycle
    # ------------------------------------------------------------------

    def lookup_for(self, action: ParsedAction) -> Lookup:
        return self.lookup

    @abstractmethod
    async def start(self, request: StartRequest) -> ActionResponse:
        """Create a session (or lobby) for ``request``."""

    async def start_from_lobby(self, lobby: "Lobby") -> Session:
        raise ValidationError(f"{self.title} does not use lobbies")

    async def handle_lobby_action(self, action: ParsedAction, event: ActionEvent) -> ActionResponse:
        raise ValidationError("That lobby action is not supported.")

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        raise ValidationError("That action is not available.")

    def is_setup(self, session: Session) -> bool:
        """True for pre-game sessions that only collect choices."""
        return False

    async def restore(self) -> List[Session]:
        """Reload persisted sessions at startup."""
        return []

    async def recover(self, actor_id: str) -> Optional[Session]:
        """Second-chance lookup when the store has no session for ``actor_id``."""
        return None

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        return []

    def is_legal(self, session: Session, actor_id: str, action: ParsedAction) -> bool:
        return action.raw in self.legal_actions(session, actor_id)

    def eligible(self, session: Session, participant: Participant) -> bool:
        return not participant.is_bot

    def next_actor(self, session: Session) -> Optional[str]:
        index = session.turn_index
        if 0 <= index < len(session.participants):
            participant = session.participants[index]
            if self.eligible(session, participant):
                return participant.id
        return None

    def may_act(self, session: Session, actor_id: str) -> bool:
        return self.next_actor(session) == actor_id

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        raise ValidationError("That move is not supported.")

    @abstractmethod
    def is_terminal(self, session: Session) -> bool: ...

    async def resolve(self, session: Session) -> None:
        """Work done while the session is resolving (house draws, reveals)."""

    def settle(self, session: Session) -> List[SettlementLine]:
        return []

    @abstractmethod
    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView: ...

    def render_lobby(self, lobby: "Lobby", time_left: int) -> RenderedView:
        names = [entry.name for entry in lobby.entries]
        return RenderedView(
            title=f"{self.title} lobby",
            body=[f"Players ({len(names)}/{lobby.max_players}): {', '.join(names)}"],
            fields={"Starts in": f"{time_left}s"},
            choices=[
                Choice(id=self.action_id("join"), label="Join"),
                Choice(id=self.action_id("start"), label="Start now", disabled=not lobby.quorum_met),
                Choice(id=self.action_id("cancel"), label="Cancel"),
            ],
        )

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        return []

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    @property
    def config(self) -> "EngineConfig":
        return self.services.config

    @property
    def rng(self) -> RandomSource:
        return self.services.rng

    def now(self) -> float:
        return self.services.clock()

    def timestamp_ms(self) -> int:
        return int(self.now() * 1000)

    def action_id(self, *parts: object) -> str:
        return build_action_id(self.prefix, *parts)

    def new_session(
        self,
        key: str,
        *,
        channel_id: str,
        creator_id: str,
        server_id: Optional[str],
        participants: Iterable[Participant],
        phase: Phase = Phase.WAITING,
        mode: str = "single",
        state: Any = None,
    ) -> Session:
        return Session(
            session_key=key,
            game_kind=self.kind,
            channel_id=channel_id,
            creator_id=creator_id,
            server_id=server_id,
            participants=list(participants),
            phase=phase,
            created_at=self.now(),
            mode=mode,
            state=state,
        )

    def ensure_free(self, key: str) -> None:
        if self.services.store.has(key):
            raise KeyCollision(
                f"Session {key} already exists",
                user_message=f"You already have a {self.title} game in progress!",
            )

    def register(self, session: Session) -> Session:
        return self.services.store.create_session(session)

    def is_live(self, session: Session) -> bool:
        return self.services.store.is_live(session)

    def parse_bet(self, raw: Any) -> int:
        try:
            amount = int(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid bet {raw!r}", user_message="Please choose a valid bet amount.") from exc
        if amount < self.config.min_bet:
            raise ValidationError(f"Minimum bet is {self.config.min_bet} coins.")
        return amount

    async def debit(self, participant_id: str, amount: int, reason: str) -> None:
        await self.services.economy.debit(participant_id, amount, reason)

    async def refund(self, participant_id: str, amount: int, reason: str) -> None:
        if amount > 0:
            await self.services.economy.credit(participant_id, amount, reason)

    def bet_choices(self, *parts: object) -> List[Choice]:
        return [
            Choice(id=self.action_id(*parts, amount), label=f"{amount} coins")
            for amount in self.config.bet_amounts
        ]

    def outcome(
        self,
        session: Session,
        *,
        winner_id: Optional[str],
        final_score: Dict[str, Any],
        participants: Optional[Iterable[Participant]] = None,
    ) -> OutcomeRecord:
        people = participants if participants is not None else session.participants
        return OutcomeRecord(
            server_id=session.server_id,
            game_kind=self.kind,
            participants=[ParticipantRef(id=p.id, name=p.name) for p in people if not p.is_bot],
            winner_id=winner_id,
            duration_seconds=session.duration_seconds(self.now()),
            final_score=final_score,
            mode=session.mode,
        )

    def respond(self, session: Session, *, message: Optional[str] = None, viewer: Optional[str] = None) -> ActionResponse:
        return ActionResponse(
            ok=True,
            session_key=session.session_key,
            view=self.render(session, viewer),
            message=message,
        )

    def start_timer(self, session: Session, step: Callable[[Session], Awaitable[bool]], *, interval: float | None = None) -> None:
        """Tick ``step`` until it returns False or the session is gone."""

        async def callback() -> bool:
            if not self.is_live(session) or session.settled:
                return False
            return await step(session)

        self.services.ticker.start(f"session:{session.session_key}", callback, interval=interval)
