"""Generic session state machine and turn coordination."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import structlog

from .errors import FSMError, ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from ..games.base import GameDefinition
    from .schemas import ActionResponse
    from .settlement import SettlementReport, Settler

LOGGER = structlog.get_logger(__name__)


class Phase(str, Enum):
    """Lifecycle phases shared by every game."""

    WAITING = "waiting"
    BETTING = "betting"
    ACTIVE = "active"
    RESOLVING = "resolving"
    ENDED = "ended"


PHASE_ORDER: Tuple[Phase, ...] = (
    Phase.WAITING,
    Phase.BETTING,
    Phase.ACTIVE,
    Phase.RESOLVING,
    Phase.ENDED,
)


class Lookup(str, Enum):
    """How the router finds the session an action belongs to."""

    EMBEDDED = "embedded"
    CHANNEL = "channel"
    PARTICIPANT = "participant"


@dataclass
class Participant:
    """A seat in a session. Games subclass this to carry per-player state."""

    id: str
    name: str
    is_bot: bool = False


@dataclass
class Session:
    """A live game instance owned by the session store."""

    session_key: str
    game_kind: str
    channel_id: str
    creator_id: str
    server_id: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)
    phase: Phase = Phase.WAITING
    created_at: float = field(default_factory=time.time)
    bets: Dict[str, int] = field(default_factory=dict)
    turn_index: int = 0
    settled: bool = False
    mode: str = "single"
    state: Any = None
    status: Optional[str] = None

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None

    def participant_ids(self) -> List[str]:
        return [participant.id for participant in self.participants]

    def human_ids(self) -> List[str]:
        return [participant.id for participant in self.participants if not participant.is_bot]

    def has_participant(self, participant_id: str) -> bool:
        return self.participant(participant_id) is not None

    def add_bet(self, participant_id: str, amount: int) -> int:
        """Record an already-debited stake and return the participant's total."""
        self.bets[participant_id] = self.bets.get(participant_id, 0) + amount
        return self.bets[participant_id]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @property
    def terminal(self) -> bool:
        return self.phase is Phase.ENDED

    def advance(self, phase: Phase, *, restart: bool = False) -> None:
        """Move to ``phase``; going backwards requires ``restart=True``."""
        current = PHASE_ORDER.index(self.phase)
        target = PHASE_ORDER.index(phase)
        if self.phase is Phase.ENDED and phase is not Phase.ENDED:
            raise FSMError(f"Session {self.session_key} already ended")
        if target < current and not restart:
            raise FSMError(f"Illegal transition {self.phase.value} -> {phase.value} for {self.session_key}")
        if target != current:
            LOGGER.debug("session.phase", session_key=self.session_key, previous=self.phase.value, phase=phase.value)
        self.phase = phase

    def duration_seconds(self, now: Optional[float] = None) -> int:
        return max(0, int((now if now is not None else time.time()) - self.created_at))


@dataclass(slots=True)
class ParsedAction:
    """An action identifier split into game prefix, verb and arguments."""

    raw: str
    prefix: str
    name: str
    args: Tuple[str, ...] = ()
    embedded_key: Optional[str] = None

    def arg(self, index: int, default: Optional[str] = None) -> Optional[str]:
        if index < len(self.args):
            return self.args[index]
        return default

    def int_arg(self, index: int) -> int:
        value = self.arg(index)
        try:
            return int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed action {self.raw!r}") from exc


@dataclass(slots=True)
class ActionResult:
    """What a game definition reports back after applying an action."""

    end_turn: bool = False
    skip: int = 0
    message: Optional[str] = None
    private_view: bool = False
    response: Optional["ActionResponse"] = None


def next_eligible(count: int, start: int, is_eligible: Callable[[int], bool]) -> Optional[int]:
    """Round-robin search for the next eligible seat after ``start``.

    >>> next_eligible(3, 0, lambda i: i != 1)
    2
    >>> next_eligible(3, 2, lambda i: i == 2)
    2
    >>> next_eligible(2, 0, lambda i: False) is None
    True
    """
    if count <= 0:
        return None
    for offset in range(1, count + 1):
        index = (start + offset) % count
        if is_eligible(index):
            return index
    return None


class TurnCoordinator:
    """Applies turn actions and drives sessions through resolution."""

    def __init__(self, settler: "Settler") -> None:
        self._settler = settler

    # ------------------------------------------------------------------
    # Turn order
    # ------------------------------------------------------------------

    @staticmethod
    def _eligible_at(definition: "GameDefinition", session: Session) -> Callable[[int], bool]:
        def check(index: int) -> bool:
            return definition.eligible(session, session.participants[index])

        return check

    def start_turns(self, definition: "GameDefinition", session: Session) -> Optional[str]:
        """Point the turn at the first eligible participant, or at nobody."""
        count = len(session.participants)
        found = next_eligible(count, count - 1, self._eligible_at(definition, session))
        session.turn_index = -1 if found is None else found
        return definition.next_actor(session)

    def advance_turn(self, definition: "GameDefinition", session: Session, *, skip: int = 0) -> Optional[str]:
        count = len(session.participants)
        check = self._eligible_at(definition, session)
        index: Optional[int] = session.turn_index if session.turn_index >= 0 else count - 1
        for _ in range(skip + 1):
            index = next_eligible(count, index, check)
            if index is None:
                break
        session.turn_index = -1 if index is None else index
        return definition.next_actor(session)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def submit(
        self,
        definition: "GameDefinition",
        session: Session,
        actor_id: str,
        action: ParsedAction,
    ) -> ActionResult:
        """Validate and apply a turn action; reject with no mutation otherwise."""

        if session.phase is not Phase.ACTIVE or session.settled or definition.is_terminal(session):
            raise ValidationError("This game is not accepting moves right now.")
        if not definition.may_act(session, actor_id):
            if session.has_participant(actor_id):
                raise ValidationError("It's not your turn!")
            raise ValidationError("You are not part of this game.")
        if not definition.is_legal(session, actor_id, action):
            raise ValidationError("That move is not allowed right now.")

        result = await definition.apply_action(session, actor_id, action)
        LOGGER.debug("turn.applied", session_key=session.session_key, actor=actor_id, action=action.raw)

        if result.end_turn and not definition.is_terminal(session):
            self.advance_turn(definition, session, skip=result.skip)
        await self.check_resolution(definition, session)
        return result

    async def check_resolution(self, definition: "GameDefinition", session: Session) -> Optional["SettlementReport"]:
        if session.settled:
            return None
        if definition.is_terminal(session):
            return await self.finish(definition, session)
        if definition.turn_based and session.phase is Phase.ACTIVE and definition.next_actor(session) is None:
            return await self.finish(definition, session)
        return None

    async def finish(self, definition: "GameDefinition", session: Session) -> Optional["SettlementReport"]:
        """Resolve and settle ``session``; repeated calls are no-ops."""
        if session.settled or session.phase in (Phase.RESOLVING, Phase.ENDED):
            return None
        session.advance(Phase.RESOLVING)
        await definition.resolve(session)
        return await self._settler.settle(definition, session)
