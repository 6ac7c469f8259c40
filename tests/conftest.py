"""
Pytest fixtures for chatcade tests.
"""

from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

import pytest

from chatcade.config.settings import EngineConfig
from chatcade.core.schemas import ActionEvent, ActionResponse, GameKind, StartRequest
from chatcade.persistence.balatro_store import InMemoryBalatroStore
from chatcade.services.engine import GameEngine, RecordingPresenter

T = TypeVar("T")


class ManualClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedRng:
    """Deterministic stand-in for the game RNG.

    Queued decks, integers and choices are handed out in order; once a queue
    is empty, shuffles return the input order, integers return the low bound
    and choices return the first item.
    """

    def __init__(self) -> None:
        self.decks: List[List[Any]] = []
        self.ints: List[int] = []
        self.choices: List[Any] = []

    def randint(self, low: int, high: int) -> int:
        if self.ints:
            value = self.ints.pop(0)
            assert low <= value <= high
            return value
        return low

    def shuffle(self, items: Sequence[T]) -> List[T]:
        if self.decks:
            return list(self.decks.pop(0))
        return list(items)

    def choice(self, items: Sequence[T]) -> T:
        if self.choices:
            return self.choices.pop(0)
        return items[0]


def stacked_deck(draws: Sequence[T], filler: Sequence[T] = ()) -> List[T]:
    """Deck whose ``pop()`` order yields ``draws`` first, then ``filler`` from the end."""
    return list(filler) + list(reversed(draws))


@pytest.fixture
def stack() -> Callable[..., List[Any]]:
    return stacked_deck


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def rng() -> ScriptedRng:
    return ScriptedRng()


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()


@pytest.fixture
def config() -> EngineConfig:
    """Timers far slower than any test so only direct calls drive them."""
    return EngineConfig(tick_interval=600.0, outcomes_path=None, balatro_store_dir=None)


@pytest.fixture
def balatro_store() -> InMemoryBalatroStore:
    return InMemoryBalatroStore()


@pytest.fixture
async def engine(config, rng, presenter, clock, balatro_store):
    """A ready engine with in-memory collaborators."""
    game_engine = GameEngine(
        config=config,
        rng=rng,
        presenter=presenter,
        clock=clock,
        balatro_store=balatro_store,
    )
    await game_engine.startup()
    yield game_engine
    game_engine.ticker.stop_all()


@pytest.fixture
def start_game(engine) -> Callable[..., Awaitable[ActionResponse]]:
    async def _start(
        kind: str,
        requester: str = "alice",
        channel: str = "c1",
        *,
        opponent: Optional[str] = None,
        **options: Any,
    ) -> ActionResponse:
        request = StartRequest(
            requester_id=requester,
            requester_name=requester.title(),
            channel_id=channel,
            game_kind=GameKind(kind),
            opponent_id=opponent,
            opponent_name=opponent.title() if opponent else None,
            options=options,
        )
        return await engine.start(request)

    return _start


@pytest.fixture
def act(engine) -> Callable[..., Awaitable[ActionResponse]]:
    async def _act(actor: str, action_id: str, channel: str = "c1") -> ActionResponse:
        event = ActionEvent(actor_id=actor, actor_name=actor.title(), action_id=action_id, channel_id=channel)
        return await engine.handle_action(event)

    return _act


@pytest.fixture
def balance(engine) -> Callable[[str], Awaitable[int]]:
    async def _balance(participant_id: str) -> int:
        return await engine.economy.balance(participant_id)

    return _balance
