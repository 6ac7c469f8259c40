"""
Tests for the core building blocks.

Tests:
- Session store keys and participant index
- Action identifier routing
- Phase transitions and turn order
- Periodic timers
- Random source
"""

import asyncio
import random

import pytest

from chatcade.core.errors import EngineError, FSMError, KeyCollision, SessionNotFound
from chatcade.core.fsm import Participant, Phase, Session
from chatcade.core.router import ActionRouter
from chatcade.core.scheduler import Ticker
from chatcade.core.store import SessionStore
from chatcade.utils.rng import build_rng


def make_session(key="s1", kind="hangman", channel="c1", *participants):
    return Session(
        session_key=key,
        game_kind=kind,
        channel_id=channel,
        creator_id=participants[0] if participants else "alice",
        participants=[Participant(pid, pid.title()) for pid in (participants or ("alice",))],
    )


class TestSessionStore:
    """Tests for SessionStore."""

    @pytest.fixture
    def store(self):
        """An initialised, empty store."""
        store = SessionStore()
        store.init()
        return store

    def test_duplicate_key_rejected(self, store):
        """Keys are unique across live sessions."""
        store.create_session(make_session("s1"))

        with pytest.raises(KeyCollision):
            store.create_session(make_session("s1"))

    def test_find_by_participant_and_channel(self, store):
        """Secondary lookups are scoped by game kind."""
        session = store.create_session(make_session("s1", "hangman", "c1", "alice", "bob"))
        store.create_session(make_session("s2", "wordle", "c1", "alice"))

        assert store.find_by_participant("bob", "hangman") is session
        assert store.find_by_participant("bob", "wordle") is None
        assert store.find_by_channel("c1", "hangman") is session

    def test_remove_clears_participant_index(self, store):
        """Removed sessions no longer answer participant lookups."""
        store.create_session(make_session("s1", "hangman", "c1", "alice"))

        store.remove("s1")

        assert store.find_by_participant("alice", "hangman") is None
        assert store.remove("s1") is None

    def test_late_joiner_indexed(self, store):
        """Participants added after creation are found once indexed."""
        session = store.create_session(make_session("s1", "pong", "c1", "alice"))
        session.participants.append(Participant("bob", "Bob"))

        store.index_participant(session, "bob")

        assert store.find_by_participant("bob", "pong") is session

    def test_is_live_checks_identity(self, store):
        """A replaced session under the same key is not live."""
        old = store.create_session(make_session("s1"))
        store.remove("s1")
        store.create_session(make_session("s1"))

        assert not store.is_live(old)

    def test_clear_empties_store(self, store):
        """Clearing drops every session."""
        store.create_session(make_session("s1"))

        store.clear()

        assert len(store) == 0
        assert not store.ready


class TestRouter:
    """Tests for action identifier parsing."""

    async def test_embedded_key_parsed(self, engine):
        """Pong actions carry the session key in the second segment."""
        action = engine.router.parse("pong:pong_alice_1:up")

        assert action.prefix == "pong"
        assert action.embedded_key == "pong_alice_1"
        assert action.name == "up"

    async def test_arguments_split(self, engine):
        """Extra segments become positional arguments."""
        action = engine.router.parse("roulette:bet:straight:17:50")

        assert action.name == "bet"
        assert action.args == ("straight", "17", "50")
        assert action.int_arg(1) == 17

    @pytest.mark.parametrize("action_id", ["bj", "bj::hit", "nope:hit", "pong:up"])
    async def test_malformed_identifiers_not_found(self, engine, action_id):
        """Unknown prefixes and short identifiers resolve to no game."""
        with pytest.raises(SessionNotFound):
            engine.router.parse(action_id)

    async def test_duplicate_prefix_rejected(self, engine):
        """Two games may not share a prefix."""
        blackjack = engine.definition("blackjack")

        with pytest.raises(ValueError):
            ActionRouter(engine.store, [blackjack, blackjack])

    async def test_prefixes_cover_every_game(self, engine):
        """Every hosted game is routable."""
        assert engine.router.prefixes == sorted(
            ["bj", "roulette", "baccarat", "ttt", "hangman", "wordle", "uno", "pong", "bal"]
        )

    async def test_unknown_action_reports_no_game(self, act):
        """Actions for games that aren't running get the standard message."""
        response = await act("alice", "nope:hit")

        assert not response.ok
        assert response.message == "No active game found!"


class TestPhases:
    """Tests for Session.advance."""

    def test_forward_transitions_allowed(self):
        """Phases move forward freely."""
        session = make_session()

        session.advance(Phase.ACTIVE)
        session.advance(Phase.ENDED)

        assert session.terminal

    def test_backward_transition_requires_restart(self):
        """Going back is an error unless it is an explicit restart."""
        session = make_session()
        session.advance(Phase.ACTIVE)

        with pytest.raises(FSMError):
            session.advance(Phase.WAITING)
        session.advance(Phase.WAITING, restart=True)

        assert session.phase is Phase.WAITING

    def test_ended_is_final(self):
        """Nothing leaves ENDED."""
        session = make_session()
        session.advance(Phase.ENDED)

        with pytest.raises(FSMError):
            session.advance(Phase.WAITING, restart=True)

    def test_transition_errors_are_not_player_errors(self):
        """Illegal transitions are bugs, outside the player-facing error family."""
        assert issubclass(FSMError, RuntimeError)
        assert not issubclass(FSMError, EngineError)


class TestTicker:
    """Tests for Ticker."""

    async def _wait_until_idle(self, ticker, key):
        for _ in range(200):
            if not ticker.active(key):
                return
            await asyncio.sleep(0.005)

    async def test_runs_until_callback_returns_false(self):
        """The callback repeats until it asks to stop."""
        ticker = Ticker(interval=0.001)
        calls = []

        async def callback():
            calls.append(len(calls))
            return len(calls) < 3

        ticker.start("k", callback)
        await self._wait_until_idle(ticker, "k")

        assert len(calls) == 3
        assert not ticker.active("k")

    async def test_callback_can_reschedule_itself(self):
        """Starting the same key from inside a callback chains a new timer."""
        ticker = Ticker(interval=0.001)
        seen = []

        async def second():
            seen.append("second")
            return False

        async def first():
            seen.append("first")
            ticker.start("k", second)
            return False

        ticker.start("k", first)
        await self._wait_until_idle(ticker, "k")

        assert seen == ["first", "second"]

    async def test_stop_cancels_pending_tick(self):
        """A stopped key never fires."""
        ticker = Ticker(interval=60)
        fired = []

        async def callback():
            fired.append(True)
            return True

        ticker.start("k", callback)
        ticker.stop("k")
        await asyncio.sleep(0)

        assert not ticker.active("k")
        assert fired == []

    async def test_failing_callback_stops_timer(self):
        """Exceptions end the timer instead of escaping the loop."""
        ticker = Ticker(interval=0.001)

        async def callback():
            raise RuntimeError("boom")

        ticker.start("k", callback)
        await self._wait_until_idle(ticker, "k")

        assert len(ticker) == 0


class TestRandomSource:
    """Tests for GameRandom."""

    def test_seeded_shuffles_repeat(self):
        """The same seed gives the same order."""
        assert build_rng(seed=7).shuffle(range(20)) == build_rng(seed=7).shuffle(range(20))

    def test_seeded_shuffle_matches_source(self):
        """Shuffles use the underlying generator directly."""
        expected = list(range(20))
        random.Random(7).shuffle(expected)

        assert build_rng(seed=7).shuffle(range(20)) == expected

    def test_shuffle_is_a_permutation(self):
        """Shuffling keeps every item exactly once."""
        items = list(range(52))

        assert sorted(build_rng().shuffle(items)) == items

    def test_randint_inclusive_bounds(self):
        """Both ends of the range are reachable and nothing outside it."""
        rng = build_rng(seed=1)
        values = {rng.randint(0, 3) for _ in range(500)}

        assert values == {0, 1, 2, 3}

    def test_empty_inputs_raise(self):
        """Empty ranges and sequences are errors."""
        rng = build_rng(seed=1)

        with pytest.raises(ValueError):
            rng.randint(3, 2)
        with pytest.raises(IndexError):
            rng.choice([])
