"""
Tests for settlement and the economy boundary.

Tests:
- Exactly-once settlement under concurrent triggers
- Payout rounding
- Credit failures
- Ledger awards, streaks and shields
- Outcome recorders
"""

import asyncio

import pytest

from chatcade.core.cards import parse_cards
from chatcade.core.errors import InsufficientFunds, ValidationError
from chatcade.core.schemas import ActionEvent, GameKind, OutcomeRecord, ParticipantRef, StartRequest
from chatcade.core.settlement import payout_for
from chatcade.economy.gateway import InMemoryEconomy
from chatcade.economy.outcomes import InMemoryOutcomeRecorder, JsonlOutcomeRecorder
from chatcade.services.engine import GameEngine


class FlakyEconomy(InMemoryEconomy):
    """Ledger whose credits fail for one participant."""

    def __init__(self, broken: str, **kwargs):
        super().__init__(**kwargs)
        self.broken = broken

    async def credit(self, participant_id, amount, reason):
        if participant_id == self.broken:
            raise RuntimeError("ledger unavailable")
        return await super().credit(participant_id, amount, reason)


class TestExactlyOnce:
    """Tests for idempotent settlement."""

    async def test_concurrent_finish_settles_once(self, engine, rng, stack, start_game, balance):
        """Two simultaneous finish calls produce one report and one credit."""
        rng.decks.append(stack(parse_cards("10 9 10 7")))
        await start_game("blackjack", mode="single", bet=100)
        session = engine.store.get("blackjack_alice")
        game = engine.definition("blackjack")

        reports = await asyncio.gather(
            engine.coordinator.finish(game, session),
            engine.coordinator.finish(game, session),
        )

        assert sum(report is not None for report in reports) == 1
        assert await engine.settler.settle(game, session) is None
        assert engine.economy.total_credited("alice") == 200
        assert await balance("alice") == 1100
        assert len(engine.recorder.outcomes) == 1

    async def test_settled_session_rejects_moves(self, engine, rng, stack, start_game, act):
        """Actions after settlement find no live session."""
        rng.decks.append(stack(parse_cards("10 9 10 7")))
        await start_game("blackjack", mode="single", bet=100)
        await act("alice", "bj:stand")

        response = await act("alice", "bj:hit")

        assert not response.ok
        assert response.message == "No active game found!"


class TestPayouts:
    """Tests for payout arithmetic."""

    @pytest.mark.parametrize(
        "stake, multiplier, expected",
        [(100, 2.5, 250), (15, 1.95, 29), (20, 1.95, 39), (10, 9, 90), (7, 2.5, 17)],
    )
    def test_payout_floors_to_whole_coins(self, stake, multiplier, expected):
        """Fractional payouts round down."""
        assert payout_for(stake, multiplier) == expected

    async def test_failed_credit_does_not_block_others(self, config, rng, clock):
        """One broken credit is reported while the rest still pay."""
        economy = FlakyEconomy("bob", clock=clock)
        engine = GameEngine(config=config, economy=economy, rng=rng, clock=clock)
        await engine.startup()
        try:
            await engine.start(StartRequest(requester_id="alice", channel_id="c1", game_kind=GameKind.ROULETTE))
            for actor in ("alice", "bob"):
                await engine.handle_action(ActionEvent(actor_id=actor, action_id="roulette:bet:red:50", channel_id="c1"))
            roulette = engine.definition("roulette")
            session = engine.store.find_by_channel("c1", "roulette")
            rng.ints.append(1)

            await roulette.close_betting(session)
            while not session.settled:
                await roulette.spin_step(session)

            assert await economy.balance("alice") == 1050
            assert await economy.balance("bob") == 950
            assert not engine.store.has(session.session_key)
        finally:
            engine.ticker.stop_all()


class TestLedger:
    """Tests for the in-memory ledger."""

    @pytest.fixture
    def ledger(self, clock):
        """Ledger starting everyone at 100 coins."""
        return InMemoryEconomy(starting_balance=100, clock=clock)

    async def test_debit_over_balance_raises(self, ledger):
        """Overdrafts are refused and leave the balance alone."""
        with pytest.raises(InsufficientFunds) as excinfo:
            await ledger.debit("alice", 150, "bet")

        assert excinfo.value.balance == 100
        assert await ledger.balance("alice") == 100

    async def test_non_positive_debit_raises(self, ledger):
        """Zero and negative debits are validation errors."""
        with pytest.raises(ValidationError):
            await ledger.debit("alice", 0, "bet")

    async def test_first_win_of_day_doubles(self, ledger):
        """The first win each day pays double; the next adds a streak bonus."""
        first = await ledger.award("alice", 30, "Tic-tac-toe win")
        second = await ledger.award("alice", 30, "Tic-tac-toe win")

        assert first.first_win_bonus and first.awarded == 60
        assert not second.first_win_bonus and second.awarded == 33
        assert second.streak == 2

    async def test_first_win_resets_next_day(self, ledger, clock):
        """A new UTC day brings a new first-win bonus."""
        await ledger.award("alice", 30, "Pong win")
        clock.advance(24 * 3600)

        result = await ledger.award("alice", 30, "Pong win")

        assert result.first_win_bonus
        assert result.awarded == 60

    async def test_participation_awards_are_flat(self, ledger):
        """Awards that are not wins get no bonus."""
        result = await ledger.award("alice", 10, "Pong participation")

        assert result.awarded == 10
        assert result.streak == 0

    async def test_shield_absorbs_loss(self, ledger):
        """A streak shield keeps the streak through one loss."""
        await ledger.award("alice", 30, "Tic-tac-toe win")
        ledger.grant_shields("alice")

        shielded = await ledger.record_loss("alice", "blackjack loss")
        reset = await ledger.record_loss("alice", "blackjack loss")

        assert shielded.shield_consumed and shielded.streak == 1
        assert not reset.shield_consumed and reset.streak == 0


class TestOutcomeRecorders:
    """Tests for outcome recording."""

    def _outcome(self, participant="alice"):
        return OutcomeRecord(
            game_kind="hangman",
            participants=[ParticipantRef(id=participant, name=participant.title())],
            winner_id=participant,
            final_score={"word": "CAT"},
        )

    async def test_opted_out_participants_skipped(self):
        """Participants who opted out are not tracked."""
        recorder = InMemoryOutcomeRecorder(opted_out=["bob"])

        await recorder.record(self._outcome("alice"))
        await recorder.record(self._outcome("bob"))

        assert [o.winner_id for o in recorder.outcomes] == ["alice"]

    async def test_jsonl_appends_lines(self, tmp_path):
        """Each outcome becomes one line that reads back as a record."""
        recorder = JsonlOutcomeRecorder(tmp_path / "runs" / "outcomes.jsonl")

        await recorder.record(self._outcome("alice"))
        await recorder.record(self._outcome("bob"))

        assert len(recorder.path.read_bytes().splitlines()) == 2
        assert recorder.read_all()[1].winner_id == "bob"
