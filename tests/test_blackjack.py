"""
Tests for blackjack.

Tests:
- Hand scoring with flexible aces
- Single-player payouts (natural, double down, bust)
- Setup flow
- Turn order in lobby games
- One blackjack session or lobby per participant
"""

import pytest

from chatcade.core.cards import blackjack_score, parse_cards
from chatcade.core.lobby import LobbyEntry
from chatcade.core.settlement import Category
from chatcade.games.blackjack import BlackjackPlayer, player_result


class TestScoring:
    """Tests for blackjack hand values."""

    def test_aces_drop_to_one_when_over(self):
        """Aces count 11 until the hand would bust."""
        assert blackjack_score(parse_cards("A A 9")) == 21
        assert blackjack_score(parse_cards("A K 5")) == 16
        assert blackjack_score(parse_cards("A 6")) == 17

    def test_natural_always_pays(self):
        """A natural beats even a dealer 21."""
        player = BlackjackPlayer("alice", "Alice", hand=parse_cards("A K"), natural=True, stood=True)
        assert player_result(player, 21) is Category.NATURAL

    def test_bust_loses_even_if_dealer_busts(self):
        """Player busts are settled before the dealer total matters."""
        player = BlackjackPlayer("alice", "Alice", hand=parse_cards("K Q 5"), busted=True)
        assert player_result(player, 25) is Category.BUST


class TestSinglePlayer:
    """Tests for single-player games started with mode and bet."""

    async def test_natural_pays_two_and_a_half(self, engine, rng, stack, start_game, balance):
        """A dealt natural settles immediately at 2.5x the stake."""
        rng.decks.append(stack(parse_cards("K A 10 7")))

        response = await start_game("blackjack", mode="single", bet=100)

        assert response.ok
        assert await balance("alice") == 1150
        assert not engine.store.has("blackjack_alice")
        outcome = engine.recorder.outcomes[-1]
        assert outcome.winner_id == "alice"
        assert outcome.final_score["blackjack"] is True

    async def test_natural_beats_dealer_natural(self, engine, rng, stack, start_game, balance):
        """The dealer's own blackjack does not cancel the player's natural."""
        rng.decks.append(stack(parse_cards("K A A K")))

        await start_game("blackjack", mode="single", bet=100)

        assert await balance("alice") == 1150

    async def test_double_down_doubles_stake_and_payout(self, engine, rng, stack, start_game, act, balance):
        """Doubling debits a second stake, draws one card and ends the hand."""
        rng.decks.append(stack(parse_cards("5 6 10 7 9")))
        await start_game("blackjack", mode="single", bet=100)
        assert await balance("alice") == 900

        response = await act("alice", "bj:double")

        assert response.ok
        assert await balance("alice") == 1200
        assert engine.recorder.outcomes[-1].final_score["bet_amount"] == 200

    async def test_double_without_funds_rejected(self, engine, rng, stack, start_game, act, balance):
        """A double the balance can't cover leaves the hand and stake alone."""
        rng.decks.append(stack(parse_cards("5 6 10 7")))
        await start_game("blackjack", mode="single", bet=600)

        response = await act("alice", "bj:double")

        assert not response.ok
        assert response.message == "You need 600 coins for that bet but only have 400."
        player = engine.store.get("blackjack_alice").participant("alice")
        assert len(player.hand) == 2
        assert player.bet == 600
        assert not player.doubled
        assert await balance("alice") == 400

    async def test_double_after_hit_rejected(self, engine, rng, stack, start_game, act, balance):
        """Doubling is only offered on the first decision."""
        rng.decks.append(stack(parse_cards("5 6 10 7 2")))
        await start_game("blackjack", mode="single", bet=100)
        await act("alice", "bj:hit")

        response = await act("alice", "bj:double")

        assert not response.ok
        assert response.message == "That move is not allowed right now."
        player = engine.store.get("blackjack_alice").participant("alice")
        assert len(player.hand) == 3
        assert player.bet == 100
        assert await balance("alice") == 900

    async def test_bust_keeps_stake(self, engine, rng, stack, start_game, act, balance):
        """Going over 21 loses the stake and ends the game."""
        rng.decks.append(stack(parse_cards("10 6 10 7 K")))
        await start_game("blackjack", mode="single", bet=100)

        response = await act("alice", "bj:hit")

        assert response.ok
        assert response.message == "Bust with 26!"
        assert await balance("alice") == 900
        assert engine.recorder.outcomes[-1].winner_id == "house"

    async def test_stand_and_push_returns_stake(self, engine, rng, stack, start_game, act, balance):
        """Equal totals push and refund the stake."""
        rng.decks.append(stack(parse_cards("10 8 10 8")))
        await start_game("blackjack", mode="single", bet=50)

        await act("alice", "bj:stand")

        assert await balance("alice") == 1000
        assert engine.recorder.outcomes[-1].winner_id == "tie"

    async def test_insufficient_funds_rejected(self, engine, start_game, balance):
        """A bet over the balance is rejected with no session left behind."""
        response = await start_game("blackjack", mode="single", bet=5000)

        assert not response.ok
        assert "5000" in response.message
        assert len(engine.store) == 0
        assert await balance("alice") == 1000

    async def test_bet_below_minimum_rejected(self, start_game):
        """Bets under the configured minimum never reach the ledger."""
        response = await start_game("blackjack", mode="single", bet=5)

        assert not response.ok
        assert response.message == "Minimum bet is 10 coins."

    async def test_second_game_rejected(self, rng, stack, start_game):
        """One blackjack game per participant."""
        rng.decks.append(stack(parse_cards("10 6 10 7")))
        await start_game("blackjack", mode="single", bet=50)

        response = await start_game("blackjack", mode="single", bet=50)

        assert not response.ok
        assert response.message == "You already have a blackjack game in progress!"


class TestSetupFlow:
    """Tests for the mode and bet prompts."""

    async def test_mode_then_bet_launches_single_game(self, engine, start_game, act, balance):
        """Choosing single mode and a bet replaces the setup session with a game."""
        response = await start_game("blackjack")
        assert response.session_key == "bj_setup_alice"
        assert engine.definition("blackjack").is_setup(engine.store.get("bj_setup_alice"))

        await act("alice", "bj:mode:single")
        response = await act("alice", "bj:bet:50")

        assert response.ok
        assert response.session_key == "blackjack_alice"
        assert not engine.store.has("bj_setup_alice")
        assert await balance("alice") == 950

    async def test_unknown_mode_rejected(self, start_game, act):
        """Mode choices are limited to the known modes."""
        await start_game("blackjack")

        response = await act("alice", "bj:mode:tournament")

        assert not response.ok


class TestLobbyGame:
    """Tests for channel tables opened through a lobby."""

    async def _table(self, engine, rng, stack, start_game, act):
        rng.decks.append(stack(parse_cards("5 6 7 8 10 7")))
        await start_game("blackjack", mode="player", bet=50, wait=30)
        await act("bob", "bj:join:50")
        await act("alice", "bj:start")
        return engine.store.get("channelBlackjack_c1")

    async def test_start_deals_every_player(self, engine, rng, stack, start_game, act):
        """Starting the lobby creates the channel table with both players."""
        session = await self._table(engine, rng, stack, start_game, act)

        assert session is not None
        assert session.participant_ids() == ["alice", "bob"]
        assert engine.lobbies.get("blackjack", "c1") is None

    async def test_out_of_turn_rejected_without_mutation(self, engine, rng, stack, start_game, act):
        """Bob cannot hit while it is Alice's turn."""
        session = await self._table(engine, rng, stack, start_game, act)

        response = await act("bob", "bj:hit")

        assert not response.ok
        assert response.message == "It's not your turn!"
        assert len(session.participant("bob").hand) == 2
        assert any(n.participant_id == "bob" for n in engine.notices.values())

    async def test_turns_pass_then_dealer_settles(self, engine, rng, stack, start_game, act, balance):
        """After everyone stands the dealer plays out and both bets settle."""
        await self._table(engine, rng, stack, start_game, act)

        await act("alice", "bj:stand")
        await act("bob", "bj:stand")

        # 11 and 15 both lose to the dealer's 17
        assert await balance("alice") == 950
        assert await balance("bob") == 950
        assert not engine.store.has("channelBlackjack_c1")
        assert len(engine.recorder.for_kind("blackjack")) == 2

    async def test_private_hand_view(self, engine, rng, stack, start_game, act):
        """Viewing your hand is ephemeral and shows only your cards."""
        await self._table(engine, rng, stack, start_game, act)

        response = await act("bob", "bj:view")

        assert response.ephemeral
        assert response.view.private
        assert response.view.fields["Your hand"].endswith("(15)")


class TestOneSessionPerPlayer:
    """Tests that a participant never sits in two blackjack sessions."""

    async def test_lobby_entrant_cannot_start_single_game(self, engine, start_game, act, balance):
        """Waiting in a lobby blocks a single-player game."""
        await start_game("blackjack", mode="player", bet=50, wait=30)
        await act("bob", "bj:join:50")

        response = await start_game("blackjack", requester="bob", mode="single", bet=10)

        assert not response.ok
        assert response.message == "You're already waiting in a blackjack lobby!"
        assert not engine.store.has("blackjack_bob")
        assert await balance("bob") == 950

    async def test_single_player_cannot_join_lobby(self, engine, rng, stack, start_game, act, balance):
        """A running single-player game blocks joining a lobby."""
        rng.decks.append(stack(parse_cards("10 6 10 7")))
        await start_game("blackjack", requester="bob", mode="single", bet=10)
        await start_game("blackjack", mode="player", bet=50, wait=30)

        response = await act("bob", "bj:join:50")

        assert not response.ok
        assert response.message == "You already have a blackjack game in progress!"
        assert not engine.lobbies.get("blackjack", "c1").has("bob")
        assert await balance("bob") == 990

    async def test_cannot_wait_in_two_channels(self, engine, start_game, act, balance):
        """One lobby at a time, across channels."""
        await start_game("blackjack", mode="player", bet=50, wait=30)
        await start_game("blackjack", requester="carol", channel="c2", mode="player", bet=50, wait=30)
        await act("bob", "bj:join:50")

        response = await act("bob", "bj:join:50", channel="c2")

        assert not response.ok
        assert response.message == "You're already waiting in a blackjack lobby!"
        assert not engine.lobbies.get("blackjack", "c2").has("bob")
        assert await balance("bob") == 950

    async def test_seated_entrant_refunded_at_start(self, engine, rng, stack, start_game, act, balance):
        """An entrant who already has a game is refunded instead of seated twice."""
        rng.decks.append(stack(parse_cards("10 6 10 7")))
        rng.decks.append(stack(parse_cards("5 6 10 7")))
        await start_game("blackjack", requester="bob", mode="single", bet=10)
        await start_game("blackjack", mode="player", bet=50, wait=30)
        # An entry that got in while the single game was being set up.
        await engine.economy.debit("bob", 50, "blackjack bet")
        engine.lobbies.get("blackjack", "c1").entries.append(LobbyEntry("bob", "Bob", 50))

        await act("alice", "bj:start")

        assert engine.store.get("channelBlackjack_c1").participant_ids() == ["alice"]
        assert engine.store.find_by_participant("bob", "blackjack").session_key == "blackjack_bob"
        assert await balance("bob") == 990
        response = await act("bob", "bj:stand")
        assert response.ok
        assert not engine.store.has("blackjack_bob")


@pytest.mark.parametrize("mode", ["player", "dealer"])
async def test_lobby_requires_known_wait(start_game, mode):
    """Wait times outside the configured choices are rejected."""
    response = await start_game("blackjack", mode=mode, bet=50, wait=45)

    assert not response.ok
    assert "Wait time" in response.message
