"""
Tests for hangman and Wordle.

Tests:
- Guess validation
- Win, perfect and loss payouts
- Bet setup prompts
- Word list loading
"""

from chatcade.games.words import load_words
from chatcade.games.wordle import ABSENT, CORRECT, PRESENT, score_guess


class TestHangman:
    """Tests for hangman."""

    async def test_perfect_game_triples_stake(self, engine, rng, start_game, act, balance):
        """Solving without a miss pays 3x."""
        rng.choices.append("CAT")
        await start_game("hangman", bet=50)

        for letter in "CAT":
            await act("alice", f"hangman:guess:{letter}")

        assert await balance("alice") == 1100
        assert engine.recorder.for_kind("hangman")[-1].final_score["perfect"] is True

    async def test_solve_with_misses_doubles_stake(self, rng, start_game, act, balance):
        """A solve with wrong guesses pays 2x."""
        rng.choices.append("CAT")
        await start_game("hangman", bet=50)

        for letter in "ZCAT":
            await act("alice", f"hangman:guess:{letter}")

        assert await balance("alice") == 1050

    async def test_six_misses_lose(self, engine, rng, start_game, act, balance):
        """Six wrong letters end the game and keep the stake."""
        rng.choices.append("CAT")
        await start_game("hangman", bet=50)

        for letter in "BDEFGH":
            await act("alice", f"hangman:guess:{letter}")

        assert await balance("alice") == 950
        assert not engine.store.has("hangman_alice")
        assert engine.recorder.for_kind("hangman")[-1].winner_id == "house"

    async def test_repeat_letter_rejected(self, engine, rng, start_game, act):
        """Guessing the same letter twice changes nothing."""
        rng.choices.append("CAT")
        await start_game("hangman", bet=50)
        await act("alice", "hangman:guess:C")

        response = await act("alice", "hangman:guess:c")

        assert response.message == "You already guessed C!"
        assert engine.store.get("hangman_alice").state.guessed == ["C"]

    async def test_bet_prompt_then_game(self, engine, start_game, act, balance):
        """Starting without a bet asks for one, then launches the game."""
        response = await start_game("hangman")
        assert response.session_key == "hangman_setup_alice"
        assert response.view.choice_ids() == ["hangman:bet:10", "hangman:bet:25", "hangman:bet:50", "hangman:bet:100"]

        response = await act("alice", "hangman:bet:25")

        assert response.ok
        assert response.session_key == "hangman_alice"
        assert not engine.store.has("hangman_setup_alice")
        assert await balance("alice") == 975

    async def test_failed_bet_keeps_prompt(self, engine, start_game, act):
        """An unaffordable bet leaves the prompt in place."""
        await start_game("hangman")

        response = await act("alice", "hangman:bet:5000")

        assert not response.ok
        assert engine.store.has("hangman_setup_alice")


class TestWordle:
    """Tests for Wordle."""

    def test_duplicate_letters_scored_by_count(self):
        """A letter is only marked present as often as it remains unmatched."""
        assert score_guess("ERASE", "SPEED") == [PRESENT, ABSENT, ABSENT, PRESENT, PRESENT]
        assert score_guess("SPEED", "ABIDE") == [ABSENT, ABSENT, PRESENT, ABSENT, PRESENT]
        assert score_guess("CRANE", "CRATE")[3] == ABSENT
        assert score_guess("CRANE", "CRATE")[4] == CORRECT

    async def test_solve_doubles_stake(self, engine, rng, start_game, act, balance):
        """Guessing the word pays 2x."""
        rng.choices.append("CRANE")
        await start_game("wordle", bet=20)

        response = await act("alice", "wordle:guess:crane")

        assert response.ok
        assert await balance("alice") == 1020
        assert engine.recorder.for_kind("wordle")[-1].final_score["guesses"] == 1

    async def test_six_misses_lose(self, rng, start_game, act, balance):
        """Six wrong guesses end the game."""
        rng.choices.append("CRANE")
        await start_game("wordle", bet=20)

        for word in ("APPLE", "BEACH", "BRAVE", "CHAIR", "CLOUD", "DANCE"):
            await act("alice", f"wordle:guess:{word}")

        assert await balance("alice") == 980

    async def test_bad_guess_rejected(self, engine, rng, start_game, act):
        """Guesses must be five letters."""
        rng.choices.append("CRANE")
        await start_game("wordle")

        response = await act("alice", "wordle:guess:CAT")

        assert response.message == "Guesses must be 5 letters (A-Z)."
        assert engine.store.get("wordle_alice").state.guesses == []

    async def test_free_play_has_no_transactions(self, engine, rng, start_game, act):
        """Without a bet the ledger is untouched."""
        rng.choices.append("CRANE")
        await start_game("wordle")

        await act("alice", "wordle:guess:CRANE")

        assert engine.economy.transactions == []
        assert engine.recorder.for_kind("wordle")[-1].winner_id == "alice"


class TestWordLists:
    """Tests for load_words."""

    def test_missing_file_uses_default(self, tmp_path):
        """A missing file falls back to the built-in list."""
        assert load_words(tmp_path / "nope.txt", default=["APPLE"]) == ["APPLE"]

    def test_filters_bad_lines(self, tmp_path):
        """Non-alphabetic and wrong-length words are skipped."""
        path = tmp_path / "words.txt"
        path.write_text("crane\nno-way\nabc\nSLATE\n", encoding="utf-8")

        assert load_words(path, default=["APPLE"], length=5) == ["CRANE", "SLATE"]
