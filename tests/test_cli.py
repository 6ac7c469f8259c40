"""
Tests for the command line client.

Tests:
- Listing games
- Parsing start options
- Building an engine from configuration
- A short interactive session
"""

import pytest
import typer
from typer.testing import CliRunner

from chatcade.config.settings import EngineConfig
from chatcade.economy.outcomes import InMemoryOutcomeRecorder, JsonlOutcomeRecorder
from chatcade.persistence.balatro_store import JsonBalatroStore
from chatcade.services import cli
from chatcade.services.cli import app, build_engine, parse_options
from chatcade.services.engine import RecordingPresenter

runner = CliRunner()


@pytest.fixture
def quiet_cli(tmp_path, monkeypatch):
    """Run commands from an empty directory without reconfiguring global logging."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)
    return tmp_path


class TestCommands:
    """Tests for the typer commands."""

    def test_games_lists_every_kind(self):
        """The games table names each game."""
        result = runner.invoke(app, ["games"])

        assert result.exit_code == 0
        for kind in ("blackjack", "roulette", "unoexpress", "balatro"):
            assert kind in result.output

    def test_play_and_quit(self, quiet_cli):
        """A game starts, shows its board and exits on q."""
        result = runner.invoke(
            app,
            ["play", "tictactoe", "--player", "alice", "--config", str(quiet_cli / "none.json")],
            input="q\n",
        )

        assert result.exit_code == 0
        assert "Tic-Tac-Toe" in result.output

    def test_bad_option_is_usage_error(self, quiet_cli):
        """Options must be key=value."""
        result = runner.invoke(app, ["play", "hangman", "-o", "bet"])

        assert result.exit_code == 2


class TestHelpers:
    """Tests for parse_options and build_engine."""

    def test_parse_options(self):
        """Numbers become ints; everything else stays text."""
        assert parse_options(["bet=50", "mode = single", "wait=-1"]) == {"bet": 50, "mode": "single", "wait": -1}

    def test_parse_options_rejects_bare_words(self):
        """A pair without = is a usage error."""
        with pytest.raises(typer.BadParameter):
            parse_options(["bet"])

    def test_build_engine_uses_configured_storage(self, tmp_path):
        """File-backed recorders and stores follow the configured paths."""
        config = EngineConfig(outcomes_path=tmp_path / "outcomes.jsonl", balatro_store_dir=tmp_path / "balatro")

        engine = build_engine(config, seed=3, presenter=RecordingPresenter())

        assert isinstance(engine.recorder, JsonlOutcomeRecorder)
        assert isinstance(engine.services.balatro_store, JsonBalatroStore)

    def test_build_engine_without_storage(self):
        """Disabled paths fall back to in-memory collaborators."""
        config = EngineConfig(outcomes_path=None, balatro_store_dir=None)

        engine = build_engine(config, seed=None, presenter=RecordingPresenter())

        assert isinstance(engine.recorder, InMemoryOutcomeRecorder)
        assert engine.services.balatro_store is None
