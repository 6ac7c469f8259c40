"""
Tests for engine configuration.

Tests:
- Defaults when no file exists
- JSON overrides, path fields and unknown keys
- Environment variable lookup
- Validation of inconsistent values
"""

from pathlib import Path

import orjson
import pytest

from chatcade.config.settings import CONFIG_ENV_VAR, EngineConfig, config_from_dict, load_engine_config


def write_config(path, data):
    path.write_bytes(orjson.dumps(data))
    return path


class TestLoading:
    """Tests for load_engine_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """No file means built-in defaults."""
        config = load_engine_config(tmp_path / "absent.json")

        assert config == EngineConfig()
        assert config.default_lobby_wait == 60

    def test_overrides_from_file(self, tmp_path):
        """Known keys override defaults; empty paths disable storage."""
        path = write_config(
            tmp_path / "engine.json",
            {"min_bet": 5, "bet_amounts": [5, 10], "outcomes_path": "", "balatro_store_dir": "saves"},
        )

        config = load_engine_config(path)

        assert config.min_bet == 5
        assert config.bet_amounts == [5, 10]
        assert config.outcomes_path is None
        assert config.balatro_store_dir == Path("saves")

    def test_unknown_keys_ignored(self):
        """Typos don't stop the engine from starting."""
        config = config_from_dict({"tick_intervall": 3, "spin_frames": 4})

        assert config.spin_frames == 4
        assert config.tick_interval == 1.0

    def test_env_var_points_at_file(self, tmp_path, monkeypatch):
        """The environment variable is used when no path is given."""
        path = write_config(tmp_path / "env.json", {"pong_target_score": 3})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_engine_config().pong_target_score == 3

    def test_non_object_rejected(self, tmp_path):
        """The file must hold a JSON object."""
        path = write_config(tmp_path / "list.json", [1, 2])

        with pytest.raises(ValueError):
            load_engine_config(path)


class TestValidation:
    """Tests for EngineConfig invariants."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"tick_interval": 0},
            {"min_bet": 0},
            {"default_lobby_wait": 45},
            {"min_bet": 20, "bet_amounts": [10, 25]},
        ],
    )
    def test_inconsistent_values_rejected(self, overrides):
        """Bad timers, bets and lobby waits fail fast."""
        with pytest.raises(ValueError):
            EngineConfig(**overrides)
