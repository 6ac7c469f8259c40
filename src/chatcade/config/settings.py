"""Engine configuration loaded from JSON with built-in defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/chatcade.json")
CONFIG_ENV_VAR = "CHATCADE_CONFIG"


@dataclass(slots=True)
class EngineConfig:
    """Timers, bet limits and storage locations for the engine."""

    tick_interval: float = 1.0
    lobby_wait_choices: List[int] = field(default_factory=lambda: [30, 60, 120])
    default_lobby_wait: int = 60
    betting_window: int = 60
    prompt_ttl: float = 12.0
    setup_ttl: float = 300.0
    cleanup_interval: float = 30.0
    min_bet: int = 10
    bet_amounts: List[int] = field(default_factory=lambda: [10, 25, 50, 100])
    max_lobby_players: int = 6
    pong_countdown: int = 3
    pong_target_score: int = 5
    spin_frames: int = 8
    starting_balance: int = 1000
    outcomes_path: Optional[Path] = Path("runs/outcomes.jsonl")
    balatro_store_dir: Optional[Path] = Path("runs/balatro")
    word_list_path: Optional[Path] = None
    wordle_words_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.min_bet <= 0:
            raise ValueError("min_bet must be positive")
        if self.default_lobby_wait not in self.lobby_wait_choices:
            raise ValueError(
                f"default_lobby_wait {self.default_lobby_wait} is not one of {self.lobby_wait_choices}"
            )
        if any(amount < self.min_bet for amount in self.bet_amounts):
            raise ValueError("bet_amounts must all be at least min_bet")


_PATH_FIELDS = {"outcomes_path", "balatro_store_dir", "word_list_path", "wordle_words_path"}


def config_from_dict(data: Dict[str, Any]) -> EngineConfig:
    """Build a config from a mapping, ignoring unknown keys."""
    known = {f.name for f in fields(EngineConfig)}
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            LOGGER.warning("config.unknown_key", key=key)
            continue
        if key in _PATH_FIELDS:
            kwargs[key] = Path(value) if value else None
        else:
            kwargs[key] = value
    return EngineConfig(**kwargs)


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return path
    env_value = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_value) if env_value else DEFAULT_CONFIG_PATH


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from disk, falling back to defaults."""

    config_path = resolve_config_path(path)
    if not config_path.exists():
        return EngineConfig()
    data = orjson.loads(config_path.read_bytes())
    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a JSON object")
    config = config_from_dict(data)
    LOGGER.info("config.loaded", path=str(config_path))
    return config
