"""Typer CLI entry point for playing the hosted games from a terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import typer
from dotenv import load_dotenv
from rich.table import Table

from ..config.settings import EngineConfig, load_engine_config
from ..core.schemas import ActionEvent, GameKind, RenderedView, StartRequest
from ..economy.outcomes import JsonlOutcomeRecorder
from ..games import GAME_TYPES
from ..persistence.balatro_store import JsonBalatroStore
from ..utils.rng import build_rng
from .console import ConsoleNarrator, console
from .engine import GameEngine, RecordingPresenter

LOGGER = structlog.get_logger(__name__)

app = typer.Typer(help="Play chat games against the session engine.", invoke_without_command=False)
_configured_logging = False


def configure_logging(level: int = logging.INFO) -> None:
    global _configured_logging
    if _configured_logging:
        return
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _configured_logging = True


def parse_options(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into start options; numeric values become ints.

    >>> parse_options(["bet=50", "mode=single"])
    {'bet': 50, 'mode': 'single'}
    """
    options: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        options[key.strip()] = int(value) if value.strip().lstrip("-").isdigit() else value.strip()
    return options


def build_engine(config: EngineConfig, *, seed: Optional[int], presenter: RecordingPresenter) -> GameEngine:
    return GameEngine(
        config=config,
        presenter=presenter,
        rng=build_rng(seed=seed),
        recorder=JsonlOutcomeRecorder(config.outcomes_path) if config.outcomes_path else None,
        balatro_store=JsonBalatroStore(config.balatro_store_dir) if config.balatro_store_dir else None,
    )


@app.command("games")
def list_games() -> None:
    """List the games the engine can host."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Kind")
    table.add_column("Prefix")
    table.add_column("Title")
    table.add_column("Lookup")
    for kind, game_type in GAME_TYPES.items():
        table.add_row(kind, game_type.prefix, game_type.title, game_type.lookup.value)
    console.print(table)


async def _play(
    engine: GameEngine,
    presenter: RecordingPresenter,
    narrator: ConsoleNarrator,
    request: StartRequest,
) -> None:
    await engine.startup(run_cleanup=True)
    try:
        response = await engine.start(request)
        narrator.show_response(response)
        if not response.ok:
            return
        current: Optional[RenderedView] = response.view
        actor = request.requester_id
        seen: Dict[str, int] = {}
        while True:
            for key, views in list(presenter.views.items()):
                for view in views[seen.get(key, 0):]:
                    narrator.show_view(view, subtitle=key)
                    if view.choices:
                        current = view
                seen[key] = len(views)
            answer = await asyncio.to_thread(typer.prompt, f"{actor}>", default="", show_default=False)
            answer = answer.strip()
            if answer in ("q", "quit"):
                return
            if answer.startswith("@"):
                actor = answer[1:] or actor
                continue
            if not answer or current is None:
                continue
            choice = narrator.pick(current, answer)
            if choice is None:
                console.print("[red]Pick a listed number, an action id, or @name to switch player.[/red]")
                continue
            event = ActionEvent(actor_id=actor, actor_name=actor, action_id=choice.id, channel_id=request.channel_id)
            response = await engine.handle_action(event)
            narrator.show_response(response)
            if response.view is not None and response.view.choices and not response.view.private:
                current = response.view
    finally:
        await engine.shutdown()


@app.command("play")
def play(
    kind: GameKind = typer.Argument(..., help="Game to start"),
    player: str = typer.Option("player1", help="Participant id of the starting player"),
    channel: str = typer.Option("local", help="Channel id the game is played in"),
    opponent: Optional[str] = typer.Option(None, help="Opponent id for head-to-head games"),
    option: List[str] = typer.Option([], "--option", "-o", help="Start option as key=value (repeatable)"),
    seed: Optional[int] = typer.Option(None, help="Seed for deterministic shuffles"),
    config: Optional[Path] = typer.Option(None, help="Path to engine configuration JSON"),
    verbose: bool = typer.Option(False, "--verbose", help="Show engine log events"),
) -> None:
    """Start a game and play it interactively. Type @name to act as another participant."""

    load_dotenv()
    configure_logging(logging.INFO if verbose else logging.WARNING)
    engine_config = load_engine_config(config)
    presenter = RecordingPresenter()
    engine = build_engine(engine_config, seed=seed, presenter=presenter)
    request = StartRequest(
        requester_id=player,
        requester_name=player,
        channel_id=channel,
        game_kind=kind,
        opponent_id=opponent,
        opponent_name=opponent,
        options=parse_options(option),
    )
    LOGGER.info("cli.play", game_kind=kind.value, player=player, channel=channel, seed=seed)
    try:
        asyncio.run(_play(engine, presenter, ConsoleNarrator(), request))
    except KeyboardInterrupt:  # pragma: no cover - interactive exit
        raise typer.Exit(code=130)


if __name__ == "__main__":  # pragma: no cover
    app()
