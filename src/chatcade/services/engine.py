"""Engine facade: the start/action boundary, publishing and housekeeping."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Protocol

import structlog

from ..config.settings import EngineConfig
from ..core.errors import EngineError, SessionNotFound, TransientRenderFailure, ValidationError
from ..core.fsm import Session, TurnCoordinator
from ..core.lobby import Lobby, LobbyOutcome, LobbyScheduler
from ..core.router import ActionRouter
from ..core.scheduler import Ticker
from ..core.schemas import ActionEvent, ActionResponse, Notice, RenderedView, StartRequest
from ..core.settlement import Settler
from ..core.store import SessionStore
from ..economy.gateway import EconomyGateway, InMemoryEconomy
from ..economy.outcomes import InMemoryOutcomeRecorder, OutcomeRecorder
from ..games import EngineServices, GameDefinition, build_definitions
from ..persistence.balatro_store import BalatroStore
from ..utils.rng import RandomSource, build_rng

LOGGER = structlog.get_logger(__name__)

GENERIC_FAILURE = "An error occurred."


class Presenter(Protocol):
    """Outbound boundary to whatever displays views (chat adapter, console, web)."""

    async def publish(self, session_key: str, view: RenderedView) -> None: ...


class NullPresenter:
    async def publish(self, session_key: str, view: RenderedView) -> None:
        return None


class RecordingPresenter:
    """Keeps every published view; handy for the CLI and for tests."""

    def __init__(self) -> None:
        self.views: Dict[str, List[RenderedView]] = defaultdict(list)

    async def publish(self, session_key: str, view: RenderedView) -> None:
        self.views[session_key].append(view)

    def latest(self, session_key: str) -> Optional[RenderedView]:
        history = self.views.get(session_key)
        return history[-1] if history else None


def lobby_view_key(kind: str, channel_id: str) -> str:
    return f"lobby:{kind}:{channel_id}"


class GameEngine:
    """Owns the store, timers, lobbies and every game definition."""

    def __init__(
        self,
        *,
        config: Optional[EngineConfig] = None,
        economy: Optional[EconomyGateway] = None,
        recorder: Optional[OutcomeRecorder] = None,
        presenter: Optional[Presenter] = None,
        rng: Optional[RandomSource] = None,
        balatro_store: Optional[BalatroStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.economy = economy or InMemoryEconomy(starting_balance=self.config.starting_balance, clock=clock)
        self.recorder = recorder or InMemoryOutcomeRecorder()
        self.presenter = presenter or NullPresenter()
        self.clock = clock
        self.store = SessionStore()
        self.ticker = Ticker(interval=self.config.tick_interval)
        self.settler = Settler(store=self.store, economy=self.economy, recorder=self.recorder, clock=clock)
        self.coordinator = TurnCoordinator(self.settler)
        self.lobbies = LobbyScheduler(
            economy=self.economy,
            ticker=self.ticker,
            on_start=self._start_from_lobby,
            on_render=self._render_lobby,
            on_close=self._lobby_closed,
            clock=clock,
        )
        self.services = EngineServices(
            store=self.store,
            economy=self.economy,
            rng=rng or build_rng(),
            config=self.config,
            ticker=self.ticker,
            coordinator=self.coordinator,
            publish=self.publish,
            clock=clock,
            lobbies=self.lobbies,
            balatro_store=balatro_store,
        )
        self.definitions: Dict[str, GameDefinition] = {
            definition.kind: definition for definition in build_definitions(self.services)
        }
        self.router = ActionRouter(self.store, self.definitions.values())
        self.notices: Dict[str, Notice] = {}
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def startup(self, *, run_cleanup: bool = False) -> List[Session]:
        """Initialise the store and reload persisted sessions."""
        self.store.init()
        restored: List[Session] = []
        for definition in self.definitions.values():
            try:
                restored.extend(await definition.restore())
            except Exception as exc:  # noqa: BLE001
                LOGGER.error("engine.restore_failed", game_kind=definition.kind, error=str(exc))
        if run_cleanup:
            self._cleanup_task = asyncio.get_running_loop().create_task(self.run_cleanup_loop())
        LOGGER.info("engine.started", games=sorted(self.definitions), restored=len(restored))
        return restored

    async def shutdown(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        await self.lobbies.close_all()
        self.ticker.stop_all()
        self.store.clear()
        LOGGER.info("engine.stopped")

    def definition(self, kind: str) -> GameDefinition:
        try:
            return self.definitions[kind]
        except KeyError as exc:
            raise ValidationError(f"Unknown game {kind!r}") from exc

    # ------------------------------------------------------------------
    # Inbound boundary
    # ------------------------------------------------------------------

    async def start(self, request: StartRequest) -> ActionResponse:
        kind = request.game_kind.value
        try:
            response = await self.definition(kind).start(request)
        except EngineError as exc:
            LOGGER.debug("start.rejected", game_kind=kind, requester=request.requester_id, error=str(exc))
            return ActionResponse.rejected(exc.user_message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("action.failed", game_kind=kind, requester=request.requester_id, error=str(exc), exc_info=True)
            return ActionResponse.rejected(GENERIC_FAILURE)
        LOGGER.info("start.accepted", game_kind=kind, session_key=response.session_key, requester=request.requester_id)
        return response

    async def handle_action(self, event: ActionEvent) -> ActionResponse:
        try:
            return await self._dispatch(event)
        except EngineError as exc:
            LOGGER.debug("action.rejected", action=event.action_id, actor=event.actor_id, error=str(exc))
            self._notice(event.actor_id, exc.user_message)
            return ActionResponse.rejected(exc.user_message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("action.failed", action=event.action_id, actor=event.actor_id, error=str(exc), exc_info=True)
            return ActionResponse.rejected(GENERIC_FAILURE)

    async def _dispatch(self, event: ActionEvent) -> ActionResponse:
        action = self.router.parse(event.action_id)
        definition = self.router.definition_for(action)
        if action.name in definition.lobby_actions:
            return await definition.handle_lobby_action(action, event)

        session = self.router.resolve(action, event.actor_id, event.channel_id)
        if session is None:
            session = await definition.recover(event.actor_id)
        if session is None:
            raise SessionNotFound(f"No {definition.kind} session for {event.action_id}")

        if action.name in definition.turn_actions:
            result = await self.coordinator.submit(definition, session, event.actor_id, action)
        else:
            result = await definition.handle_side_action(session, event.actor_id, action, event)

        if result.response is not None:
            return result.response
        if session.settled or self.store.is_live(session):
            await self.publish(session)
        if result.private_view:
            return ActionResponse(
                ok=True,
                session_key=session.session_key,
                view=definition.render(session, viewer=event.actor_id),
                message=result.message,
                ephemeral=True,
            )
        return ActionResponse(
            ok=True,
            session_key=session.session_key,
            view=definition.render(session),
            message=result.message,
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def publish(self, session: Session) -> None:
        """Render ``session`` and hand it to the presenter; display failures are not fatal."""
        definition = self.definitions[session.game_kind]
        try:
            await self.presenter.publish(session.session_key, definition.render(session))
        except TransientRenderFailure as exc:
            LOGGER.warning("render.failed", session_key=session.session_key, error=str(exc))

    async def _render_lobby(self, lobby: Lobby, time_left: int) -> None:
        view = self.definitions[lobby.game_kind].render_lobby(lobby, time_left)
        try:
            await self.presenter.publish(lobby_view_key(lobby.game_kind, lobby.channel_id), view)
        except TransientRenderFailure as exc:
            LOGGER.warning("render.failed", lobby=lobby.timer_key, error=str(exc))

    async def _start_from_lobby(self, lobby: Lobby) -> Session:
        session = await self.definitions[lobby.game_kind].start_from_lobby(lobby)
        await self.publish(session)
        return session

    async def _lobby_closed(self, lobby: Lobby, outcome: LobbyOutcome) -> None:
        if outcome is LobbyOutcome.REFUNDED:
            text = f"Not enough players joined the {lobby.game_kind} game. Bets refunded."
        else:
            text = f"The {lobby.game_kind} game was cancelled. Bets refunded."
        try:
            await self.presenter.publish(
                lobby_view_key(lobby.game_kind, lobby.channel_id),
                RenderedView(title=f"{self.definitions[lobby.game_kind].title} lobby", body=[text]),
            )
        except TransientRenderFailure as exc:
            LOGGER.warning("render.failed", lobby=lobby.timer_key, error=str(exc))

    # ------------------------------------------------------------------
    # Notices and cleanup
    # ------------------------------------------------------------------

    def _notice(self, participant_id: str, text: str) -> Notice:
        notice = Notice(notice_id=uuid.uuid4().hex, participant_id=participant_id, text=text, created_at=self.clock())
        self.notices[notice.notice_id] = notice
        return notice

    def sweep(self, now: Optional[float] = None) -> Dict[str, int]:
        """Drop expired notices and abandoned setup sessions."""
        now = self.clock() if now is None else now
        stale_notices = [nid for nid, notice in self.notices.items() if now - notice.created_at > self.config.prompt_ttl]
        for notice_id in stale_notices:
            del self.notices[notice_id]

        stale_setups = [
            session
            for session in self.store.sessions()
            if self.definitions[session.game_kind].is_setup(session)
            and now - session.created_at > self.config.setup_ttl
        ]
        for session in stale_setups:
            self.store.remove(session.session_key)
        if stale_notices or stale_setups:
            LOGGER.info("cleanup.swept", notices=len(stale_notices), setups=len(stale_setups))
        return {"notices": len(stale_notices), "setups": len(stale_setups)}

    async def run_cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval)
            try:
                self.sweep()
            except Exception as exc:  # noqa: BLE001
                LOGGER.error("cleanup.failed", error=str(exc))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def view(self, session_key: str, viewer: Optional[str] = None) -> RenderedView:
        session = self.store.get(session_key)
        if session is None:
            raise SessionNotFound(f"Unknown session {session_key}")
        return self.definitions[session.game_kind].render(session, viewer)
