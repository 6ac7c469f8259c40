"""Blackjack against the house, single player or from a channel lobby."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from ..core.cards import Card, blackjack_score, format_hand, is_natural, shuffled_deck
from ..core.errors import EngineError, KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.lobby import Lobby
from ..core.rulesets import (
    BLACKJACK_MODES,
    BLACKJACK_NATURAL_MULTIPLIER,
    BLACKJACK_PUSH_MULTIPLIER,
    BLACKJACK_WIN_MULTIPLIER,
    DEALER_STANDS_ON,
)
from ..core.schemas import ActionEvent, ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine, payout_for
from .base import HOUSE_ID, TIE_ID, GameDefinition, sanitize_name

LOGGER = structlog.get_logger(__name__)


@dataclass
class BlackjackPlayer(Participant):
    hand: List[Card] = field(default_factory=list)
    bet: int = 0
    stood: bool = False
    busted: bool = False
    natural: bool = False
    doubled: bool = False
    acted: bool = False

    @property
    def score(self) -> int:
        return blackjack_score(self.hand)

    @property
    def done(self) -> bool:
        return self.stood or self.busted


@dataclass
class BlackjackTable:
    deck: List[Card]
    dealer_hand: List[Card] = field(default_factory=list)
    dealer_id: Optional[str] = None
    revealed: bool = False

    @property
    def dealer_score(self) -> int:
        return blackjack_score(self.dealer_hand)


@dataclass
class BlackjackSetup:
    """Choices collected before the table opens."""

    name: str
    mode: Optional[str] = None
    bet: Optional[int] = None


def player_result(player: BlackjackPlayer, dealer_score: int) -> Category:
    """Result of ``player`` against a finished dealer hand.

    A natural always pays, whatever the dealer holds.
    """
    if player.busted:
        return Category.BUST
    if player.natural:
        return Category.NATURAL
    if dealer_score > 21 or player.score > dealer_score:
        return Category.WIN
    if player.score == dealer_score:
        return Category.PUSH
    return Category.LOSS


MULTIPLIERS = {
    Category.NATURAL: BLACKJACK_NATURAL_MULTIPLIER,
    Category.WIN: BLACKJACK_WIN_MULTIPLIER,
    Category.PUSH: BLACKJACK_PUSH_MULTIPLIER,
}


class BlackjackGame(GameDefinition):
    kind = "blackjack"
    prefix = "bj"
    title = "Blackjack"
    lookup = Lookup.PARTICIPANT
    turn_actions = frozenset({"hit", "stand", "double"})
    lobby_actions = frozenset({"join", "start", "cancel"})

    @staticmethod
    def single_key(user_id: str) -> str:
        return f"blackjack_{user_id}"

    @staticmethod
    def setup_key(user_id: str) -> str:
        return f"bj_setup_{user_id}"

    @staticmethod
    def table_key(channel_id: str) -> str:
        return f"channelBlackjack_{channel_id}"

    def is_setup(self, session: Session) -> bool:
        return isinstance(session.state, BlackjackSetup)

    # ------------------------------------------------------------------
    # Starting
    # ------------------------------------------------------------------

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        name = sanitize_name(request.display_name)
        self._ensure_not_playing(user_id)
        mode = request.options.get("mode")
        bet = request.options.get("bet")
        if mode is None or bet is None or (mode != "single" and request.options.get("wait") is None):
            setup = BlackjackSetup(name=name, mode=mode if mode in BLACKJACK_MODES else None)
            if bet is not None:
                setup.bet = self.parse_bet(bet)
            session = self.new_session(
                self.setup_key(user_id),
                channel_id=request.channel_id,
                creator_id=user_id,
                server_id=request.server_id,
                participants=[Participant(user_id, name)],
                state=setup,
            )
            self.register(session)
            return self.respond(session)
        return await self._launch(
            user_id,
            name,
            channel_id=request.channel_id,
            server_id=request.server_id,
            mode=str(mode),
            bet=self.parse_bet(bet),
            wait=request.options.get("wait"),
        )

    def _ensure_not_playing(self, user_id: str, joining: Optional[str] = None) -> None:
        """Each participant sits in at most one blackjack session or lobby."""
        existing = self.services.store.find_by_participant(user_id, self.kind)
        if existing is not None:
            raise KeyCollision(
                f"{user_id} already in {existing.session_key}",
                user_message="You already have a blackjack game in progress!",
            )
        for lobby in self.services.lobbies.lobbies():
            if lobby.game_kind == self.kind and lobby.channel_id != joining and lobby.has(user_id):
                raise KeyCollision(
                    f"{user_id} already waiting in {lobby.channel_id}",
                    user_message="You're already waiting in a blackjack lobby!",
                )

    async def _launch(
        self,
        user_id: str,
        name: str,
        *,
        channel_id: str,
        server_id: Optional[str],
        mode: str,
        bet: int,
        wait: object = None,
    ) -> ActionResponse:
        if mode not in BLACKJACK_MODES:
            raise ValidationError(f"Unknown blackjack mode {mode!r}")
        if mode == "single":
            return await self._start_single(user_id, name, channel_id=channel_id, server_id=server_id, bet=bet)

        if self.services.store.has(self.table_key(channel_id)):
            raise KeyCollision(
                f"Table already running in {channel_id}",
                user_message="There's already a blackjack game in this channel!",
            )
        wait_seconds = self._wait_seconds(wait)
        lobby = Lobby(
            channel_id=channel_id,
            game_kind=self.kind,
            creator_id=user_id,
            creator_name=name,
            wait_seconds=wait_seconds,
            started_at=self.now(),
            min_players=2 if mode == "dealer" else 1,
            max_players=self.config.max_lobby_players,
            server_id=server_id,
            options={"mode": mode},
        )
        await self.services.lobbies.open(lobby, bet=bet)
        return ActionResponse(
            ok=True,
            session_key=self.table_key(channel_id),
            view=self.render_lobby(lobby, wait_seconds),
            message=f"Blackjack lobby open for {wait_seconds}s.",
        )

    def _wait_seconds(self, wait: object) -> int:
        if wait is None:
            return self.config.default_lobby_wait
        try:
            seconds = int(wait)  # type: ignore[call-overload]
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid wait time {wait!r}") from exc
        if seconds not in self.config.lobby_wait_choices:
            raise ValidationError(f"Wait time must be one of {self.config.lobby_wait_choices} seconds.")
        return seconds

    async def _start_single(
        self, user_id: str, name: str, *, channel_id: str, server_id: Optional[str], bet: int
    ) -> ActionResponse:
        key = self.single_key(user_id)
        self.ensure_free(key)
        await self.debit(user_id, bet, "Blackjack bet")
        player = BlackjackPlayer(user_id, name, bet=bet)
        session = self.new_session(
            key,
            channel_id=channel_id,
            creator_id=user_id,
            server_id=server_id,
            participants=[player],
            phase=Phase.ACTIVE,
            mode="single",
            state=BlackjackTable(deck=shuffled_deck(self.rng)),
        )
        session.add_bet(user_id, bet)
        try:
            self.register(session)
        except KeyCollision:
            await self.refund(user_id, bet, "Blackjack refund")
            raise
        await self._deal(session)
        return self.respond(session)

    async def start_from_lobby(self, lobby: Lobby) -> Session:
        key = self.table_key(lobby.channel_id)
        self.ensure_free(key)
        mode = str(lobby.options.get("mode", "player"))
        await self._drop_seated(lobby)
        if not lobby.quorum_met or (mode == "dealer" and not lobby.has(lobby.creator_id)):
            raise ValidationError(f"Not enough players left for the table in {lobby.channel_id}")
        players = [BlackjackPlayer(e.participant_id, e.name, bet=e.bet) for e in lobby.entries]
        session = self.new_session(
            key,
            channel_id=lobby.channel_id,
            creator_id=lobby.creator_id,
            server_id=lobby.server_id,
            participants=players,
            phase=Phase.ACTIVE,
            mode="multiplayer",
            state=BlackjackTable(
                deck=shuffled_deck(self.rng),
                dealer_id=lobby.creator_id if mode == "dealer" else None,
            ),
        )
        for player in players:
            session.add_bet(player.id, player.bet)
        self.register(session)
        await self._deal(session)
        return session

    async def _drop_seated(self, lobby: Lobby) -> None:
        """Refund and remove entries whose participant already has a blackjack session."""
        for entry in list(lobby.entries):
            existing = self.services.store.find_by_participant(entry.participant_id, self.kind)
            if existing is None:
                continue
            lobby.entries.remove(entry)
            await self.refund(entry.participant_id, entry.bet, "Blackjack refund")
            LOGGER.warning(
                "blackjack.entry_dropped",
                channel=lobby.channel_id,
                participant=entry.participant_id,
                session_key=existing.session_key,
            )

    async def _deal(self, session: Session) -> None:
        table: BlackjackTable = session.state
        for player in self._players(session):
            player.hand = [self._draw(table), self._draw(table)]
            if is_natural(player.hand):
                player.natural = True
                player.stood = True
        table.dealer_hand = [self._draw(table), self._draw(table)]
        LOGGER.info(
            "blackjack.dealt",
            session_key=session.session_key,
            players=len(session.participants),
            naturals=[p.id for p in self._players(session) if p.natural],
        )
        self.services.coordinator.start_turns(self, session)
        await self.services.coordinator.check_resolution(self, session)

    def _draw(self, table: BlackjackTable) -> Card:
        if not table.deck:
            table.deck = shuffled_deck(self.rng)
        return table.deck.pop()

    @staticmethod
    def _players(session: Session) -> List[BlackjackPlayer]:
        return [p for p in session.participants if isinstance(p, BlackjackPlayer)]

    # ------------------------------------------------------------------
    # Setup and lobby actions
    # ------------------------------------------------------------------

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name == "view":
            if not isinstance(session.participant(actor_id), BlackjackPlayer):
                raise ValidationError("You are not part of this game.")
            return ActionResult(private_view=True)
        if not self.is_setup(session):
            raise ValidationError("That action is not available.")
        if actor_id != session.creator_id:
            raise ValidationError("This setup belongs to someone else.")
        setup: BlackjackSetup = session.state
        if action.name == "mode":
            mode = action.arg(0)
            if mode not in BLACKJACK_MODES:
                raise ValidationError(f"Unknown blackjack mode {mode!r}")
            setup.mode = mode
        elif action.name == "bet":
            setup.bet = self.parse_bet(action.arg(0))
        elif action.name == "wait":
            if setup.mode is None or setup.bet is None:
                raise ValidationError("Pick a mode and a bet first.")
            return ActionResult(response=await self._finish_setup(session, setup, action.arg(0)))
        else:
            raise ValidationError("That action is not available.")
        if setup.mode == "single" and setup.bet is not None:
            return ActionResult(response=await self._finish_setup(session, setup, None))
        return ActionResult()

    async def _finish_setup(self, session: Session, setup: BlackjackSetup, wait: object) -> ActionResponse:
        assert setup.mode is not None and setup.bet is not None
        self.services.store.remove(session.session_key)
        try:
            return await self._launch(
                session.creator_id,
                setup.name,
                channel_id=session.channel_id,
                server_id=session.server_id,
                mode=setup.mode,
                bet=setup.bet,
                wait=wait,
            )
        except EngineError:
            if not self.services.store.has(session.session_key):
                self.register(session)
            raise

    async def handle_lobby_action(self, action: ParsedAction, event: ActionEvent) -> ActionResponse:
        lobbies = self.services.lobbies
        if action.name == "join":
            self._ensure_not_playing(event.actor_id, joining=event.channel_id)
            bet = self.parse_bet(action.arg(0))
            lobby = await lobbies.join(
                self.kind, event.channel_id, event.actor_id, sanitize_name(event.display_name), bet=bet
            )
            return ActionResponse(
                ok=True,
                view=self.render_lobby(lobby, lobbies.time_left(lobby)),
                message=f"You joined with a {bet} coin bet.",
                ephemeral=True,
            )
        if action.name == "start":
            outcome = await lobbies.start_now(self.kind, event.channel_id, event.actor_id)
            return ActionResponse(ok=outcome is not None, message="Starting the game!", ephemeral=True)
        if action.name == "cancel":
            outcome = await lobbies.cancel(self.kind, event.channel_id, event.actor_id)
            return ActionResponse(ok=outcome is not None, message="Game cancelled. All bets refunded.")
        raise ValidationError("That lobby action is not supported.")

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def eligible(self, session: Session, participant: Participant) -> bool:
        return isinstance(participant, BlackjackPlayer) and not participant.done

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        if session.phase is not Phase.ACTIVE or self.next_actor(session) != actor_id:
            return []
        player = session.participant(actor_id)
        assert isinstance(player, BlackjackPlayer)
        actions = [self.action_id("hit"), self.action_id("stand")]
        if not player.acted and len(player.hand) == 2:
            actions.append(self.action_id("double"))
        return actions

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        player = session.participant(actor_id)
        assert isinstance(player, BlackjackPlayer)
        table: BlackjackTable = session.state

        if action.name == "double":
            await self.debit(actor_id, player.bet, "Blackjack double down")
            # Another click may have been applied while the debit was pending.
            if not self.is_live(session) or self.action_id("double") not in self.legal_actions(session, actor_id):
                await self.refund(actor_id, player.bet, "Blackjack double down refund")
                raise ValidationError("That move is not allowed right now.")
            session.add_bet(actor_id, player.bet)
            player.bet *= 2
            player.doubled = True
            player.acted = True
            player.hand.append(self._draw(table))
            if player.score > 21:
                player.busted = True
            else:
                player.stood = True
            return ActionResult(end_turn=True)

        player.acted = True
        if action.name == "stand":
            player.stood = True
            return ActionResult(end_turn=True)

        player.hand.append(self._draw(table))
        if player.score > 21:
            player.busted = True
            return ActionResult(end_turn=True, message=f"Bust with {player.score}!")
        if player.score == 21:
            player.stood = True
            return ActionResult(end_turn=True)
        return ActionResult()

    def is_terminal(self, session: Session) -> bool:
        if self.is_setup(session):
            return False
        return session.phase is Phase.ENDED or all(p.done for p in self._players(session))

    async def resolve(self, session: Session) -> None:
        table: BlackjackTable = session.state
        table.revealed = True
        while table.dealer_score < DEALER_STANDS_ON:
            table.dealer_hand.append(self._draw(table))
        LOGGER.info("blackjack.dealer_done", session_key=session.session_key, dealer_score=table.dealer_score)

    def settle(self, session: Session) -> List[SettlementLine]:
        table: BlackjackTable = session.state
        lines: List[SettlementLine] = []
        for player in self._players(session):
            category = player_result(player, table.dealer_score)
            multiplier = MULTIPLIERS.get(category, 0)
            lines.append(
                SettlementLine(
                    participant_id=player.id,
                    name=player.name,
                    stake=player.bet,
                    payout=payout_for(player.bet, multiplier),
                    category=category,
                    reason=f"Blackjack {category.value}",
                )
            )
        return lines

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        table: BlackjackTable = session.state
        records: List[OutcomeRecord] = []
        by_id = {line.participant_id: line for line in lines}
        for player in self._players(session):
            line = by_id.get(player.id)
            if line is None:
                continue
            if line.category in (Category.WIN, Category.NATURAL):
                winner = player.id
            elif line.category is Category.PUSH:
                winner = TIE_ID
            else:
                winner = HOUSE_ID
            records.append(
                self.outcome(
                    session,
                    winner_id=winner,
                    participants=[player],
                    final_score={
                        "player_hand": player.score,
                        "dealer_hand": table.dealer_score,
                        "bet_amount": player.bet,
                        "blackjack": player.natural,
                        "net": line.net,
                    },
                )
            )
        return records

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        if self.is_setup(session):
            return self._render_setup(session)
        table: BlackjackTable = session.state
        finished = session.phase in (Phase.RESOLVING, Phase.ENDED)
        if finished or table.revealed:
            dealer = f"{format_hand(table.dealer_hand)} ({table.dealer_score})"
        elif table.dealer_hand:
            dealer = f"{table.dealer_hand[0]} ??"
        else:
            dealer = "-"
        body = [f"Dealer: {dealer}"]
        for player in self._players(session):
            status = ""
            if player.busted:
                status = " BUST"
            elif player.natural:
                status = " BLACKJACK"
            elif player.stood:
                status = " stand"
            if finished:
                status += f" [{player_result(player, table.dealer_score).value}]"
            body.append(f"{player.name}: {format_hand(player.hand)} ({player.score}) bet {player.bet}{status}")

        fields = {}
        actor = self.next_actor(session) if session.phase is Phase.ACTIVE else None
        if actor is not None:
            current = session.participant(actor)
            fields["Turn"] = current.name if current else actor
        choices: List[Choice] = []
        if session.phase is Phase.ACTIVE and actor is not None:
            legal = set(self.legal_actions(session, actor))
            for verb, label in (("hit", "Hit"), ("stand", "Stand"), ("double", "Double Down")):
                choice_id = self.action_id(verb)
                choices.append(Choice(id=choice_id, label=label, disabled=choice_id not in legal))
            if session.mode == "multiplayer":
                choices.append(Choice(id=self.action_id("view"), label="View hand"))
        if viewer is not None:
            mine = session.participant(viewer)
            if isinstance(mine, BlackjackPlayer):
                fields["Your hand"] = f"{format_hand(mine.hand)} ({mine.score})"
        return RenderedView(title="Blackjack", body=body, fields=fields, choices=choices, private=viewer is not None)

    def _render_setup(self, session: Session) -> RenderedView:
        setup: BlackjackSetup = session.state
        if setup.mode is None:
            return RenderedView(
                title="Blackjack setup",
                body=["Choose how you want to play."],
                choices=[
                    Choice(id=self.action_id("mode", "single"), label="Single player"),
                    Choice(id=self.action_id("mode", "player"), label="Multiplayer"),
                    Choice(id=self.action_id("mode", "dealer"), label="Multiplayer (you deal)"),
                ],
            )
        if setup.bet is None:
            return RenderedView(
                title="Blackjack setup",
                body=[f"Mode: {setup.mode}. Choose your bet."],
                choices=self.bet_choices("bet"),
            )
        return RenderedView(
            title="Blackjack setup",
            body=[f"Mode: {setup.mode}, bet {setup.bet}. How long should the lobby wait?"],
            choices=[
                Choice(id=self.action_id("wait", seconds), label=f"{seconds}s")
                for seconds in self.config.lobby_wait_choices
            ],
        )

    def render_lobby(self, lobby: Lobby, time_left: int) -> RenderedView:
        mode = lobby.options.get("mode", "player")
        lines = [f"{entry.name}: {entry.bet} coins" for entry in lobby.entries]
        choices = [Choice(id=self.action_id("join", amount), label=f"Join ({amount})") for amount in self.config.bet_amounts]
        choices.append(Choice(id=self.action_id("start"), label="Start now", disabled=not lobby.quorum_met))
        choices.append(Choice(id=self.action_id("cancel"), label="Cancel"))
        return RenderedView(
            title="Blackjack lobby" + (" (dealer mode)" if mode == "dealer" else ""),
            body=lines,
            fields={
                "Players": f"{len(lobby.entries)}/{lobby.max_players}",
                "Starts in": f"{time_left}s",
                "Pot": str(lobby.pot),
            },
            choices=choices,
        )
