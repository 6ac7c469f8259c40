"""Uno Express: a fast shedding card game for 2-6 players in one channel."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session, next_eligible
from ..core.lobby import Lobby
from ..core.schemas import ActionEvent, ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import SettlementLine
from .base import GameDefinition, sanitize_name

LOGGER = structlog.get_logger(__name__)

COLORS = ("RED", "YELLOW", "BLUE", "GREEN")
WILD = "WILD"
NUMBER = "NUMBER"
SKIP = "SKIP"
EXPRESS_WILD = "EXPRESS_WILD"
HAND_SIZE = 7
MIN_PLAYERS = 2
MAX_PLAYERS = 6
COLOR_SYMBOLS = {"RED": "🔴", "YELLOW": "🟡", "BLUE": "🔵", "GREEN": "🟢", WILD: "⚫"}


@dataclass(frozen=True)
class UnoCard:
    color: str
    type: str
    value: Optional[int] = None

    @property
    def is_wild(self) -> bool:
        return self.color == WILD

    def label(self) -> str:
        symbol = COLOR_SYMBOLS.get(self.color, "")
        if self.type == NUMBER:
            return f"{symbol} {self.value}"
        if self.type == SKIP:
            return f"{symbol} Skip"
        if self.type == EXPRESS_WILD:
            return "Express Wild"
        return "Wild"


def build_deck() -> List[UnoCard]:
    """One zero and two of 1-9 per colour, two skips per colour, four of each wild.

    >>> len(build_deck())
    92
    """
    deck: List[UnoCard] = []
    for color in COLORS:
        for number in range(10):
            deck.append(UnoCard(color, NUMBER, number))
            if number:
                deck.append(UnoCard(color, NUMBER, number))
        deck.extend([UnoCard(color, SKIP), UnoCard(color, SKIP)])
    for _ in range(4):
        deck.append(UnoCard(WILD, WILD))
        deck.append(UnoCard(WILD, EXPRESS_WILD))
    return deck


def can_play(card: UnoCard, top: UnoCard, current_color: Optional[str]) -> bool:
    """Wilds always play; otherwise match the colour, the action type or the number.

    >>> top = UnoCard("RED", NUMBER, 5)
    >>> can_play(UnoCard("BLUE", NUMBER, 5), top, "RED")
    True
    >>> can_play(UnoCard("BLUE", SKIP), top, "RED")
    False
    """
    if card.is_wild:
        return True
    if card.color == current_color:
        return True
    if card.type == top.type and card.type != NUMBER:
        return True
    return card.type == NUMBER and top.type == NUMBER and card.value == top.value


@dataclass
class UnoPlayer(Participant):
    hand: List[UnoCard] = field(default_factory=list)

    @property
    def has_uno(self) -> bool:
        return len(self.hand) == 1


@dataclass
class UnoTable:
    deck: List[UnoCard]
    discard: List[UnoCard] = field(default_factory=list)
    current_color: Optional[str] = None
    choosing_color: bool = False
    penalty_pending: bool = False
    winner_id: Optional[str] = None
    turns: int = 0

    @property
    def top(self) -> UnoCard:
        return self.discard[-1]


class UnoExpressGame(GameDefinition):
    kind = "unoexpress"
    prefix = "uno"
    title = "Uno Express"
    lookup = Lookup.CHANNEL
    turn_actions = frozenset({"play", "draw", "color"})
    lobby_actions = frozenset({"join", "start", "cancel"})

    @staticmethod
    def game_key(channel_id: str) -> str:
        return f"unoexpress_{channel_id}"

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def start(self, request: StartRequest) -> ActionResponse:
        key = self.game_key(request.channel_id)
        if self.services.store.has(key):
            raise KeyCollision(f"{key} exists", user_message="There's already an Uno Express game in this channel!")
        lobby = Lobby(
            channel_id=request.channel_id,
            game_kind=self.kind,
            creator_id=request.requester_id,
            creator_name=sanitize_name(request.display_name),
            wait_seconds=self.config.default_lobby_wait,
            started_at=self.now(),
            min_players=MIN_PLAYERS,
            max_players=min(MAX_PLAYERS, self.config.max_lobby_players),
            server_id=request.server_id,
        )
        await self.services.lobbies.open(lobby)
        return ActionResponse(
            ok=True,
            session_key=key,
            view=self.render_lobby(lobby, lobby.wait_seconds),
            message="Uno Express lobby open. Need at least 2 players.",
        )

    async def handle_lobby_action(self, action: ParsedAction, event: ActionEvent) -> ActionResponse:
        lobbies = self.services.lobbies
        if action.name == "join":
            lobby = await lobbies.join(self.kind, event.channel_id, event.actor_id, sanitize_name(event.display_name))
            return ActionResponse(ok=True, view=self.render_lobby(lobby, lobbies.time_left(lobby)), message="You joined!")
        if action.name == "start":
            outcome = await lobbies.start_now(self.kind, event.channel_id, event.actor_id)
            return ActionResponse(ok=outcome is not None, message="Dealing the cards!", ephemeral=True)
        if action.name == "cancel":
            outcome = await lobbies.cancel(self.kind, event.channel_id, event.actor_id)
            return ActionResponse(ok=outcome is not None, message="Game cancelled.")
        raise ValidationError("That lobby action is not supported.")

    async def start_from_lobby(self, lobby: Lobby) -> Session:
        key = self.game_key(lobby.channel_id)
        self.ensure_free(key)
        table = UnoTable(deck=self.rng.shuffle(build_deck()))
        players = [UnoPlayer(entry.participant_id, entry.name) for entry in lobby.entries]
        for player in players:
            player.hand = [table.deck.pop() for _ in range(HAND_SIZE)]
        # The first face-up card is never a wild; wilds go back under the deck.
        while table.deck[-1].is_wild:
            table.deck.insert(0, table.deck.pop())
        table.discard.append(table.deck.pop())
        table.current_color = table.top.color
        session = self.new_session(
            key,
            channel_id=lobby.channel_id,
            creator_id=lobby.creator_id,
            server_id=lobby.server_id,
            participants=players,
            phase=Phase.ACTIVE,
            mode="multiplayer",
            state=table,
        )
        self.register(session)
        self.services.coordinator.start_turns(self, session)
        LOGGER.info("uno.dealt", session_key=key, players=len(players), top=table.top.label())
        return session

    # ------------------------------------------------------------------
    # Side actions
    # ------------------------------------------------------------------

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name != "hand":
            raise ValidationError("That action is not available.")
        if not session.has_participant(actor_id):
            raise ValidationError("You are not part of this game.")
        return ActionResult(private_view=True)

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        if session.phase is not Phase.ACTIVE or self.next_actor(session) != actor_id:
            return []
        table: UnoTable = session.state
        if table.choosing_color:
            return [self.action_id("color", color) for color in COLORS]
        player = self._player(session, actor_id)
        actions = [
            self.action_id("play", index)
            for index, card in enumerate(player.hand)
            if can_play(card, table.top, table.current_color)
        ]
        actions.append(self.action_id("draw"))
        return actions

    def is_legal(self, session: Session, actor_id: str, action: ParsedAction) -> bool:
        if action.raw in self.legal_actions(session, actor_id):
            return True
        table: UnoTable = session.state
        if action.name == "play" and not table.choosing_color and self.next_actor(session) == actor_id:
            raise ValidationError("You can't play that card!")
        return False

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        table: UnoTable = session.state
        player = self._player(session, actor_id)
        table.turns += 1

        if action.name == "draw":
            player.hand.append(self._draw(table))
            return ActionResult(end_turn=True, message=f"{player.name} drew a card.")

        if action.name == "color":
            table.current_color = action.arg(0)
            table.choosing_color = False
            message = f"{player.name} chose {table.current_color}."
            if table.penalty_pending:
                table.penalty_pending = False
                victim = self._following(session)
                if victim is not None:
                    victim.hand.append(self._draw(table))
                    message += f" {victim.name} draws 1!"
            return ActionResult(end_turn=True, message=message)

        card = player.hand.pop(action.int_arg(0))
        table.discard.append(card)
        if not player.hand:
            table.winner_id = player.id
            return ActionResult(end_turn=True, message=f"{player.name} played their last card!")
        if card.is_wild:
            table.current_color = None
            table.choosing_color = True
            table.penalty_pending = card.type == EXPRESS_WILD
            return ActionResult(message="Choose a colour.")
        table.current_color = card.color
        message = "UNO!" if player.has_uno else None
        return ActionResult(end_turn=True, skip=1 if card.type == SKIP else 0, message=message)

    def is_terminal(self, session: Session) -> bool:
        table: UnoTable = session.state
        return table.winner_id is not None

    def settle(self, session: Session) -> List[SettlementLine]:
        return []

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        table: UnoTable = session.state
        cards_left: Dict[str, int] = {p.name: len(self._player(session, p.id).hand) for p in session.participants}
        return [
            self.outcome(
                session,
                winner_id=table.winner_id,
                final_score={"cards_left": cards_left, "turns": table.turns},
            )
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _player(session: Session, participant_id: str) -> UnoPlayer:
        player = session.participant(participant_id)
        assert isinstance(player, UnoPlayer)
        return player

    def _following(self, session: Session) -> Optional[UnoPlayer]:
        index = next_eligible(
            len(session.participants),
            session.turn_index,
            lambda i: self.eligible(session, session.participants[i]),
        )
        if index is None or index == session.turn_index:
            return None
        player = session.participants[index]
        return player if isinstance(player, UnoPlayer) else None

    def _draw(self, table: UnoTable) -> UnoCard:
        if not table.deck:
            # Reshuffle everything under the top card back into the deck.
            if len(table.discard) <= 1:
                raise ValidationError("Deck is empty!")
            top = table.discard.pop()
            table.deck = self.rng.shuffle(table.discard)
            table.discard = [top]
            LOGGER.info("uno.reshuffled", cards=len(table.deck))
        return table.deck.pop()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        table: UnoTable = session.state
        body = []
        for participant in session.participants:
            player = self._player(session, participant.id)
            marker = " 🚨 UNO!" if player.has_uno else ""
            body.append(f"{player.name}: {len(player.hand)} cards{marker}")
        fields = {
            "Top card": table.top.label(),
            "Colour": table.current_color or "choosing...",
            "Deck": str(len(table.deck)),
        }
        choices: List[Choice] = []
        if table.winner_id is not None:
            winner = session.participant(table.winner_id)
            fields["Winner"] = winner.name if winner else table.winner_id
        else:
            actor = self.next_actor(session)
            current = session.participant(actor) if actor else None
            if current is not None:
                fields["Turn"] = current.name
            if table.choosing_color:
                choices = [Choice(id=self.action_id("color", color), label=color.title()) for color in COLORS]
            else:
                choices = [
                    Choice(id=self.action_id("draw"), label="Draw"),
                    Choice(id=self.action_id("hand"), label="View hand"),
                ]
        if viewer is not None and session.has_participant(viewer):
            mine = self._player(session, viewer)
            playable = viewer == self.next_actor(session) and not table.choosing_color
            fields["Your hand"] = ", ".join(card.label() for card in mine.hand) or "-"
            choices = [
                Choice(
                    id=self.action_id("play", index),
                    label=card.label(),
                    disabled=not playable or not can_play(card, table.top, table.current_color),
                )
                for index, card in enumerate(mine.hand)
            ]
        return RenderedView(title="Uno Express", body=body, fields=fields, choices=choices, private=viewer is not None)
