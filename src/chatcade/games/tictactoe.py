"""Tic-tac-toe between two participants or against a simple bot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.rulesets import get_rewards
from ..core.schemas import ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine
from ..utils.rng import RandomSource
from .base import HOUSE_ID, TIE_ID, GameDefinition, sanitize_name

LOGGER = structlog.get_logger(__name__)

BOT_ID = "bot"
WIN_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
)
CENTER = 4


@dataclass
class TicTacToePlayer(Participant):
    mark: str = "X"


@dataclass
class Board:
    cells: List[Optional[str]] = field(default_factory=lambda: [None] * 9)
    moves: int = 0

    @property
    def full(self) -> bool:
        return all(cell is not None for cell in self.cells)

    def free(self) -> List[int]:
        return [i for i, cell in enumerate(self.cells) if cell is None]


def winning_mark(cells: Sequence[Optional[str]]) -> Optional[str]:
    """Mark that completed a line, if any.

    >>> winning_mark(["X", "X", "X", None, "O", "O", None, None, None])
    'X'
    >>> winning_mark([None] * 9) is None
    True
    """
    for a, b, c in WIN_LINES:
        if cells[a] is not None and cells[a] == cells[b] == cells[c]:
            return cells[a]
    return None


def find_winning_move(cells: Sequence[Optional[str]], mark: str) -> Optional[int]:
    for index, cell in enumerate(cells):
        if cell is not None:
            continue
        trial = list(cells)
        trial[index] = mark
        if winning_mark(trial) == mark:
            return index
    return None


def bot_move(cells: Sequence[Optional[str]], bot_mark: str, human_mark: str, rng: RandomSource) -> int:
    """Win if possible, else block, else take the centre, else any free cell."""
    move = find_winning_move(cells, bot_mark)
    if move is None:
        move = find_winning_move(cells, human_mark)
    if move is None and cells[CENTER] is None:
        move = CENTER
    if move is None:
        move = rng.choice([i for i, cell in enumerate(cells) if cell is None])
    return move


class TicTacToeGame(GameDefinition):
    kind = "tictactoe"
    prefix = "ttt"
    title = "Tic-Tac-Toe"
    lookup = Lookup.PARTICIPANT
    turn_actions = frozenset({"move"})

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        opponent_id = request.opponent_id
        if opponent_id == user_id:
            raise ValidationError("You can't play against yourself!")
        for participant_id in filter(None, (user_id, opponent_id)):
            if self.services.store.find_by_participant(participant_id, self.kind) is not None:
                raise KeyCollision(
                    f"{participant_id} already playing",
                    user_message="One of the players is already in a tic-tac-toe game!",
                )
        players: List[Participant] = [TicTacToePlayer(user_id, sanitize_name(request.display_name), mark="X")]
        if opponent_id:
            players.append(TicTacToePlayer(opponent_id, sanitize_name(request.opponent_name or opponent_id), mark="O"))
            key = f"{user_id}_{opponent_id}"
        else:
            players.append(TicTacToePlayer(BOT_ID, "Bot", is_bot=True, mark="O"))
            key = user_id
        self.ensure_free(key)
        session = self.new_session(
            key,
            channel_id=request.channel_id,
            creator_id=user_id,
            server_id=request.server_id,
            participants=players,
            phase=Phase.ACTIVE,
            mode="pvp" if opponent_id else "bot",
            state=Board(),
        )
        self.register(session)
        self.services.coordinator.start_turns(self, session)
        return self.respond(session)

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        if session.phase is not Phase.ACTIVE or self.next_actor(session) != actor_id:
            return []
        board: Board = session.state
        return [self.action_id("move", index) for index in board.free()]

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        board: Board = session.state
        player = session.participant(actor_id)
        assert isinstance(player, TicTacToePlayer)
        board.cells[action.int_arg(0)] = player.mark
        board.moves += 1
        if session.mode == "bot" and not self.is_terminal(session):
            bot = session.participant(BOT_ID)
            assert isinstance(bot, TicTacToePlayer)
            move = bot_move(board.cells, bot.mark, player.mark, self.rng)
            board.cells[move] = bot.mark
            board.moves += 1
        return ActionResult(end_turn=True)

    def is_terminal(self, session: Session) -> bool:
        board: Board = session.state
        return winning_mark(board.cells) is not None or board.full

    def winner(self, session: Session) -> Optional[TicTacToePlayer]:
        mark = winning_mark(session.state.cells)
        for participant in session.participants:
            if isinstance(participant, TicTacToePlayer) and participant.mark == mark:
                return participant
        return None

    def settle(self, session: Session) -> List[SettlementLine]:
        rewards = get_rewards(self.kind)
        winner = self.winner(session)
        lines = []
        for participant in session.participants:
            if participant.is_bot:
                continue
            if winner is None:
                category, amount, reason = Category.PUSH, rewards.participation, "Tic-tac-toe participation"
            elif winner.id == participant.id:
                category, amount, reason = Category.WIN, rewards.win, "Tic-tac-toe win"
            else:
                category, amount, reason = Category.LOSS, rewards.participation, "Tic-tac-toe participation"
            lines.append(SettlementLine(participant.id, participant.name, 0, amount, category, reason, award=True))
        return lines

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        winner = self.winner(session)
        if winner is None:
            winner_id = TIE_ID
        elif winner.is_bot:
            winner_id = HOUSE_ID
        else:
            winner_id = winner.id
        board: Board = session.state
        return [
            self.outcome(
                session,
                winner_id=winner_id,
                final_score={"board": "".join(cell or "-" for cell in board.cells), "moves": board.moves},
            )
        ]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        board: Board = session.state
        rows = []
        for start in (0, 3, 6):
            rows.append(" | ".join(board.cells[i] or str(i + 1) for i in range(start, start + 3)))
        fields = {}
        over = self.is_terminal(session)
        if over:
            winner = self.winner(session)
            fields["Result"] = "It's a tie!" if winner is None else f"{winner.name} wins!"
        else:
            actor = self.next_actor(session)
            current = session.participant(actor) if actor else None
            if isinstance(current, TicTacToePlayer):
                fields["Turn"] = f"{current.name} ({current.mark})"
        choices = [
            Choice(
                id=self.action_id("move", index),
                label=board.cells[index] or str(index + 1),
                disabled=over or board.cells[index] is not None,
            )
            for index in range(9)
        ]
        return RenderedView(title="Tic-Tac-Toe", body=rows, fields=fields, choices=choices)
