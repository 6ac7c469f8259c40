"""Real-time pong on a small text field, against a person or the AI paddle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import structlog

from ..core.errors import ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.rulesets import PONG_HEIGHT, PONG_PADDLE_START, PONG_WIDTH, get_rewards
from ..core.schemas import ActionEvent, ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine
from ..utils.rng import RandomSource
from .base import HOUSE_ID, GameDefinition, sanitize_name

LOGGER = structlog.get_logger(__name__)

AI_ID = "ai_player"
PADDLE_MIN = 1
PADDLE_MAX = PONG_HEIGHT - 2


@dataclass
class PongPlayer(Participant):
    paddle: int = PONG_PADDLE_START
    score: int = 0

    def move(self, delta: int) -> None:
        self.paddle = max(PADDLE_MIN, min(PADDLE_MAX, self.paddle + delta))

    def covers(self, y: int) -> bool:
        return abs(y - self.paddle) <= 1


@dataclass
class Ball:
    x: int = PONG_WIDTH // 2
    y: int = PONG_HEIGHT // 2
    dx: int = 1
    dy: int = 1

    def serve(self, rng: RandomSource) -> None:
        self.x = PONG_WIDTH // 2
        self.y = PONG_HEIGHT // 2
        self.dx = 1 if rng.randint(0, 1) else -1
        self.dy = 1 if rng.randint(0, 1) else -1


@dataclass
class PongState:
    ball: Ball
    countdown: int = 3
    rallies: int = 0


def track_ball(paddle: PongPlayer, ball: Ball) -> None:
    """AI paddle follows the ball one row per tick."""
    if ball.y > paddle.paddle:
        paddle.move(1)
    elif ball.y < paddle.paddle:
        paddle.move(-1)


def step_ball(ball: Ball, left: PongPlayer, right: PongPlayer) -> Optional[PongPlayer]:
    """Advance the ball one tick and return the player who scored, if any.

    >>> left, right = PongPlayer("a", "A"), PongPlayer("b", "B")
    >>> ball = Ball(x=1, y=4, dx=-1, dy=0)
    >>> step_ball(ball, left, right) is None, ball.dx, ball.x
    (True, 1, 2)
    """
    ball.x += ball.dx
    ball.y += ball.dy
    if ball.y <= 0 or ball.y >= PONG_HEIGHT - 1:
        ball.dy *= -1
        ball.y = max(0, min(PONG_HEIGHT - 1, ball.y))

    if ball.x <= 1 and ball.dx < 0:
        if left.covers(ball.y):
            ball.dx *= -1
            ball.x = 2
    elif ball.x >= PONG_WIDTH - 2 and ball.dx > 0:
        if right.covers(ball.y):
            ball.dx *= -1
            ball.x = PONG_WIDTH - 3

    if ball.x < 0:
        right.score += 1
        return right
    if ball.x >= PONG_WIDTH:
        left.score += 1
        return left
    return None


class PongGame(GameDefinition):
    kind = "pong"
    prefix = "pong"
    title = "Pong"
    lookup = Lookup.EMBEDDED
    embeds_key = True
    turn_based = False

    def action_for(self, session: Session, verb: str) -> str:
        return self.action_id(session.session_key, verb)

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        key = f"pong_{user_id}_{self.timestamp_ms()}"
        self.ensure_free(key)
        session = self.new_session(
            key,
            channel_id=request.channel_id,
            creator_id=user_id,
            server_id=request.server_id,
            participants=[PongPlayer(user_id, sanitize_name(request.display_name))],
            state=PongState(ball=Ball(), countdown=self.config.pong_countdown),
        )
        self.register(session)
        session.status = "Waiting for an opponent..."
        if request.options.get("ai"):
            self._seat(session, PongPlayer(AI_ID, "AI", is_bot=True), mode="ai")
        return self.respond(session)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name == "join":
            if session.phase is not Phase.WAITING or len(session.participants) > 1:
                raise ValidationError("Game is full!")
            if session.has_participant(actor_id):
                raise ValidationError("You are already in this game!")
            self._seat(session, PongPlayer(actor_id, sanitize_name(event.display_name)), mode="pvp")
            return ActionResult()
        if action.name == "ai":
            if session.phase is not Phase.WAITING or len(session.participants) > 1:
                raise ValidationError("Game is full!")
            if actor_id != session.creator_id:
                raise ValidationError("Only the game creator can start AI mode!")
            self._seat(session, PongPlayer(AI_ID, "AI", is_bot=True), mode="ai")
            return ActionResult()
        if action.name in ("up", "down"):
            if session.phase is not Phase.ACTIVE:
                raise ValidationError("Game is not active!")
            player = session.participant(actor_id)
            if not isinstance(player, PongPlayer) or player.is_bot:
                raise ValidationError("You are not in this game or cannot control AI paddle!")
            player.move(-1 if action.name == "up" else 1)
            return ActionResult()
        raise ValidationError("That action is not available.")

    def _seat(self, session: Session, opponent: PongPlayer, *, mode: str) -> None:
        opponent.paddle = PONG_PADDLE_START
        session.participants.append(opponent)
        if not opponent.is_bot:
            self.services.store.index_participant(session, opponent.id)
        session.mode = mode
        state: PongState = session.state
        state.ball.serve(self.rng)
        session.status = f"Game starts in {state.countdown}..."
        LOGGER.info("pong.matched", session_key=session.session_key, opponent=opponent.id, mode=mode)
        self.start_timer(session, self.countdown_step)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def countdown_step(self, session: Session) -> bool:
        state: PongState = session.state
        state.countdown -= 1
        if state.countdown > 0:
            session.status = f"Game starts in {state.countdown}..."
            await self.services.publish(session)
            return True
        session.status = None
        session.advance(Phase.ACTIVE)
        await self.services.publish(session)
        self.start_timer(session, self.ball_step)
        return False

    async def ball_step(self, session: Session) -> bool:
        if session.phase is not Phase.ACTIVE:
            return False
        state: PongState = session.state
        left, right = self._players(session)
        if right.is_bot:
            track_ball(right, state.ball)
        scorer = step_ball(state.ball, left, right)
        if scorer is not None:
            state.rallies += 1
            state.ball.serve(self.rng)
            LOGGER.debug("pong.point", session_key=session.session_key, scorer=scorer.id, left=left.score, right=right.score)
        if self.is_terminal(session):
            await self.services.coordinator.finish(self, session)
            await self.services.publish(session)
            return False
        await self.services.publish(session)
        return True

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _players(session: Session) -> List[PongPlayer]:
        return [p for p in session.participants if isinstance(p, PongPlayer)]

    def winner(self, session: Session) -> Optional[PongPlayer]:
        for player in self._players(session):
            if player.score >= self.config.pong_target_score:
                return player
        return None

    def is_terminal(self, session: Session) -> bool:
        return self.winner(session) is not None

    def is_perfect(self, session: Session) -> bool:
        winner = self.winner(session)
        return winner is not None and all(p.score == 0 for p in self._players(session) if p is not winner)

    def settle(self, session: Session) -> List[SettlementLine]:
        rewards = get_rewards(self.kind)
        winner = self.winner(session)
        perfect = self.is_perfect(session)
        lines = []
        for player in self._players(session):
            if player.is_bot:
                continue
            if player is winner:
                category = Category.PERFECT if perfect else Category.WIN
                amount = rewards.perfect if perfect else rewards.win
                reason = "Pong perfect" if perfect else "Pong win"
            else:
                category, amount, reason = Category.LOSS, rewards.participation, "Pong participation"
            lines.append(SettlementLine(player.id, player.name, 0, amount, category, reason, award=True))
        return lines

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        players = self._players(session)
        if len(players) < 2:
            return []
        winner = self.winner(session)
        winner_id = HOUSE_ID if winner is None or winner.is_bot else winner.id
        return [
            self.outcome(
                session,
                winner_id=winner_id,
                final_score={
                    "player1_score": players[0].score,
                    "player2_score": players[1].score,
                    "perfect_game": self.is_perfect(session),
                },
            )
        ]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render_field(self, session: Session) -> List[str]:
        state: PongState = session.state
        grid = [[" "] * PONG_WIDTH for _ in range(PONG_HEIGHT)]
        players = self._players(session)
        for column, player in zip((0, PONG_WIDTH - 1), players):
            for row in (player.paddle - 1, player.paddle, player.paddle + 1):
                grid[row][column] = "|"
        if session.phase is Phase.ACTIVE and 0 <= state.ball.x < PONG_WIDTH:
            grid[state.ball.y][state.ball.x] = "o"
        border = "+" + "-" * PONG_WIDTH + "+"
        return [border] + ["|" + "".join(row) + "|" for row in grid] + [border]

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        players = self._players(session)
        fields = {}
        if len(players) == 2:
            fields["Score"] = f"{players[0].name} {players[0].score} - {players[1].score} {players[1].name}"
        choices: List[Choice] = []
        winner = self.winner(session)
        if winner is not None:
            fields["Winner"] = winner.name + (" (perfect game!)" if self.is_perfect(session) else "")
        elif session.phase is Phase.WAITING and len(players) == 1:
            choices = [
                Choice(id=self.action_for(session, "join"), label="Join Game"),
                Choice(id=self.action_for(session, "ai"), label="Play vs AI"),
            ]
        else:
            active = session.phase is Phase.ACTIVE
            choices = [
                Choice(id=self.action_for(session, "up"), label="Up", disabled=not active),
                Choice(id=self.action_for(session, "down"), label="Down", disabled=not active),
            ]
        body = self.render_field(session)
        if session.status:
            body.insert(0, session.status)
        return RenderedView(title="Pong", body=body, fields=fields, choices=choices)
