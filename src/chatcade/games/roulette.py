"""European roulette with a shared betting window per channel."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from ..core.errors import ValidationError
from ..core.fsm import ActionResult, ParsedAction, Phase, Session
from ..core.rulesets import ROULETTE_BETS, WHEEL_ORDER, RouletteBetType, number_color
from ..core.schemas import ActionEvent, Choice, OutcomeRecord, RenderedView
from ..core.settlement import Category, SettlementLine, payout_for
from .base import HOUSE_ID, sanitize_name
from .betting import BettingWindowGame

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class RouletteBet:
    participant_id: str
    name: str
    bet_type: str
    amount: int
    target: Optional[int] = None

    @property
    def spec(self) -> RouletteBetType:
        return ROULETTE_BETS[self.bet_type]

    @property
    def label(self) -> str:
        if self.bet_type == "straight":
            return f"number {self.target}"
        return self.spec.label

    def wins(self, number: int) -> bool:
        return self.spec.wins(number, self.target)

    def payout(self, number: int) -> int:
        return payout_for(self.amount, self.spec.multiplier) if self.wins(number) else 0


@dataclass
class RouletteTable:
    closes_at: float
    bets: List[RouletteBet] = field(default_factory=list)
    winning_number: Optional[int] = None
    frame: int = 0
    frames: int = 0
    ball_position: Optional[int] = None

    def bets_for(self, participant_id: str) -> List[RouletteBet]:
        return [bet for bet in self.bets if bet.participant_id == participant_id]


def spin_position(winning_number: int, frame: int, frames: int) -> int:
    """Wheel number under the ball ``frames - frame`` steps before it settles.

    >>> spin_position(7, 8, 8)
    7
    """
    target = WHEEL_ORDER.index(winning_number)
    remaining = max(0, frames - frame)
    return WHEEL_ORDER[(target + remaining * 3) % len(WHEEL_ORDER)]


class RouletteGame(BettingWindowGame):
    kind = "roulette"
    prefix = "roulette"
    title = "Roulette"

    def session_key(self, channel_id: str) -> str:
        return f"roulette_{channel_id}_{self.timestamp_ms()}"

    def new_table(self, closes_at: float) -> RouletteTable:
        return RouletteTable(closes_at=closes_at)

    # ------------------------------------------------------------------
    # Spinning
    # ------------------------------------------------------------------

    async def close_betting(self, session: Session) -> None:
        """End the betting window: spin, or finish quietly with no bets."""
        if session.phase is not Phase.BETTING or not self.is_live(session):
            return
        table: RouletteTable = session.state
        if not table.bets:
            await self.finish_without_bets(session)
            return
        session.advance(Phase.ACTIVE)
        table.winning_number = self.rng.randint(0, 36)
        table.frames = max(1, self.config.spin_frames)
        table.frame = 0
        table.ball_position = spin_position(table.winning_number, 0, table.frames)
        LOGGER.info("roulette.spin", session_key=session.session_key, bets=len(table.bets))
        await self.services.publish(session)
        self._schedule_frame(session)

    def _schedule_frame(self, session: Session) -> None:
        table: RouletteTable = session.state
        progress = table.frame / table.frames
        # The ball slows down: each frame waits longer than the last.
        interval = self.config.tick_interval * (0.2 + progress * 0.8)
        self.start_timer(session, self.spin_step, interval=interval)

    async def spin_step(self, session: Session) -> bool:
        table: RouletteTable = session.state
        if session.phase is not Phase.ACTIVE or table.winning_number is None:
            return False
        table.frame += 1
        table.ball_position = spin_position(table.winning_number, table.frame, table.frames)
        if table.frame >= table.frames:
            await self.services.coordinator.finish(self, session)
            await self.services.publish(session)
            return False
        await self.services.publish(session)
        self._schedule_frame(session)
        return False

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------

    def _parse(self, action: ParsedAction) -> RouletteBet:
        bet_type = action.arg(0)
        if bet_type not in ROULETTE_BETS:
            raise ValidationError(f"Unknown bet type {bet_type!r}", user_message="Unknown bet type.")
        if bet_type == "straight":
            target = action.int_arg(1)
            if not 0 <= target <= 36:
                raise ValidationError("Pick a number between 0 and 36.")
            return RouletteBet("", "", bet_type, self.parse_bet(action.arg(2)), target)
        return RouletteBet("", "", bet_type, self.parse_bet(action.arg(1)))

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name == "bets":
            return ActionResult(private_view=True)
        if action.name != "bet":
            raise ValidationError("That action is not available.")
        bet = self._parse(action)
        bet.participant_id = actor_id
        bet.name = sanitize_name(event.display_name)
        total = await self.accept_stake(session, actor_id, bet.name, bet.amount, f"Roulette bet: {bet.label}")
        table: RouletteTable = session.state
        table.bets.append(bet)
        LOGGER.info(
            "roulette.bet",
            session_key=session.session_key,
            participant=actor_id,
            bet_type=bet.bet_type,
            target=bet.target,
            amount=bet.amount,
        )
        return ActionResult(message=f"Bet placed: {bet.amount} on {bet.label}. Your total: {total}.")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def settle(self, session: Session) -> List[SettlementLine]:
        table: RouletteTable = session.state
        if table.winning_number is None:
            return []
        number = table.winning_number
        lines = []
        for bet in table.bets:
            payout = bet.payout(number)
            lines.append(
                SettlementLine(
                    participant_id=bet.participant_id,
                    name=bet.name,
                    stake=bet.amount,
                    payout=payout,
                    category=Category.WIN if payout else Category.LOSS,
                    reason=f"Roulette winnings: {bet.label}",
                )
            )
        return lines

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        table: RouletteTable = session.state
        if table.winning_number is None:
            return []
        stakes: Dict[str, int] = defaultdict(int)
        payouts: Dict[str, int] = defaultdict(int)
        for line in lines:
            stakes[line.participant_id] += line.stake
            payouts[line.participant_id] += line.payout
        records = []
        for participant in session.participants:
            net = payouts[participant.id] - stakes[participant.id]
            records.append(
                self.outcome(
                    session,
                    winner_id=participant.id if net > 0 else HOUSE_ID,
                    participants=[participant],
                    final_score={
                        "winning_number": table.winning_number,
                        "color": number_color(table.winning_number),
                        "total_bet": stakes[participant.id],
                        "total_payout": payouts[participant.id],
                        "net": net,
                    },
                )
            )
        return records

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        table: RouletteTable = session.state
        fields: Dict[str, str] = {}
        body: List[str] = []
        choices: List[Choice] = []
        if session.phase is Phase.BETTING:
            fields["Betting closes in"] = f"{self.time_left(session)}s"
            fields["Players"] = str(len(session.participants))
            body.append("Outside bets pay 1:1, a single number pays 35:1.")
            body.append("Number bets: roulette:bet:straight:<0-36>:<amount>")
            for name, spec in ROULETTE_BETS.items():
                if name == "straight":
                    continue
                for amount in self.config.bet_amounts:
                    choices.append(Choice(id=self.action_id("bet", name, amount), label=f"{spec.label} {amount}"))
            choices.append(Choice(id=self.action_id("bets"), label="My bets"))
        elif session.phase is Phase.ACTIVE:
            position = table.ball_position
            body.append(f"The wheel is spinning... {position} ({number_color(position)})" if position is not None else "Spinning...")
        else:
            if table.winning_number is None:
                body.append(session.status or "No bets were placed.")
            else:
                number = table.winning_number
                body.append(f"The ball landed on {number} ({number_color(number)})!")
                totals: Dict[str, int] = defaultdict(int)
                for bet in table.bets:
                    totals[bet.participant_id] += bet.payout(number) - bet.amount
                for participant in session.participants:
                    net = totals[participant.id]
                    body.append(f"{participant.name}: {'+' if net > 0 else ''}{net}")
        if viewer is not None:
            mine = table.bets_for(viewer)
            fields["Your bets"] = ", ".join(f"{b.amount} on {b.label}" for b in mine) or "none"
        return RenderedView(title="Roulette", body=body, fields=fields, choices=choices, private=viewer is not None)
