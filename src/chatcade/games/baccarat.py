"""Punto banco baccarat with a shared betting window per channel."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from ..core.cards import Card, baccarat_total, baccarat_value, format_hand, shuffled_deck
from ..core.errors import ValidationError
from ..core.fsm import ActionResult, ParsedAction, Phase, Session
from ..core.rulesets import BACCARAT_MULTIPLIERS, BACCARAT_NATURAL
from ..core.schemas import ActionEvent, Choice, OutcomeRecord, RenderedView
from ..core.settlement import Category, SettlementLine, payout_for
from .base import HOUSE_ID, TIE_ID, sanitize_name
from .betting import BettingWindowGame

LOGGER = structlog.get_logger(__name__)

BET_TYPES: Tuple[str, ...] = ("player", "banker", "tie")


@dataclass
class BaccaratTable:
    closes_at: float
    deck: List[Card] = field(default_factory=list)
    bets: Dict[str, Dict[str, int]] = field(default_factory=dict)
    names: Dict[str, str] = field(default_factory=dict)
    player_hand: List[Card] = field(default_factory=list)
    banker_hand: List[Card] = field(default_factory=list)
    winner: Optional[str] = None

    @property
    def player_total(self) -> int:
        return baccarat_total(self.player_hand)

    @property
    def banker_total(self) -> int:
        return baccarat_total(self.banker_hand)


def banker_draws(banker_total: int, player_third: Optional[Card]) -> bool:
    """Third-card rule for the banker.

    >>> banker_draws(5, None)
    True
    >>> banker_draws(3, Card("8", "♠"))
    False
    >>> banker_draws(6, Card("7", "♠"))
    True
    """
    if player_third is None:
        return banker_total <= 5
    third = baccarat_value(player_third)
    if banker_total <= 2:
        return True
    if banker_total == 3:
        return third != 8
    if banker_total == 4:
        return 2 <= third <= 7
    if banker_total == 5:
        return 4 <= third <= 7
    if banker_total == 6:
        return third in (6, 7)
    return False


def play_coup(deck: List[Card]) -> Tuple[List[Card], List[Card]]:
    """Deal a full coup from the end of ``deck`` and return both hands."""
    player = [deck.pop(), deck.pop()]
    banker = [deck.pop(), deck.pop()]
    player_total = baccarat_total(player)
    banker_total = baccarat_total(banker)
    if player_total >= BACCARAT_NATURAL or banker_total >= BACCARAT_NATURAL:
        return player, banker
    player_third: Optional[Card] = None
    if player_total <= 5:
        player_third = deck.pop()
        player.append(player_third)
    if banker_draws(banker_total, player_third):
        banker.append(deck.pop())
    return player, banker


class BaccaratGame(BettingWindowGame):
    kind = "baccarat"
    prefix = "baccarat"
    title = "Baccarat"

    def session_key(self, channel_id: str) -> str:
        return f"baccarat_{channel_id}"

    def new_table(self, closes_at: float) -> BaccaratTable:
        return BaccaratTable(closes_at=closes_at)

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name == "bets":
            return ActionResult(private_view=True)
        if action.name != "bet":
            raise ValidationError("That action is not available.")
        bet_type = action.arg(0)
        if bet_type not in BET_TYPES:
            raise ValidationError(f"Unknown bet type {bet_type!r}", user_message="Bet on player, banker or tie.")
        amount = self.parse_bet(action.arg(1))
        name = sanitize_name(event.display_name)
        await self.accept_stake(session, actor_id, name, amount, f"Baccarat bet: {bet_type}")
        table: BaccaratTable = session.state
        mine = table.bets.setdefault(actor_id, {})
        mine[bet_type] = mine.get(bet_type, 0) + amount
        table.names[actor_id] = name
        LOGGER.info("baccarat.bet", session_key=session.session_key, participant=actor_id, bet_type=bet_type, amount=amount)
        return ActionResult(message=f"Bet placed: {amount} on {bet_type}. Your {bet_type} total: {mine[bet_type]}.")

    async def close_betting(self, session: Session) -> None:
        if session.phase is not Phase.BETTING or not self.is_live(session):
            return
        table: BaccaratTable = session.state
        if not table.bets:
            await self.finish_without_bets(session)
            return
        session.advance(Phase.ACTIVE)
        table.deck = shuffled_deck(self.rng)
        await self.services.coordinator.finish(self, session)
        await self.services.publish(session)

    async def resolve(self, session: Session) -> None:
        table: BaccaratTable = session.state
        if not table.bets:
            return
        if not table.deck:
            table.deck = shuffled_deck(self.rng)
        table.player_hand, table.banker_hand = play_coup(table.deck)
        if table.player_total > table.banker_total:
            table.winner = "player"
        elif table.banker_total > table.player_total:
            table.winner = "banker"
        else:
            table.winner = "tie"
        LOGGER.info(
            "baccarat.coup",
            session_key=session.session_key,
            player=table.player_total,
            banker=table.banker_total,
            winner=table.winner,
        )

    def settle(self, session: Session) -> List[SettlementLine]:
        table: BaccaratTable = session.state
        if table.winner is None:
            return []
        lines = []
        for participant_id, bets in table.bets.items():
            for bet_type, amount in bets.items():
                won = bet_type == table.winner
                lines.append(
                    SettlementLine(
                        participant_id=participant_id,
                        name=table.names.get(participant_id, participant_id),
                        stake=amount,
                        payout=payout_for(amount, BACCARAT_MULTIPLIERS[bet_type]) if won else 0,
                        category=Category.WIN if won else Category.LOSS,
                        reason=f"Baccarat winnings: {bet_type}",
                    )
                )
        return lines

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        table: BaccaratTable = session.state
        if table.winner is None:
            return []
        nets: Dict[str, int] = defaultdict(int)
        for line in lines:
            nets[line.participant_id] += line.net
        records = []
        for participant in session.participants:
            net = nets[participant.id]
            if net > 0:
                winner = participant.id
            elif net == 0:
                winner = TIE_ID
            else:
                winner = HOUSE_ID
            records.append(
                self.outcome(
                    session,
                    winner_id=winner,
                    participants=[participant],
                    final_score={
                        "player_total": table.player_total,
                        "banker_total": table.banker_total,
                        "result": table.winner,
                        "bets": table.bets.get(participant.id, {}),
                        "net": net,
                    },
                )
            )
        return records

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        table: BaccaratTable = session.state
        body: List[str] = []
        fields: Dict[str, str] = {}
        choices: List[Choice] = []
        if session.phase is Phase.BETTING:
            fields["Betting closes in"] = f"{self.time_left(session)}s"
            body.append("Player pays 1:1, banker pays 0.95:1, tie pays 8:1.")
            for bet_type in BET_TYPES:
                for amount in self.config.bet_amounts:
                    choices.append(Choice(id=self.action_id("bet", bet_type, amount), label=f"{bet_type.title()} {amount}"))
            choices.append(Choice(id=self.action_id("bets"), label="My bets"))
        elif table.winner is not None:
            body.append(f"Player: {format_hand(table.player_hand)} ({table.player_total})")
            body.append(f"Banker: {format_hand(table.banker_hand)} ({table.banker_total})")
            body.append("Tie!" if table.winner == "tie" else f"{table.winner.title()} wins!")
        else:
            body.append(session.status or "Dealing...")
        if viewer is not None:
            mine = table.bets.get(viewer, {})
            fields["Your bets"] = ", ".join(f"{amount} on {kind}" for kind, amount in mine.items()) or "none"
        return RenderedView(title="Baccarat", body=body, fields=fields, choices=choices, private=viewer is not None)
