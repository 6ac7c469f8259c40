"""Single-player poker-hand scoring run that survives restarts."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import structlog

from ..core.cards import Card, format_hand, shuffled_deck
from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.rulesets import (
    BALATRO_BASE_CHIPS,
    BALATRO_BLIND_ORDER,
    BALATRO_DISCARDS,
    BALATRO_FINAL_ANTE,
    BALATRO_HAND_SIZE,
    BALATRO_HANDS,
    BALATRO_HANDS_TABLE,
    BALATRO_MAX_SELECTION,
    BALATRO_PARTICIPATION_CAP,
    BALATRO_PARTICIPATION_STEP,
    blinds_for_ante,
    get_rewards,
)
from ..core.schemas import ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine
from ..persistence.balatro_store import BalatroRecord
from .base import HOUSE_ID, GameDefinition, sanitize_name

LOGGER = structlog.get_logger(__name__)

# Aces count low for straights.
STRAIGHT_VALUES = {"A": 1, "J": 11, "Q": 12, "K": 13}


def _straight_value(card: Card) -> int:
    return STRAIGHT_VALUES.get(card.rank) or int(card.rank)


def evaluate_hand(cards: Sequence[Card]) -> Tuple[str, int, int]:
    """Name, multiplier and base chips of the best poker hand in ``cards``.

    >>> evaluate_hand([Card("K", "♠"), Card("K", "♥")])[0]
    'Pair'
    >>> evaluate_hand([Card(r, "♥") for r in ("2", "3", "4", "5", "6")])[0]
    'Straight Flush'
    """
    if not cards:
        return ("High Card", *BALATRO_HANDS_TABLE["High Card"])
    counts = sorted(Counter(card.rank for card in cards).values(), reverse=True)
    flush = len(cards) >= 5 and len({card.suit for card in cards}) == 1
    values = sorted(_straight_value(card) for card in cards)
    straight = len(values) >= 5 and all(b == a + 1 for a, b in zip(values, values[1:]))

    if straight and flush:
        name = "Straight Flush"
    elif counts[0] == 4:
        name = "Four of a Kind"
    elif counts[0] == 3 and len(counts) > 1 and counts[1] == 2:
        name = "Full House"
    elif flush:
        name = "Flush"
    elif straight:
        name = "Straight"
    elif counts[0] == 3:
        name = "Three of a Kind"
    elif counts[0] == 2 and len(counts) > 1 and counts[1] == 2:
        name = "Two Pair"
    elif counts[0] == 2:
        name = "Pair"
    else:
        name = "High Card"
    multiplier, chips = BALATRO_HANDS_TABLE[name]
    return name, multiplier, chips


def score_hand(cards: Sequence[Card]) -> Tuple[str, int]:
    """``(chips + base bonus) * multiplier`` for the played cards.

    >>> score_hand([Card("K", "♠"), Card("K", "♥")])
    ('Pair', 120)
    """
    name, multiplier, chips = evaluate_hand(cards)
    return name, (chips + BALATRO_BASE_CHIPS) * multiplier


def participation_reward(ante: int) -> int:
    """Consolation coins grow with the ante reached.

    >>> [participation_reward(a) for a in (1, 2, 9, 20)]
    [25, 40, 145, 150]
    """
    base = get_rewards("balatro").participation
    return min(base + (ante - 1) * BALATRO_PARTICIPATION_STEP, BALATRO_PARTICIPATION_CAP)


@dataclass
class BalatroRun:
    deck: List[Card]
    hand: List[Card] = field(default_factory=list)
    ante: int = 1
    blind: str = BALATRO_BLIND_ORDER[0]
    score: int = 0
    hands_remaining: int = BALATRO_HANDS
    discards_remaining: int = BALATRO_DISCARDS
    selected: List[int] = field(default_factory=list)
    result: Optional[str] = None
    last_play: Optional[str] = None

    @property
    def requirement(self) -> int:
        return blinds_for_ante(self.ante).requirement(self.blind)

    def selected_cards(self) -> List[Card]:
        return [self.hand[index] for index in self.selected]


class BalatroGame(GameDefinition):
    kind = "balatro"
    prefix = "bal"
    title = "Balatro"
    lookup = Lookup.PARTICIPANT
    turn_actions = frozenset({"card", "play", "discard", "quit"})

    # ------------------------------------------------------------------
    # Starting and resuming
    # ------------------------------------------------------------------

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        if self.services.store.find_by_participant(user_id, self.kind) is not None:
            raise KeyCollision(f"{user_id} already playing", user_message="You already have a Balatro run in progress!")
        resumed = await self.recover(user_id)
        if resumed is not None:
            return self.respond(resumed, message="Resuming your saved run.")
        run = BalatroRun(deck=shuffled_deck(self.rng))
        self._refill(run)
        session = self.new_session(
            f"balatro_{user_id}_{self.timestamp_ms()}",
            channel_id=request.channel_id,
            creator_id=user_id,
            server_id=request.server_id,
            participants=[Participant(user_id, sanitize_name(request.display_name))],
            phase=Phase.ACTIVE,
            state=run,
        )
        self.register(session)
        self.services.coordinator.start_turns(self, session)
        await self.save(session)
        LOGGER.info("balatro.started", session_key=session.session_key, participant=user_id)
        return self.respond(session)

    async def restore(self) -> List[Session]:
        store = self.services.balatro_store
        if store is None:
            return []
        restored = []
        for record in await store.load_all():
            if self.services.store.has(record.session_key):
                continue
            session = self.from_record(record)
            self.register(session)
            restored.append(session)
        if restored:
            LOGGER.info("balatro.restored", sessions=len(restored))
        return restored

    async def recover(self, actor_id: str) -> Optional[Session]:
        store = self.services.balatro_store
        if store is None:
            return None
        record = await store.load_for_user(actor_id)
        if record is None:
            return None
        existing = self.services.store.get(record.session_key)
        if existing is not None:
            return existing
        session = self.register(self.from_record(record))
        LOGGER.info("balatro.recovered", session_key=session.session_key, participant=actor_id)
        return session

    def to_record(self, session: Session) -> BalatroRecord:
        run: BalatroRun = session.state
        player = session.participants[0]
        return BalatroRecord(
            session_key=session.session_key,
            user_id=player.id,
            user_name=player.name,
            channel_id=session.channel_id,
            server_id=session.server_id,
            created_at=session.created_at,
            ante=run.ante,
            blind=run.blind,
            score=run.score,
            hands_remaining=run.hands_remaining,
            discards_remaining=run.discards_remaining,
            hand=[card.to_dict() for card in run.hand],
            deck=[card.to_dict() for card in run.deck],
            selected=list(run.selected),
        )

    def from_record(self, record: BalatroRecord) -> Session:
        run = BalatroRun(
            deck=[Card.from_dict(card) for card in record.deck],
            hand=[Card.from_dict(card) for card in record.hand],
            ante=record.ante,
            blind=record.blind,
            score=record.score,
            hands_remaining=record.hands_remaining,
            discards_remaining=record.discards_remaining,
            selected=[index for index in record.selected if 0 <= index < len(record.hand)],
        )
        session = self.new_session(
            record.session_key,
            channel_id=record.channel_id,
            creator_id=record.user_id,
            server_id=record.server_id,
            participants=[Participant(record.user_id, record.user_name)],
            phase=Phase.ACTIVE,
            state=run,
        )
        session.created_at = record.created_at
        session.turn_index = 0
        return session

    async def save(self, session: Session) -> None:
        store = self.services.balatro_store
        if store is not None and not self.is_terminal(session):
            await store.save(self.to_record(session))

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        if session.phase is not Phase.ACTIVE or self.next_actor(session) != actor_id:
            return []
        run: BalatroRun = session.state
        actions = [self.action_id("card", index) for index in range(len(run.hand))]
        if run.selected:
            actions.append(self.action_id("play"))
            if run.discards_remaining > 0:
                actions.append(self.action_id("discard"))
        actions.append(self.action_id("quit"))
        return actions

    def is_legal(self, session: Session, actor_id: str, action: ParsedAction) -> bool:
        if action.raw in self.legal_actions(session, actor_id):
            return True
        run: BalatroRun = session.state
        if action.name == "play" and not run.selected:
            raise ValidationError("Select cards first!")
        if action.name == "discard":
            raise ValidationError("Cannot discard!")
        return False

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        run: BalatroRun = session.state
        if action.name == "card":
            index = action.int_arg(0)
            if index in run.selected:
                run.selected.remove(index)
            elif len(run.selected) < BALATRO_MAX_SELECTION:
                run.selected.append(index)
            else:
                raise ValidationError(f"You can select at most {BALATRO_MAX_SELECTION} cards.")
            message = None
        elif action.name == "play":
            message = self._play(session, run)
        elif action.name == "discard":
            self._replace_selected(run)
            run.discards_remaining -= 1
            message = "Cards discarded!"
        else:
            run.result = "quit"
            message = "Game ended!"
        await self.save(session)
        return ActionResult(message=message)

    def _play(self, session: Session, run: BalatroRun) -> str:
        name, points = score_hand(run.selected_cards())
        run.score += points
        run.last_play = f"{name} +{points}"
        if run.score >= run.requirement:
            message = f"{name}! +{points} chips! Beat the blind with {run.score} total!"
            LOGGER.info(
                "balatro.blind_cleared",
                session_key=session.session_key,
                ante=run.ante,
                blind=run.blind,
                score=run.score,
            )
            self._advance_blind(run)
            return message
        run.hands_remaining -= 1
        message = f"{name} - +{points} chips ({run.score}/{run.requirement})"
        if run.hands_remaining <= 0:
            run.result = "loss"
            return message
        self._remove_selected(run)
        self._refill(run)
        return message

    def _advance_blind(self, run: BalatroRun) -> None:
        position = BALATRO_BLIND_ORDER.index(run.blind)
        if position + 1 < len(BALATRO_BLIND_ORDER):
            run.blind = BALATRO_BLIND_ORDER[position + 1]
        else:
            run.ante += 1
            run.blind = BALATRO_BLIND_ORDER[0]
        run.score = 0
        run.hands_remaining = BALATRO_HANDS
        run.discards_remaining = BALATRO_DISCARDS
        run.selected = []
        if run.ante > BALATRO_FINAL_ANTE:
            run.result = "win"
            return
        run.deck = shuffled_deck(self.rng)
        run.hand = []
        self._refill(run)

    @staticmethod
    def _remove_selected(run: BalatroRun) -> None:
        for index in sorted(run.selected, reverse=True):
            del run.hand[index]
        run.selected = []

    @staticmethod
    def _replace_selected(run: BalatroRun) -> None:
        for index in sorted(run.selected, reverse=True):
            if run.deck:
                run.hand[index] = run.deck.pop()
            else:
                del run.hand[index]
        run.selected = []

    @staticmethod
    def _refill(run: BalatroRun) -> None:
        while len(run.hand) < BALATRO_HAND_SIZE and run.deck:
            run.hand.append(run.deck.pop())

    def is_terminal(self, session: Session) -> bool:
        run: BalatroRun = session.state
        return run.result is not None

    async def resolve(self, session: Session) -> None:
        store = self.services.balatro_store
        if store is not None:
            await store.delete(session.session_key)
        run: BalatroRun = session.state
        LOGGER.info("balatro.finished", session_key=session.session_key, result=run.result, ante=run.ante)

    def settle(self, session: Session) -> List[SettlementLine]:
        run: BalatroRun = session.state
        player = session.participants[0]
        rewards = get_rewards(self.kind)
        if run.result == "win":
            perfect = run.ante >= BALATRO_FINAL_ANTE
            return [
                SettlementLine(
                    player.id,
                    player.name,
                    0,
                    rewards.perfect if perfect else rewards.win,
                    Category.PERFECT if perfect else Category.WIN,
                    "Balatro perfect win" if perfect else "Balatro win",
                    award=True,
                )
            ]
        if run.result == "loss":
            return [
                SettlementLine(
                    player.id,
                    player.name,
                    0,
                    participation_reward(run.ante),
                    Category.LOSS,
                    "Balatro participation",
                    award=True,
                )
            ]
        return []

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        run: BalatroRun = session.state
        if run.result == "quit":
            return []
        player = session.participants[0]
        return [
            self.outcome(
                session,
                winner_id=player.id if run.result == "win" else HOUSE_ID,
                final_score={"ante_reached": run.ante, "blind": run.blind, "final_chips": run.score},
            )
        ]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        run: BalatroRun = session.state
        fields = {
            "Ante": str(run.ante),
            "Blind": run.blind.title(),
            "Chips": f"{run.score} / {run.requirement}",
            "Hands": str(run.hands_remaining),
            "Discards": str(run.discards_remaining),
        }
        body: List[str] = []
        if run.last_play:
            body.append(f"Last hand: {run.last_play}")
        choices: List[Choice] = []
        if run.result is None:
            body.append(f"Hand: {format_hand(run.hand)}")
            if run.selected:
                preview, points = score_hand(run.selected_cards())
                body.append(f"Selected: {format_hand(run.selected_cards())} ({preview}, {points})")
            choices = [
                Choice(id=self.action_id("card", index), label=("*" if index in run.selected else "") + str(card))
                for index, card in enumerate(run.hand)
            ]
            choices.append(Choice(id=self.action_id("play"), label="Play hand", disabled=not run.selected))
            choices.append(
                Choice(
                    id=self.action_id("discard"),
                    label="Discard",
                    disabled=not run.selected or run.discards_remaining <= 0,
                )
            )
            choices.append(Choice(id=self.action_id("quit"), label="Quit"))
        elif run.result == "win":
            body.append(f"You beat ante {BALATRO_FINAL_ANTE}!")
        elif run.result == "loss":
            body.append(f"Game over at ante {run.ante}.")
        else:
            body.append("Run abandoned.")
        return RenderedView(title="Balatro", body=body, fields=fields, choices=choices)
