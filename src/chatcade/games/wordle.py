"""Five-letter word guessing with colour feedback."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from ..core.errors import KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.rulesets import WORDLE_MAX_GUESSES, WORDLE_WIN_MULTIPLIER, WORDLE_WORD_LENGTH
from ..core.schemas import ActionResponse, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine, payout_for
from .base import HOUSE_ID, EngineServices, GameDefinition, sanitize_name
from .words import WORDLE_WORDS, load_words

LOGGER = structlog.get_logger(__name__)

CORRECT = "correct"
PRESENT = "present"
ABSENT = "absent"
GUESS_PATTERN = re.compile(rf"^[A-Z]{{{WORDLE_WORD_LENGTH}}}$")
SYMBOLS = {CORRECT: "🟩", PRESENT: "🟨", ABSENT: "⬛"}


def score_guess(guess: str, answer: str) -> List[str]:
    """Two-pass feedback: exact matches first, then misplaced letters by count.

    >>> score_guess("CRANE", "CRANE")
    ['correct', 'correct', 'correct', 'correct', 'correct']
    >>> score_guess("LLAMA", "HELLO")
    ['present', 'present', 'absent', 'absent', 'absent']
    """
    result = [ABSENT] * len(guess)
    remaining = Counter()
    for index, (g, a) in enumerate(zip(guess, answer)):
        if g == a:
            result[index] = CORRECT
        else:
            remaining[a] += 1
    for index, g in enumerate(guess):
        if result[index] == CORRECT:
            continue
        if remaining[g] > 0:
            result[index] = PRESENT
            remaining[g] -= 1
    return result


@dataclass
class WordleState:
    answer: str
    bet: int = 0
    guesses: List[str] = field(default_factory=list)
    feedback: List[List[str]] = field(default_factory=list)

    @property
    def solved(self) -> bool:
        return bool(self.guesses) and self.guesses[-1] == self.answer

    @property
    def exhausted(self) -> bool:
        return len(self.guesses) >= WORDLE_MAX_GUESSES


class WordleGame(GameDefinition):
    kind = "wordle"
    prefix = "wordle"
    title = "Wordle"
    lookup = Lookup.PARTICIPANT
    turn_actions = frozenset({"guess"})

    def __init__(self, services: EngineServices) -> None:
        super().__init__(services)
        self.words = load_words(self.config.wordle_words_path, default=WORDLE_WORDS, length=WORDLE_WORD_LENGTH)

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        key = f"wordle_{user_id}"
        if self.services.store.has(key):
            raise KeyCollision(f"{key} exists", user_message="You already have a Wordle game in progress!")
        raw_bet = request.options.get("bet")
        bet = self.parse_bet(raw_bet) if raw_bet not in (None, 0, "0") else 0
        if bet:
            await self.debit(user_id, bet, "Wordle bet")
        session = self.new_session(
            key,
            channel_id=request.channel_id,
            creator_id=user_id,
            server_id=request.server_id,
            participants=[Participant(user_id, sanitize_name(request.display_name))],
            phase=Phase.ACTIVE,
            state=WordleState(answer=self.rng.choice(self.words), bet=bet),
        )
        if bet:
            session.add_bet(user_id, bet)
        try:
            self.register(session)
        except KeyCollision:
            await self.refund(user_id, bet, "Wordle refund")
            raise
        self.services.coordinator.start_turns(self, session)
        return self.respond(session, message=f"Guess the {WORDLE_WORD_LENGTH}-letter word in {WORDLE_MAX_GUESSES} tries.")

    def is_legal(self, session: Session, actor_id: str, action: ParsedAction) -> bool:
        return action.name == "guess" and self.next_actor(session) == actor_id

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        state: WordleState = session.state
        guess = (action.arg(0) or "").strip().upper()
        if not GUESS_PATTERN.match(guess):
            raise ValidationError(f"Guesses must be {WORDLE_WORD_LENGTH} letters (A-Z).")
        state.guesses.append(guess)
        state.feedback.append(score_guess(guess, state.answer))
        return ActionResult()

    def is_terminal(self, session: Session) -> bool:
        state: WordleState = session.state
        return state.solved or state.exhausted

    def settle(self, session: Session) -> List[SettlementLine]:
        state: WordleState = session.state
        if not state.bet:
            return []
        player = session.participants[0]
        won = state.solved
        return [
            SettlementLine(
                player.id,
                player.name,
                stake=state.bet,
                payout=payout_for(state.bet, WORDLE_WIN_MULTIPLIER) if won else 0,
                category=Category.WIN if won else Category.LOSS,
                reason="Wordle win" if won else "Wordle loss",
            )
        ]

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        state: WordleState = session.state
        player = session.participants[0]
        return [
            self.outcome(
                session,
                winner_id=player.id if state.solved else HOUSE_ID,
                final_score={"answer": state.answer, "guesses": len(state.guesses), "bet_amount": state.bet},
            )
        ]

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        state: WordleState = session.state
        body = [
            f"{' '.join(guess)}  {''.join(SYMBOLS[mark] for mark in marks)}"
            for guess, marks in zip(state.guesses, state.feedback)
        ]
        if state.solved:
            body.append(f"Solved in {len(state.guesses)}!")
        elif state.exhausted:
            body.append(f"Out of guesses. The word was {state.answer}.")
        fields = {"Guesses": f"{len(state.guesses)}/{WORDLE_MAX_GUESSES}"}
        if state.bet:
            fields["Bet"] = str(state.bet)
        if not self.is_terminal(session):
            fields["How to guess"] = self.action_id("guess", "<WORD>")
        return RenderedView(title="Wordle", body=body, fields=fields)
