"""Hangman played for a stake."""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from ..core.errors import EngineError, KeyCollision, ValidationError
from ..core.fsm import ActionResult, Lookup, ParsedAction, Participant, Phase, Session
from ..core.rulesets import HANGMAN_MAX_WRONG, HANGMAN_PERFECT_MULTIPLIER, HANGMAN_WIN_MULTIPLIER
from ..core.schemas import ActionEvent, ActionResponse, Choice, OutcomeRecord, RenderedView, StartRequest
from ..core.settlement import Category, SettlementLine, payout_for
from .base import HOUSE_ID, EngineServices, GameDefinition, sanitize_name
from .words import HANGMAN_WORDS, load_words

LOGGER = structlog.get_logger(__name__)


@dataclass
class HangmanState:
    word: str
    bet: int
    guessed: List[str] = field(default_factory=list)
    wrong: int = 0

    @property
    def solved(self) -> bool:
        return all(letter in self.guessed for letter in self.word)

    @property
    def hanged(self) -> bool:
        return self.wrong >= HANGMAN_MAX_WRONG

    def masked(self) -> str:
        return " ".join(letter if letter in self.guessed else "_" for letter in self.word)


@dataclass
class HangmanSetup:
    name: str


class HangmanGame(GameDefinition):
    kind = "hangman"
    prefix = "hangman"
    title = "Hangman"
    lookup = Lookup.PARTICIPANT
    turn_actions = frozenset({"guess"})

    def __init__(self, services: EngineServices) -> None:
        super().__init__(services)
        self.words = load_words(self.config.word_list_path, default=HANGMAN_WORDS)

    @staticmethod
    def game_key(user_id: str) -> str:
        return f"hangman_{user_id}"

    @staticmethod
    def setup_key(user_id: str) -> str:
        return f"hangman_setup_{user_id}"

    def is_setup(self, session: Session) -> bool:
        return isinstance(session.state, HangmanSetup)

    async def start(self, request: StartRequest) -> ActionResponse:
        user_id = request.requester_id
        name = sanitize_name(request.display_name)
        if self.services.store.find_by_participant(user_id, self.kind) is not None:
            raise KeyCollision(f"{user_id} already playing", user_message="You already have a hangman game in progress!")
        bet = request.options.get("bet")
        if bet is None:
            session = self.new_session(
                self.setup_key(user_id),
                channel_id=request.channel_id,
                creator_id=user_id,
                server_id=request.server_id,
                participants=[Participant(user_id, name)],
                state=HangmanSetup(name=name),
            )
            self.register(session)
            return self.respond(session)
        return await self._launch(user_id, name, request.channel_id, request.server_id, self.parse_bet(bet))

    async def _launch(self, user_id: str, name: str, channel_id: str, server_id: Optional[str], bet: int) -> ActionResponse:
        key = self.game_key(user_id)
        self.ensure_free(key)
        await self.debit(user_id, bet, "Hangman bet")
        session = self.new_session(
            key,
            channel_id=channel_id,
            creator_id=user_id,
            server_id=server_id,
            participants=[Participant(user_id, name)],
            phase=Phase.ACTIVE,
            state=HangmanState(word=self.rng.choice(self.words), bet=bet),
        )
        session.add_bet(user_id, bet)
        try:
            self.register(session)
        except KeyCollision:
            await self.refund(user_id, bet, "Hangman refund")
            raise
        self.services.coordinator.start_turns(self, session)
        LOGGER.info("hangman.started", session_key=key, bet=bet, length=len(session.state.word))
        return self.respond(session)

    async def handle_side_action(
        self, session: Session, actor_id: str, action: ParsedAction, event: ActionEvent
    ) -> ActionResult:
        if action.name != "bet" or not self.is_setup(session):
            raise ValidationError("That action is not available.")
        if actor_id != session.creator_id:
            raise ValidationError("This game belongs to someone else.")
        bet = self.parse_bet(action.arg(0))
        self.services.store.remove(session.session_key)
        try:
            response = await self._launch(actor_id, session.state.name, session.channel_id, session.server_id, bet)
        except EngineError:
            if not self.services.store.has(session.session_key):
                self.register(session)
            raise
        return ActionResult(response=response)

    # ------------------------------------------------------------------
    # Turn contract
    # ------------------------------------------------------------------

    def is_legal(self, session: Session, actor_id: str, action: ParsedAction) -> bool:
        return action.name == "guess" and self.next_actor(session) == actor_id

    def legal_actions(self, session: Session, actor_id: str) -> List[str]:
        if self.is_setup(session) or self.next_actor(session) != actor_id:
            return []
        state: HangmanState = session.state
        return [self.action_id("guess", letter) for letter in string.ascii_uppercase if letter not in state.guessed]

    async def apply_action(self, session: Session, actor_id: str, action: ParsedAction) -> ActionResult:
        state: HangmanState = session.state
        letter = (action.arg(0) or "").upper()
        if len(letter) != 1 or letter not in string.ascii_uppercase:
            raise ValidationError("Guess a single letter A-Z.")
        if letter in state.guessed:
            raise ValidationError(f"You already guessed {letter}!")
        state.guessed.append(letter)
        if letter in state.word:
            return ActionResult(message=f"{letter} is in the word!")
        state.wrong += 1
        return ActionResult(message=f"No {letter}. {HANGMAN_MAX_WRONG - state.wrong} wrong guesses left.")

    def is_terminal(self, session: Session) -> bool:
        if self.is_setup(session):
            return False
        state: HangmanState = session.state
        return state.solved or state.hanged

    def settle(self, session: Session) -> List[SettlementLine]:
        state: HangmanState = session.state
        player = session.participants[0]
        if state.solved and state.wrong == 0:
            category, multiplier = Category.PERFECT, HANGMAN_PERFECT_MULTIPLIER
        elif state.solved:
            category, multiplier = Category.WIN, HANGMAN_WIN_MULTIPLIER
        else:
            category, multiplier = Category.LOSS, 0
        return [
            SettlementLine(
                player.id,
                player.name,
                stake=state.bet,
                payout=payout_for(state.bet, multiplier),
                category=category,
                reason=f"Hangman {category.value}",
            )
        ]

    def outcome_records(self, session: Session, lines: List[SettlementLine]) -> List[OutcomeRecord]:
        state: HangmanState = session.state
        player = session.participants[0]
        return [
            self.outcome(
                session,
                winner_id=player.id if state.solved else HOUSE_ID,
                final_score={
                    "word": state.word,
                    "wrong_guesses": state.wrong,
                    "guesses": len(state.guessed),
                    "bet_amount": state.bet,
                    "perfect": state.solved and state.wrong == 0,
                },
            )
        ]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def render(self, session: Session, viewer: Optional[str] = None) -> RenderedView:
        if self.is_setup(session):
            return RenderedView(title="Hangman", body=["Choose your bet to start."], choices=self.bet_choices("bet"))
        state: HangmanState = session.state
        body = [state.masked()]
        fields = {
            "Wrong guesses": f"{state.wrong}/{HANGMAN_MAX_WRONG}",
            "Guessed": " ".join(state.guessed) or "-",
            "Bet": str(state.bet),
        }
        if state.solved:
            body.append("You got it!" + (" Perfect game!" if state.wrong == 0 else ""))
        elif state.hanged:
            body.append(f"Out of guesses. The word was {state.word}.")
        choices = []
        if not self.is_terminal(session):
            choices = [
                Choice(id=self.action_id("guess", letter), label=letter, disabled=letter in state.guessed)
                for letter in string.ascii_uppercase
            ]
        return RenderedView(title="Hangman", body=body, fields=fields, choices=choices)
