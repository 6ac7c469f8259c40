"""Boundary to the currency ledger plus an in-memory ledger for local play."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol

import structlog

from ..core.errors import InsufficientFunds, ValidationError

LOGGER = structlog.get_logger(__name__)

MAX_STREAK_BONUS = 0.5
STREAK_STEP = 0.1


@dataclass(slots=True)
class AwardResult:
    awarded: int
    new_balance: int
    streak: int = 0
    first_win_bonus: bool = False


@dataclass(slots=True)
class LossResult:
    shield_consumed: bool = False
    streak: int = 0


class EconomyGateway(Protocol):
    """Ledger operations the engine needs. Implementations own persistence."""

    async def balance(self, participant_id: str) -> int: ...

    async def debit(self, participant_id: str, amount: int, reason: str) -> None: ...

    async def credit(self, participant_id: str, amount: int, reason: str) -> int: ...

    async def award(self, participant_id: str, amount: int, reason: str) -> AwardResult: ...

    async def record_loss(self, participant_id: str, reason: str) -> LossResult: ...


@dataclass
class Account:
    balance: int
    win_streak: int = 0
    last_win_day: Optional[str] = None
    streak_shields: int = 0
    total_earned: int = 0


@dataclass(slots=True)
class Transaction:
    participant_id: str
    amount: int
    reason: str
    balance_before: int
    balance_after: int
    at: float = field(default_factory=time.time)


class InMemoryEconomy:
    """Reference ledger with daily first-win and streak bonuses.

    Awards whose reason mentions a win double on the first win of the day and
    then grow by 10% per consecutive win, capped at +50%. A loss resets the
    streak unless a streak shield absorbs it.
    """

    def __init__(
        self,
        *,
        starting_balance: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.starting_balance = starting_balance
        self._clock = clock
        self._accounts: Dict[str, Account] = {}
        self._lock = asyncio.Lock()
        self.transactions: List[Transaction] = []

    def _account(self, participant_id: str) -> Account:
        account = self._accounts.get(participant_id)
        if account is None:
            account = Account(balance=self.starting_balance)
            self._accounts[participant_id] = account
        return account

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d")

    def _log(self, participant_id: str, amount: int, reason: str, before: int, after: int) -> None:
        self.transactions.append(
            Transaction(participant_id, amount, reason, before, after, at=self._clock())
        )

    # ------------------------------------------------------------------
    # EconomyGateway
    # ------------------------------------------------------------------

    async def balance(self, participant_id: str) -> int:
        async with self._lock:
            return self._account(participant_id).balance

    async def debit(self, participant_id: str, amount: int, reason: str) -> None:
        if amount <= 0:
            raise ValidationError(f"Bet amount must be positive, got {amount}")
        async with self._lock:
            account = self._account(participant_id)
            if account.balance < amount:
                LOGGER.info("economy.insufficient", participant=participant_id, amount=amount, balance=account.balance)
                raise InsufficientFunds(participant_id, amount, account.balance)
            before = account.balance
            account.balance -= amount
            self._log(participant_id, -amount, reason, before, account.balance)

    async def credit(self, participant_id: str, amount: int, reason: str) -> int:
        async with self._lock:
            account = self._account(participant_id)
            before = account.balance
            account.balance += amount
            account.total_earned += amount
            self._log(participant_id, amount, reason, before, account.balance)
            return account.balance

    async def award(self, participant_id: str, amount: int, reason: str) -> AwardResult:
        async with self._lock:
            account = self._account(participant_id)
            final_amount = amount
            first_win = False
            if "win" in reason.lower():
                today = self._today()
                if account.last_win_day == today:
                    account.win_streak += 1
                else:
                    account.win_streak = 1
                    account.last_win_day = today
                    first_win = True
                    final_amount *= 2
                bonus = min(MAX_STREAK_BONUS, (account.win_streak - 1) * STREAK_STEP)
                final_amount = int(final_amount * (1 + bonus))
            before = account.balance
            account.balance += final_amount
            account.total_earned += final_amount
            self._log(participant_id, final_amount, reason, before, account.balance)
            LOGGER.info(
                "economy.award",
                participant=participant_id,
                base=amount,
                awarded=final_amount,
                streak=account.win_streak,
                first_win=first_win,
            )
            return AwardResult(final_amount, account.balance, account.win_streak, first_win)

    async def record_loss(self, participant_id: str, reason: str) -> LossResult:
        async with self._lock:
            account = self._account(participant_id)
            if account.streak_shields > 0 and account.win_streak > 0:
                account.streak_shields -= 1
                LOGGER.info("economy.shield_used", participant=participant_id, reason=reason)
                return LossResult(shield_consumed=True, streak=account.win_streak)
            account.win_streak = 0
            return LossResult(shield_consumed=False, streak=0)

    # ------------------------------------------------------------------
    # Local helpers
    # ------------------------------------------------------------------

    def grant_shields(self, participant_id: str, count: int = 1) -> None:
        self._account(participant_id).streak_shields += count

    def account(self, participant_id: str) -> Account:
        return self._account(participant_id)

    def total_credited(self, participant_id: Optional[str] = None) -> int:
        return sum(
            tx.amount
            for tx in self.transactions
            if tx.amount > 0 and (participant_id is None or tx.participant_id == participant_id)
        )
