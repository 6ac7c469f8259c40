"""One-shot settlement of finished sessions."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import structlog

from .errors import SettlementFailure
from .fsm import Phase, Session

if TYPE_CHECKING:  # pragma: no cover
    from ..economy.gateway import EconomyGateway
    from ..economy.outcomes import OutcomeRecorder
    from ..games.base import GameDefinition
    from .store import SessionStore

LOGGER = structlog.get_logger(__name__)


class Category(str, Enum):
    WIN = "win"
    NATURAL = "natural"
    PERFECT = "perfect"
    PUSH = "push"
    LOSS = "loss"
    BUST = "bust"


@dataclass(slots=True)
class SettlementLine:
    """A single payout decision.

    ``payout`` is the gross amount returned to the participant; the stake was
    already debited when the bet was placed, so ``net`` is the profit.
    Lines with ``award=True`` are rewards without a stake and go through the
    ledger's award path so streak bonuses apply.
    """

    participant_id: str
    name: str
    stake: int
    payout: int
    category: Category
    reason: str
    award: bool = False

    @property
    def net(self) -> int:
        return self.payout - self.stake

    @property
    def lost(self) -> bool:
        return self.category in (Category.LOSS, Category.BUST)


@dataclass
class SettlementReport:
    session_key: str
    game_kind: str
    lines: List[SettlementLine] = field(default_factory=list)
    credited: int = 0
    failures: List[str] = field(default_factory=list)

    def net_for(self, participant_id: str) -> int:
        return sum(line.net for line in self.lines if line.participant_id == participant_id)

    def payout_for(self, participant_id: str) -> int:
        return sum(line.payout for line in self.lines if line.participant_id == participant_id)


def payout_for(stake: int, multiplier: float) -> int:
    """Gross payout for ``stake`` at ``multiplier``, floored to whole coins.

    >>> payout_for(100, 2.5)
    250
    >>> payout_for(15, 1.95)
    29
    >>> payout_for(20, 1.95)
    39
    """
    return int(stake * Fraction(str(multiplier)))


class Settler:
    """Credits winners exactly once and then retires the session."""

    def __init__(
        self,
        *,
        store: "SessionStore",
        economy: "EconomyGateway",
        recorder: "OutcomeRecorder",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._economy = economy
        self._recorder = recorder
        self._clock = clock

    async def settle(self, definition: "GameDefinition", session: Session) -> Optional[SettlementReport]:
        if session.settled:
            LOGGER.debug("settlement.duplicate", session_key=session.session_key)
            return None
        # Marked before the first await so a concurrent trigger sees a settled session.
        session.settled = True
        if session.phase is not Phase.ENDED:
            session.advance(Phase.ENDED)

        report = SettlementReport(session.session_key, session.game_kind, definition.settle(session))
        for line in report.lines:
            if line.payout <= 0:
                continue
            try:
                if line.award:
                    result = await self._economy.award(line.participant_id, line.payout, line.reason)
                    report.credited += result.awarded
                else:
                    await self._economy.credit(line.participant_id, line.payout, line.reason)
                    report.credited += line.payout
            except Exception as exc:  # noqa: BLE001
                failure = SettlementFailure(f"Credit of {line.payout} to {line.participant_id} failed: {exc}")
                report.failures.append(str(failure))
                LOGGER.error(
                    "settlement.credit_failed",
                    session_key=session.session_key,
                    participant=line.participant_id,
                    amount=line.payout,
                    error=str(exc),
                )

        await self._record_losses(session, report)

        for outcome in definition.outcome_records(session, report.lines):
            try:
                await self._recorder.record(outcome)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("outcome.record_failed", session_key=session.session_key, error=str(exc))

        if self._store.is_live(session):
            self._store.remove(session.session_key)
        LOGGER.info(
            "settlement.complete",
            session_key=session.session_key,
            game_kind=session.game_kind,
            lines=len(report.lines),
            credited=report.credited,
            failures=len(report.failures),
            duration=session.duration_seconds(self._clock()),
        )
        return report

    async def _record_losses(self, session: Session, report: SettlementReport) -> None:
        stakes: Dict[str, int] = defaultdict(int)
        nets: Dict[str, int] = defaultdict(int)
        lost: Dict[str, bool] = defaultdict(bool)
        for line in report.lines:
            stakes[line.participant_id] += line.stake
            nets[line.participant_id] += line.net
            lost[line.participant_id] = lost[line.participant_id] or line.lost
        for participant_id in nets:
            losing = nets[participant_id] < 0 or (stakes[participant_id] == 0 and lost[participant_id])
            if not losing:
                continue
            try:
                await self._economy.record_loss(participant_id, f"{session.game_kind} loss")
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("settlement.loss_record_failed", participant=participant_id, error=str(exc))
