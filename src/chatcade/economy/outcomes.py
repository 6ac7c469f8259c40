"""Outcome recorders: where finished games are reported."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Set

import orjson
import structlog

from ..core.schemas import OutcomeRecord

LOGGER = structlog.get_logger(__name__)


class OutcomeRecorder(Protocol):
    async def record(self, outcome: OutcomeRecord) -> None: ...


class InMemoryOutcomeRecorder:
    """Keeps outcomes in a list; participants may opt out of tracking."""

    def __init__(self, *, opted_out: Optional[Iterable[str]] = None) -> None:
        self.outcomes: List[OutcomeRecord] = []
        self.opted_out: Set[str] = set(opted_out or ())

    async def record(self, outcome: OutcomeRecord) -> None:
        if any(p.id in self.opted_out for p in outcome.participants):
            LOGGER.debug("outcome.skipped", game_kind=outcome.game_kind)
            return
        self.outcomes.append(outcome)

    def for_kind(self, kind: str) -> List[OutcomeRecord]:
        return [outcome for outcome in self.outcomes if outcome.game_kind == kind]


class JsonlOutcomeRecorder:
    """Appends one orjson-encoded line per outcome."""

    def __init__(self, path: Path) -> None:
        self.path = path

    async def record(self, outcome: OutcomeRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("ab") as handle:
            handle.write(orjson.dumps(outcome.model_dump(mode="json")) + b"\n")
        LOGGER.debug("outcome.recorded", path=str(self.path), game_kind=outcome.game_kind)

    def read_all(self) -> List[OutcomeRecord]:
        if not self.path.exists():
            return []
        records: List[OutcomeRecord] = []
        for line in self.path.read_bytes().splitlines():
            if line.strip():
                records.append(OutcomeRecord.model_validate(orjson.loads(line)))
        return records
