"""Durable snapshots of resumable Balatro runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class BalatroRecord:
    """Everything needed to rebuild a run after a restart."""

    session_key: str
    user_id: str
    user_name: str
    channel_id: str
    server_id: Optional[str]
    created_at: float
    ante: int
    blind: str
    score: int
    hands_remaining: int
    discards_remaining: int
    hand: List[Dict[str, str]] = field(default_factory=list)
    deck: List[Dict[str, str]] = field(default_factory=list)
    selected: List[int] = field(default_factory=list)

    def to_json(self) -> bytes:
        return orjson.dumps(asdict(self), option=orjson.OPT_INDENT_2)

    @classmethod
    def from_json(cls, data: bytes) -> "BalatroRecord":
        payload: Dict[str, Any] = orjson.loads(data)
        return cls(**payload)


class BalatroStore(Protocol):
    async def save(self, record: BalatroRecord) -> None: ...

    async def delete(self, session_key: str) -> None: ...

    async def load_all(self) -> List[BalatroRecord]: ...

    async def load_for_user(self, user_id: str) -> Optional[BalatroRecord]: ...


class InMemoryBalatroStore:
    def __init__(self) -> None:
        self.records: Dict[str, BalatroRecord] = {}

    async def save(self, record: BalatroRecord) -> None:
        self.records[record.session_key] = record

    async def delete(self, session_key: str) -> None:
        self.records.pop(session_key, None)

    async def load_all(self) -> List[BalatroRecord]:
        return list(self.records.values())

    async def load_for_user(self, user_id: str) -> Optional[BalatroRecord]:
        for record in self.records.values():
            if record.user_id == user_id:
                return record
        return None


class JsonBalatroStore:
    """One orjson file per run under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def _path(self, session_key: str) -> Path:
        return self.directory / f"{session_key}.json"

    async def save(self, record: BalatroRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record.session_key)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(record.to_json())
        tmp.replace(path)

    async def delete(self, session_key: str) -> None:
        path = self._path(session_key)
        if path.exists():
            path.unlink()
            LOGGER.debug("balatro.deleted", session_key=session_key)

    async def load_all(self) -> List[BalatroRecord]:
        if not self.directory.exists():
            return []
        records: List[BalatroRecord] = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                records.append(BalatroRecord.from_json(path.read_bytes()))
            except (orjson.JSONDecodeError, TypeError) as exc:
                LOGGER.warning("balatro.load_failed", path=str(path), error=str(exc))
        return records

    async def load_for_user(self, user_id: str) -> Optional[BalatroRecord]:
        for record in await self.load_all():
            if record.user_id == user_id:
                return record
        return None
