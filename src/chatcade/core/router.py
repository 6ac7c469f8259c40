"""Maps rendered choice identifiers back to the session they belong to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import structlog

from .errors import SessionNotFound
from .fsm import Lookup, ParsedAction, Session
from .store import SessionStore

if TYPE_CHECKING:  # pragma: no cover
    from ..games.base import GameDefinition

LOGGER = structlog.get_logger(__name__)

SEPARATOR = ":"


def build_action_id(prefix: str, *parts: object) -> str:
    """Join a prefix and its parts into an action identifier.

    >>> build_action_id("roulette", "bet", "red", 50)
    'roulette:bet:red:50'
    """
    return SEPARATOR.join([prefix, *(str(part) for part in parts)])


class ActionRouter:
    """Demultiplexes action identifiers by game prefix."""

    def __init__(self, store: SessionStore, definitions: Iterable["GameDefinition"]) -> None:
        self._store = store
        self._by_prefix: Dict[str, "GameDefinition"] = {}
        for definition in definitions:
            if definition.prefix in self._by_prefix:
                raise ValueError(f"Duplicate action prefix {definition.prefix!r}")
            self._by_prefix[definition.prefix] = definition

    @property
    def prefixes(self) -> List[str]:
        return sorted(self._by_prefix)

    def parse(self, action_id: str) -> ParsedAction:
        parts = action_id.strip().split(SEPARATOR)
        if len(parts) < 2 or not all(parts):
            raise SessionNotFound(f"Malformed action identifier {action_id!r}")
        definition = self._by_prefix.get(parts[0])
        if definition is None:
            raise SessionNotFound(f"Unknown action prefix {parts[0]!r}")
        if definition.embeds_key:
            if len(parts) < 3:
                raise SessionNotFound(f"Action {action_id!r} is missing its session key")
            return ParsedAction(action_id, parts[0], parts[2], tuple(parts[3:]), embedded_key=parts[1])
        return ParsedAction(action_id, parts[0], parts[1], tuple(parts[2:]))

    def definition_for(self, action: ParsedAction) -> "GameDefinition":
        return self._by_prefix[action.prefix]

    def resolve(self, action: ParsedAction, actor_id: str, channel_id: str) -> Optional[Session]:
        """Find the live session for ``action`` using the game's lookup strategy."""
        definition = self.definition_for(action)
        strategy = definition.lookup_for(action)
        if strategy is Lookup.EMBEDDED:
            session = self._store.get(action.embedded_key or "")
            if session is not None and session.game_kind != definition.kind:
                session = None
        elif strategy is Lookup.CHANNEL:
            session = self._store.find_by_channel(channel_id, definition.kind)
        else:
            session = self._store.find_by_participant(actor_id, definition.kind)
        if session is None:
            LOGGER.debug("router.miss", action=action.raw, actor=actor_id, channel=channel_id, strategy=strategy.value)
        return session
