"""In-process registry of live sessions."""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from .errors import KeyCollision
from .fsm import Session

LOGGER = structlog.get_logger(__name__)


class SessionStore:
    """Maps session keys to live sessions.

    A participant reverse index answers "which <kind> game is this user in"
    without scanning; entries are filled lazily on a miss and dropped when a
    session goes away.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._by_participant: Dict[Tuple[str, str], str] = {}
        self._ready = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        self._sessions.clear()
        self._by_participant.clear()
        self._ready = True

    def clear(self) -> None:
        count = len(self._sessions)
        self._sessions.clear()
        self._by_participant.clear()
        self._ready = False
        LOGGER.info("store.cleared", sessions=count)

    @property
    def ready(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # Keyed access
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        if session.session_key in self._sessions:
            raise KeyCollision(
                f"Session {session.session_key} already exists",
                user_message="You already have a game of that kind in progress!",
            )
        self._sessions[session.session_key] = session
        for participant_id in session.participant_ids():
            self._by_participant[(participant_id, session.game_kind)] = session.session_key
        LOGGER.info(
            "session.created",
            session_key=session.session_key,
            game_kind=session.game_kind,
            participants=session.participant_ids(),
        )
        return session

    def get(self, session_key: str) -> Optional[Session]:
        return self._sessions.get(session_key)

    def has(self, session_key: str) -> bool:
        return session_key in self._sessions

    def is_live(self, session: Session) -> bool:
        """True while ``session`` is still the object registered under its key."""
        return self._sessions.get(session.session_key) is session

    def remove(self, session_key: str) -> Optional[Session]:
        session = self._sessions.pop(session_key, None)
        if session is None:
            return None
        stale = [key for key, value in self._by_participant.items() if value == session_key]
        for key in stale:
            del self._by_participant[key]
        LOGGER.info("session.removed", session_key=session_key, game_kind=session.game_kind)
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_key: object) -> bool:
        return session_key in self._sessions

    # ------------------------------------------------------------------
    # Secondary lookups
    # ------------------------------------------------------------------

    def sessions(self, kind: Optional[str] = None) -> List[Session]:
        return [s for s in self._sessions.values() if kind is None or s.game_kind == kind]

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def find_by_participant(self, participant_id: str, kind: str) -> Optional[Session]:
        index_key = (participant_id, kind)
        cached = self._by_participant.get(index_key)
        if cached is not None:
            session = self._sessions.get(cached)
            if session is not None and session.has_participant(participant_id):
                return session
            del self._by_participant[index_key]
        for session in self._sessions.values():
            if session.game_kind == kind and session.has_participant(participant_id):
                self._by_participant[index_key] = session.session_key
                return session
        return None

    def find_by_channel(self, channel_id: str, kind: str) -> Optional[Session]:
        for session in self._sessions.values():
            if session.game_kind == kind and session.channel_id == channel_id:
                return session
        return None

    def index_participant(self, session: Session, participant_id: str) -> None:
        """Record a participant who joined after creation."""
        if self.is_live(session):
            self._by_participant[(participant_id, session.game_kind)] = session.session_key
