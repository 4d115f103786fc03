import asyncio
import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Session:
    """One live connection. Outbound frames queue here until the transport sends them."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.user_id: Optional[str] = None
        self.state = SessionState.UNAUTHENTICATED
        self.connected_at = time.time()
        self.outbox: asyncio.Queue = asyncio.Queue()

    def push(self, raw: str) -> bool:
        if self.state is SessionState.CLOSED:
            return False
        self.outbox.put_nowait(raw)
        return True

    def drain(self) -> List[str]:
        """Pop everything queued so far (used by tests and shutdown)."""
        frames = []
        while True:
            try:
                frame = self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if frame is not None:
                frames.append(frame)


class SessionRegistry:
    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._by_user: Dict[str, Set[str]] = {}

    def open(self, connection_id: str) -> Session:
        session = self._sessions.get(connection_id)
        if session is None:
            session = Session(connection_id)
            self._sessions[connection_id] = session
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def bind(self, connection_id: str, user_id: str) -> Optional[Session]:
        """Bind an open connection to a user. Closed or unknown ids stay unbound."""
        session = self._sessions.get(connection_id)
        if session is None:
            return None
        if session.user_id and session.user_id != user_id:
            self._forget(session.user_id, connection_id)
        session.user_id = user_id
        session.state = SessionState.AUTHENTICATED
        self._by_user.setdefault(user_id, set()).add(connection_id)
        return session

    def unbind(self, connection_id: str) -> Optional[Session]:
        """Close the connection. Returns the session only on the first call."""
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return None
        if session.user_id:
            self._forget(session.user_id, connection_id)
        session.state = SessionState.CLOSED
        # Wake the writer so it can exit
        session.outbox.put_nowait(None)
        return session

    def _forget(self, user_id: str, connection_id: str) -> None:
        conns = self._by_user.get(user_id)
        if conns is None:
            return
        conns.discard(connection_id)
        if not conns:
            del self._by_user[user_id]

    def connected_user_ids(self) -> Set[str]:
        return set(self._by_user)

    def connections_for_user(self, user_id: str) -> Set[str]:
        return set(self._by_user.get(user_id, ()))

    def bound_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.state is SessionState.AUTHENTICATED]

    def __len__(self) -> int:
        return len(self._sessions)
