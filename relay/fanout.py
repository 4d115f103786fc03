"""Entitlement-filtered delivery of relay events to live sessions.

The engine keeps no state of its own beyond what the session registry holds.
Every publish step asks the channel store who may read the channel at that
moment, so a membership change applies to the very next message. Frames are
queued on each session's outbox; the transport drains them in order.
"""
import logging
from typing import Iterable, List, Optional

from .channels import ChannelStore
from .customised_types import ServerEventType
from .errors import NotFound, RelayError
from .identity import IdentityStore
from .models import ChannelRef, DirectThread, Message, User
from .protocol import make_envelope
from .sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)


class FanoutEngine:
    def __init__(self, identity: IdentityStore, channels: ChannelStore, sessions: SessionRegistry):
        self.identity = identity
        self.channels = channels
        self.sessions = sessions
        identity.add_profile_listener(self.on_profile_updated)

    # ---- Delivery primitives ----
    def _send(self, session: Session, msg_type: ServerEventType, payload: dict) -> None:
        session.push(make_envelope(msg_type, payload, to_id=session.user_id))

    def _publish(self, targets: Iterable[Session], msg_type: ServerEventType, payload: dict) -> int:
        delivered = 0
        for session in targets:
            if session.push(make_envelope(msg_type, payload, to_id=session.user_id)):
                delivered += 1
        return delivered

    def _sessions_for(self, readers: Optional[set]) -> List[Session]:
        bound = self.sessions.bound_sessions()
        if readers is None:
            return bound
        return [s for s in bound if s.user_id in readers]

    # ---- Scoped views ----
    def scoped_rooms(self, user_id: str) -> List[dict]:
        return [r.to_dict() for r in self.channels.visible_rooms(user_id)]

    def scoped_threads(self, user_id: str) -> List[dict]:
        return [t.to_dict() for t in self.channels.threads_for(user_id)]

    def presence(self) -> List[dict]:
        users = []
        for uid in sorted(self.sessions.connected_user_ids()):
            try:
                users.append(self.identity.get(uid).public_profile())
            except NotFound:
                continue
        return users

    def directory(self) -> List[dict]:
        return [u.public_profile() for u in self.identity.all_users()]

    # ---- Events ----
    def on_connect(self, connection_id: str) -> Session:
        return self.sessions.open(connection_id)

    def on_auth_failed(self, connection_id: str) -> None:
        session = self.sessions.get(connection_id)
        if session is not None:
            self._send(session, ServerEventType.AUTH_FAIL, {})

    def on_authenticated(self, connection_id: str, user: User) -> Optional[Session]:
        session = self.sessions.bind(connection_id, user.user_id)
        if session is None:
            logger.warning("Auth for closed connection %s ignored", connection_id)
            return None
        self._send(session, ServerEventType.AUTH_OK, {"profile": user.public_profile()})
        self._send(session, ServerEventType.STATE, {
            "rooms": self.scoped_rooms(user.user_id),
            "dms": self.scoped_threads(user.user_id),
            "users": self.directory(),
        })
        self.broadcast_presence()
        logger.info("Connection %s authenticated as %s", connection_id, user.user_id)
        return session

    def on_message_appended(self, ref: ChannelRef, message: Message) -> int:
        readers = self.channels.readers_of(ref)
        payload = {
            "channelType": ref.channel_type.value,
            "channelId": ref.channel_id,
            "message": message.to_dict(),
        }
        return self._publish(self._sessions_for(readers), ServerEventType.MESSAGE, payload)

    def on_profile_updated(self, user: User) -> int:
        return self._publish(self.sessions.bound_sessions(), ServerEventType.PROFILE_UPDATE,
                             {"profile": user.public_profile()})

    def on_rooms_changed(self) -> None:
        for session in self.sessions.bound_sessions():
            self._send(session, ServerEventType.ROOMS_UPDATE, {"rooms": self.scoped_rooms(session.user_id)})

    def on_thread_opened(self, thread: DirectThread) -> None:
        for session in self._sessions_for(thread.readers()):
            self._send(session, ServerEventType.DMS_UPDATE, {"dms": self.scoped_threads(session.user_id)})

    def on_disconnect(self, connection_id: str) -> bool:
        session = self.sessions.unbind(connection_id)
        if session is None:
            return False
        if session.user_id:
            logger.info("Connection %s (%s) closed", connection_id, session.user_id)
            self.broadcast_presence()
        return True

    def broadcast_presence(self) -> None:
        self._publish(self.sessions.bound_sessions(), ServerEventType.PRESENCE, {"users": self.presence()})

    def send_error(self, connection_id: str, error: RelayError) -> None:
        session = self.sessions.get(connection_id)
        if session is not None:
            self._send(session, ServerEventType.ERROR, error.to_payload())
