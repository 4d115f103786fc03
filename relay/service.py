"""Request layer over the stores and the fan-out engine.

Each public method is one synchronous step on the event loop: validate,
mutate, schedule a snapshot, publish. Nothing in here awaits, so two
operations can never interleave on the same entity. Failures surface as
``RelayError`` subclasses; the transports turn them into replies.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from .channels import ChannelStore
from .database import PersistenceSync
from .errors import InvalidCredentials, InvalidRequest, InvalidToken
from .fanout import FanoutEngine
from .identity import UNSET, IdentityStore
from .models import ChannelRef, User
from .sessions import Session

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    "displayName": "display_name",
    "avatarUrl": "avatar_url",
    "color": "color",
    "theme": "theme",
}


class RelayService:
    def __init__(self, identity: IdentityStore, channels: ChannelStore,
                 engine: FanoutEngine, persistence: Optional[PersistenceSync] = None):
        self.identity = identity
        self.channels = channels
        self.engine = engine
        self.persistence = persistence

    def _persist(self) -> None:
        if self.persistence is not None:
            self.persistence.schedule(self.identity, self.channels)

    def _user(self, token) -> User:
        return self.identity.resolve_by_token(token)

    # ---- Account ----
    @staticmethod
    def _check_credentials(email, password, display_name=None) -> None:
        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            raise InvalidRequest("email/password required")
        if display_name is not None and not isinstance(display_name, str):
            raise InvalidRequest("displayName must be a string")

    def _session_reply(self, user: User) -> Dict[str, Any]:
        self._persist()
        return {"token": user.token, "profile": user.public_profile()}

    def signup(self, email: Optional[str], password: Optional[str], display_name: Optional[str] = None) -> Dict[str, Any]:
        self._check_credentials(email, password, display_name)
        return self._session_reply(self.identity.create_user(email, password, display_name))

    def login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        self._check_credentials(email, password)
        user, _ = self.identity.authenticate(email, password)
        return self._session_reply(user)

    async def signup_async(self, email: Optional[str], password: Optional[str],
                           display_name: Optional[str] = None) -> Dict[str, Any]:
        """``signup`` with the scrypt work moved to the default executor.

        The store mutation still happens in one synchronous step after the
        hash is ready, so a concurrent signup for the same email loses with
        ``EmailTaken``.
        """
        self._check_credentials(email, password, display_name)
        self.identity.check_email_free(email)
        loop = asyncio.get_running_loop()
        credential_hash = await loop.run_in_executor(None, self.identity.hasher.hash, password)
        user = self.identity.create_user(email, display_name=display_name, credential_hash=credential_hash)
        return self._session_reply(user)

    async def login_async(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """``login`` with the scrypt check moved to the default executor."""
        self._check_credentials(email, password)
        user = self.identity.credentials_for(email)
        loop = asyncio.get_running_loop()
        verified = await loop.run_in_executor(None, self.identity.hasher.verify, user.credential_hash, password)
        if not verified:
            raise InvalidCredentials("invalid credentials")
        self.identity.start_session(user)
        return self._session_reply(user)

    def restore(self, token) -> Dict[str, Any]:
        return {"profile": self._user(token).public_profile()}

    def update_profile(self, token, fields: Dict[str, Any]) -> Dict[str, Any]:
        user = self._user(token)
        kwargs = {}
        for wire_name, attr in PROFILE_FIELDS.items():
            if wire_name in fields:
                kwargs[attr] = fields[wire_name]
        kwargs.setdefault("avatar_url", UNSET)
        # Fan-out happens through the identity store's profile listener
        user = self.identity.update_profile(user.user_id, **kwargs)
        self._persist()
        return {"profile": user.public_profile()}

    # ---- Channels ----
    def create_room(self, token, name: Optional[str], is_private=False) -> Dict[str, Any]:
        user = self._user(token)
        room = self.channels.create_room(user.user_id, name, bool(is_private))
        self._persist()
        self.engine.on_rooms_changed()
        return {"room": room.to_dict()}

    def invite(self, token, room_id: Optional[str], email: Optional[str]) -> Dict[str, Any]:
        user = self._user(token)
        room = self.channels.check_can_invite(room_id, user.user_id)
        target = self.identity.find_by_email(email)
        before = len(room.members)
        self.channels.invite_to_room(room.room_id, user.user_id, target.user_id)
        if len(room.members) != before:
            self._persist()
            self.engine.on_rooms_changed()
        return {"room": room.to_dict()}

    def open_dm(self, token, other_email: Optional[str]) -> Dict[str, Any]:
        me = self._user(token)
        other = self.identity.find_by_email(other_email)
        known = {t.thread_id for t in self.channels.threads_for(me.user_id)}
        thread = self.channels.open_or_create_direct_thread(me.user_id, other.user_id)
        if thread.thread_id not in known:
            self._persist()
            self.engine.on_thread_opened(thread)
        return {"thread": thread.to_dict()}

    def fetch_state(self, token) -> Dict[str, Any]:
        user = self._user(token)
        return {
            "profile": user.public_profile(),
            "rooms": self.engine.scoped_rooms(user.user_id),
            "dms": self.engine.scoped_threads(user.user_id),
            "users": self.engine.directory(),
        }

    def send_message(self, token, channel_type: Optional[str], channel_id: Optional[str],
                     text: Optional[str] = None, image_url: Optional[str] = None) -> Dict[str, Any]:
        user = self._user(token)
        try:
            ref = ChannelRef.parse(channel_type, channel_id)
        except (ValueError, TypeError):
            raise InvalidRequest(f"unknown channel type {channel_type!r}")
        if not isinstance(channel_id, str) or not channel_id:
            raise InvalidRequest("channelId required")
        message = self.channels.append_message(ref, user, text=text, image_url=image_url)
        self._persist()
        self.engine.on_message_appended(ref, message)
        return {"message": message.to_dict()}

    # ---- Connection lifecycle ----
    def connect(self, connection_id: str) -> Session:
        return self.engine.on_connect(connection_id)

    def authenticate_connection(self, connection_id: str, token) -> bool:
        try:
            user = self._user(token)
        except InvalidToken:
            self.engine.on_auth_failed(connection_id)
            return False
        return self.engine.on_authenticated(connection_id, user) is not None

    def disconnect(self, connection_id: str) -> bool:
        return self.engine.on_disconnect(connection_id)
