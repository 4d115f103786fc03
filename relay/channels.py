import logging
import time
import uuid
from typing import Dict, Iterable, List, Optional

from .customised_types import ChannelType
from .errors import EmptyContent, InvalidRequest, NotAuthorized, NotFound
from .models import ChannelRef, DirectThread, Message, Room, User, thread_id_for

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChannelStore:
    """Rooms and direct threads, each an append-only message log.

    Every check runs before the log is touched, so a failed call leaves the
    store as it was.
    """

    def __init__(self, rooms: Optional[Iterable[Room]] = None,
                 threads: Optional[Iterable[DirectThread]] = None, clock=_now_ms):
        self._rooms: Dict[str, Room] = {r.room_id: r for r in rooms or []}
        self._threads: Dict[str, DirectThread] = {t.thread_id: t for t in threads or []}
        self._clock = clock

    # ---- Rooms ----
    def create_room(self, owner_id: str, name: str, is_private: bool) -> Room:
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise InvalidRequest("room name required")
        is_private = bool(is_private)
        room = Room(
            room_id=str(uuid.uuid4()),
            name=name,
            is_private=is_private,
            owner_id=owner_id,
            members=[owner_id] if is_private else [],
        )
        self._rooms[room.room_id] = room
        logger.info("Room created: %s (%s, private=%s)", room.room_id, name, is_private)
        return room

    def get_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise NotFound("room not found")
        return room

    def check_can_invite(self, room_id: str, acting_user_id: str) -> Room:
        room = self.get_room(room_id)
        if acting_user_id != room.owner_id and acting_user_id not in room.members:
            raise NotAuthorized("not allowed")
        return room

    def invite_to_room(self, room_id: str, acting_user_id: str, target_user_id: str) -> Room:
        room = self.check_can_invite(room_id, acting_user_id)
        if not room.is_private:
            # Membership of a public room is implicit
            return room
        if target_user_id not in room.members:
            room.members.append(target_user_id)
            logger.info("User %s invited to room %s", target_user_id, room_id)
        return room

    def visible_rooms(self, user_id: str) -> List[Room]:
        return [r for r in self._rooms.values() if self._room_entitles(r, user_id)]

    def all_rooms(self) -> List[Room]:
        return list(self._rooms.values())

    @staticmethod
    def _room_entitles(room: Room, user_id: str) -> bool:
        readers = room.readers()
        return readers is None or user_id in readers

    # ---- Direct threads ----
    def open_or_create_direct_thread(self, user_a: str, user_b: str) -> DirectThread:
        if user_a == user_b:
            raise InvalidRequest("cannot open a thread with yourself")
        thread_id = thread_id_for(user_a, user_b)
        thread = self._threads.get(thread_id)
        if thread is None:
            thread = DirectThread(thread_id=thread_id, participants=sorted([user_a, user_b]))
            self._threads[thread_id] = thread
            logger.info("Direct thread created: %s", thread_id)
        return thread

    def get_thread(self, thread_id: str) -> DirectThread:
        thread = self._threads.get(thread_id)
        if thread is None:
            raise NotFound("thread not found")
        return thread

    def threads_for(self, user_id: str) -> List[DirectThread]:
        return [t for t in self._threads.values() if user_id in t.participants]

    def all_threads(self) -> List[DirectThread]:
        return list(self._threads.values())

    # ---- Entitlement ----
    def _channel(self, ref: ChannelRef):
        if ref.channel_type == ChannelType.ROOM:
            return self.get_room(ref.channel_id)
        return self.get_thread(ref.channel_id)

    def readers_of(self, ref: ChannelRef) -> Optional[set]:
        """Entitled user ids for a channel; None means every authenticated user."""
        return self._channel(ref).readers()

    def is_entitled(self, ref: ChannelRef, user_id: str) -> bool:
        try:
            readers = self.readers_of(ref)
        except NotFound:
            return False
        return readers is None or user_id in readers

    # ---- Messages ----
    def append_message(self, ref: ChannelRef, author: User, text: Optional[str] = None,
                       image_url: Optional[str] = None) -> Message:
        channel = self._channel(ref)
        readers = channel.readers()
        if readers is not None and author.user_id not in readers:
            raise NotAuthorized("not a member of this channel")
        if not text and not image_url:
            raise EmptyContent("message needs text or an image")

        created_at = self._clock()
        if channel.messages and created_at < channel.messages[-1].created_at:
            created_at = channel.messages[-1].created_at
        message = Message(
            message_id=str(uuid.uuid4()),
            author_id=author.user_id,
            display_name=author.display_name,
            created_at=created_at,
            text=text or None,
            image_url=image_url or None,
        )
        channel.messages.append(message)
        return message

    def to_records(self) -> Dict[str, Dict[str, dict]]:
        return {
            "rooms": {rid: r.to_dict() for rid, r in self._rooms.items()},
            "direct_threads": {tid: t.to_dict() for tid, t in self._threads.items()},
        }
