from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .customised_types import ChannelType

DEFAULT_COLOR = "#5865F2"
DEFAULT_THEME = "black-gray"


@dataclass(frozen=True)
class ChannelRef:
    channel_type: ChannelType
    channel_id: str

    @classmethod
    def parse(cls, channel_type: str, channel_id: str) -> "ChannelRef":
        return cls(ChannelType(channel_type), channel_id)


@dataclass
class User:
    user_id: str
    email: str
    credential_hash: str
    display_name: str
    avatar_url: Optional[str] = None
    color: str = DEFAULT_COLOR
    theme: str = DEFAULT_THEME
    token: Optional[str] = None

    def public_profile(self) -> Dict[str, Any]:
        return {
            "uid": self.user_id,
            "email": self.email,
            "displayName": self.display_name,
            "avatarUrl": self.avatar_url,
            "color": self.color or DEFAULT_COLOR,
            "theme": self.theme or DEFAULT_THEME,
        }

    def to_record(self) -> Dict[str, Any]:
        record = self.public_profile()
        record["passwordHash"] = self.credential_hash
        record["token"] = self.token
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "User":
        return cls(
            user_id=record["uid"],
            email=record["email"],
            credential_hash=record["passwordHash"],
            display_name=record.get("displayName") or record["email"].split("@")[0],
            avatar_url=record.get("avatarUrl"),
            color=record.get("color") or DEFAULT_COLOR,
            theme=record.get("theme") or DEFAULT_THEME,
            token=record.get("token"),
        )


@dataclass(frozen=True)
class Message:
    message_id: str
    author_id: str
    display_name: str
    created_at: int
    text: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "uid": self.author_id,
            "displayName": self.display_name,
            "text": self.text,
            "imageUrl": self.image_url,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            message_id=data["id"],
            author_id=data["uid"],
            display_name=data.get("displayName") or "",
            created_at=int(data["createdAt"]),
            text=data.get("text"),
            image_url=data.get("imageUrl"),
        )


@dataclass
class Room:
    room_id: str
    name: str
    is_private: bool
    owner_id: str
    members: List[str] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)

    @property
    def ref(self) -> ChannelRef:
        return ChannelRef(ChannelType.ROOM, self.room_id)

    def readers(self) -> Optional[set]:
        """User ids allowed to read, or None when every authenticated user may."""
        if not self.is_private:
            return None
        return {self.owner_id, *self.members}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.room_id,
            "name": self.name,
            "isPrivate": self.is_private,
            "owner": self.owner_id,
            "members": list(self.members),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Room":
        is_private = bool(data.get("isPrivate"))
        return cls(
            room_id=data["id"],
            name=data.get("name") or "",
            is_private=is_private,
            owner_id=data["owner"],
            members=list(data.get("members") or []) if is_private else [],
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
        )


def thread_id_for(user_a: str, user_b: str) -> str:
    return "_".join(sorted([user_a, user_b]))


@dataclass
class DirectThread:
    thread_id: str
    participants: List[str]
    messages: List[Message] = field(default_factory=list)

    @property
    def ref(self) -> ChannelRef:
        return ChannelRef(ChannelType.DIRECT_MESSAGE, self.thread_id)

    def readers(self) -> set:
        return set(self.participants)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.thread_id,
            "participants": list(self.participants),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DirectThread":
        return cls(
            thread_id=data["id"],
            participants=list(data["participants"]),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
        )
