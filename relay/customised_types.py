from enum import Enum


class ClientEventType(str, Enum):
    AUTH = "auth"
    SEND_MESSAGE = "sendMessage"
    UPDATE_PROFILE = "updateProfile"


class ServerEventType(str, Enum):
    AUTH_OK = "auth:ok"
    AUTH_FAIL = "auth:fail"
    STATE = "state"
    ROOMS_UPDATE = "rooms:update"
    DMS_UPDATE = "dms:update"
    MESSAGE = "message"
    PROFILE_UPDATE = "profile:update"
    PRESENCE = "presence"
    ERROR = "error"


class ChannelType(str, Enum):
    ROOM = "room"
    DIRECT_MESSAGE = "dm"
