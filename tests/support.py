"""Shared builders for the relay tests."""
import json

from relay.channels import ChannelStore
from relay.crypto_services import ScryptPasswordHasher
from relay.fanout import FanoutEngine
from relay.identity import IdentityStore
from relay.service import RelayService
from relay.sessions import SessionRegistry

# Low-cost scrypt parameters so account tests stay fast
FAST_HASHER = ScryptPasswordHasher(n=2 ** 10, r=8, p=1)


class StepClock:
    """Millisecond clock that returns queued values, then repeats the last one."""

    def __init__(self, *values):
        self.values = list(values)
        self.last = values[-1] if values else 0

    def __call__(self):
        if self.values:
            self.last = self.values.pop(0)
        return self.last


def make_service(clock=None, persistence=None) -> RelayService:
    identity = IdentityStore(hasher=FAST_HASHER)
    channels = ChannelStore(clock=clock) if clock else ChannelStore()
    engine = FanoutEngine(identity, channels, SessionRegistry())
    return RelayService(identity, channels, engine, persistence)


def drain(session):
    return [json.loads(raw) for raw in session.drain()]


def of_type(frames, msg_type):
    return [f for f in frames if f["type"] == msg_type]
