"""Realtime messaging relay: rooms, direct threads, presence and fan-out."""

__version__ = "0.1.0"
