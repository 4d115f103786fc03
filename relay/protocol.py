import json
import time
from typing import Any, Dict, Optional

SERVER_ID = "relay"


def make_envelope(msg_type: str, payload: Dict[str, Any], to_id: Optional[str] = None, ts: Optional[int] = None) -> str:
    return json.dumps({
        "type": str(getattr(msg_type, "value", msg_type)),
        "from": SERVER_ID,
        "to": to_id,
        "ts": int(time.time() * 1000) if ts is None else ts,
        "payload": payload,
    }, separators=(",", ":"))


def parse_envelope(raw) -> Dict[str, Any] | None:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        return None
    if not isinstance(frame.get("payload"), dict):
        frame["payload"] = {}
    return frame
