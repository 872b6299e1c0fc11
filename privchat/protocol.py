import json
import time
from typing import Any, Dict, Optional

SERVER_ID = "server"

# Envelope keys: type, from, to, ts, payload


def make_envelope(msg_type: str, from_id: str | None, to_id: str | None, payload: Dict[str, Any] | list, ts: Optional[int] = None) -> str:
    return json.dumps({
        "type": msg_type,
        "from": from_id,
        "to": to_id,
        "ts": int(time.time() * 1000) if ts is None else ts,
        "payload": payload,
    })


def parse_envelope(raw: str | bytes) -> Dict[str, Any] | None:
    try:
        frame = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        return None
    return frame
