"""
Inbound client frame classification.

Every frame received from the browser is either a control message
(`{"type": "aslMode", "enabled": <bool>}`) or an opaque audio payload
(16 kHz mono PCM16). The decision is made once, here, and never raises:
anything that does not decode to a recognized control object is audio.

Binary frames are never sniffed for JSON. PCM that happens to start with
0x7B ("{") would otherwise be misread as a control message.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

ASL_MODE_TYPE = "aslMode"
ASL_GLOSS_TYPE = "aslGloss"
ERROR_TYPE = "error"


@dataclass(frozen=True)
class ControlMessage:
    """Mode toggle from the client; mutates session state only."""

    enabled: bool
    type: str = ASL_MODE_TYPE


@dataclass(frozen=True)
class AudioPayload:
    """Raw audio chunk, forwarded upstream byte for byte."""

    data: bytes


Frame = Union[ControlMessage, AudioPayload]


def parse_control(text: str) -> Optional[ControlMessage]:
    """
    Try to decode a control message from a text frame.

    Returns None unless the text starts with an object marker, parses as a
    JSON object and carries a recognized `type`.
    """
    stripped = text.lstrip()
    if not stripped.startswith("{"):
        return None
    try:
        msg = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(msg, dict):
        return None
    if msg.get("type") == ASL_MODE_TYPE:
        return ControlMessage(enabled=bool(msg.get("enabled")))
    return None


def classify_frame(message: Dict[str, Any]) -> Optional[Frame]:
    """
    Classify one ASGI `websocket.receive` message.

    Args:
        message: Dict with "text" and/or "bytes" keys as delivered by Starlette.

    Returns:
        ControlMessage, AudioPayload, or None for an empty frame.
    """
    text = message.get("text")
    if text is not None:
        control = parse_control(text)
        if control is not None:
            return control
        # Unrecognized text falls through to the audio path
        return AudioPayload(text.encode("utf-8")) if text else None
    data = message.get("bytes")
    if not data:
        return None
    return AudioPayload(bytes(data))
