"""
Real-time relay layer.

- frames: control-message vs audio classification of client frames.
- transcription_channel: Deepgram live channel (one per session).
- gloss_client: Ollama ASL gloss generation.
- session: per-connection state machine (buffer, pause timer, ASL mode).
- websocket_server: WebSocket handler factory (import separately to avoid pulling FastAPI).
"""

from streaming.frames import AudioPayload, ControlMessage, classify_frame
from streaming.gloss_client import OllamaGlossClient
from streaming.session import RelaySession, SessionState
from streaming.transcription_channel import DeepgramChannel, DeepgramClient, TranscriptEvent

__all__ = [
    "AudioPayload",
    "ControlMessage",
    "classify_frame",
    "OllamaGlossClient",
    "RelaySession",
    "SessionState",
    "DeepgramChannel",
    "DeepgramClient",
    "TranscriptEvent",
]
