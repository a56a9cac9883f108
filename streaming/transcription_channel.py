"""
Deepgram live transcription channel.

One upstream WebSocket per client session. Audio frames go out in the order
they are sent; `Results` messages come back through an asyncio.Queue and are
exposed as an async iterator of TranscriptEvent (the channel's reader task is
the only producer, the session the only consumer).

Transport and payload errors are logged here and never raised to the session:
a dropped channel simply ends the event stream.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
CLOSE_STREAM_MESSAGE = json.dumps({"type": "CloseStream"})
KEEPALIVE_MESSAGE = json.dumps({"type": "KeepAlive"})


@dataclass(frozen=True)
class TranscriptEvent:
    """Recognized text from the provider (already trimmed, never empty)."""

    text: str
    is_final: bool


def build_listen_params(model: str, language: str = "en-US") -> Dict[str, str]:
    """Fixed live-stream parameters: linear PCM16, 16 kHz mono, punctuation + smart formatting."""
    return {
        "model": model,
        "language": language,
        "encoding": "linear16",
        "sample_rate": str(SAMPLE_RATE),
        "channels": "1",
        "punctuate": "true",
        "smart_format": "true",
    }


def build_listen_url(base_url: str, model: str, language: str = "en-US") -> str:
    return f"{base_url}?{urlencode(build_listen_params(model, language))}"


def parse_result(raw: Union[str, bytes]) -> Optional[TranscriptEvent]:
    """
    Extract a TranscriptEvent from one provider message.

    Returns None for non-Results messages (Metadata, SpeechStarted, ...),
    for empty transcripts and for payloads that do not have the expected shape.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-JSON Deepgram message (%d bytes)", len(raw or ""))
        return None
    if not isinstance(data, dict) or data.get("type", "Results") != "Results":
        return None
    try:
        transcript = data["channel"]["alternatives"][0]["transcript"]
    except (KeyError, IndexError, TypeError):
        logger.warning("Deepgram Results without channel.alternatives[0].transcript")
        return None
    if not isinstance(transcript, str):
        return None
    text = transcript.strip()
    if not text:
        return None
    return TranscriptEvent(text=text, is_final=bool(data.get("is_final", False)))


class DeepgramChannel:
    """
    One live Deepgram stream.

    Lifecycle: open() -> send()* -> close(). close() is terminal and idempotent;
    send() on a channel that is not open is a no-op.
    """

    def __init__(
        self,
        url: str,
        headers: Dict[str, str],
        connect: Callable[..., Any] = websockets.connect,
        keepalive_seconds: float = 5.0,
        session_id: str = "-",
    ):
        self._url = url
        self._headers = headers
        self._connect = connect
        self._keepalive_seconds = keepalive_seconds
        self._session_id = session_id
        self._ws: Any = None
        self._open = False
        self._closed = False
        self._events: "asyncio.Queue[Optional[TranscriptEvent]]" = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._last_send_at = time.monotonic()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def open(self) -> bool:
        """Connect upstream. Returns False (and ends the event stream) on failure."""
        if self._closed or self._open:
            return self._open
        try:
            self._ws = await self._connect(
                self._url,
                additional_headers=self._headers,
                ping_interval=20,
                ping_timeout=10,
            )
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            logger.error("[%s] Deepgram connection failed: %s", self._session_id, e)
            self._closed = True
            self._events.put_nowait(None)
            return False
        self._open = True
        self._last_send_at = time.monotonic()
        logger.info("[%s] Deepgram connection opened", self._session_id)
        self._reader_task = asyncio.create_task(self._read_results())
        if self._keepalive_seconds > 0:
            self._keepalive_task = asyncio.create_task(self._keepalive())
        return True

    async def send(self, frame: bytes) -> None:
        """Forward one audio chunk. No-op unless the channel is open."""
        if not self._open:
            logger.debug("[%s] Dropping %d audio bytes: channel not open", self._session_id, len(frame))
            return
        try:
            await self._ws.send(frame)
            self._last_send_at = time.monotonic()
        except (ConnectionClosed, OSError) as e:
            logger.warning("[%s] Deepgram send failed: %s", self._session_id, e)
            self._open = False

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        """Yield recognized text in arrival order until the channel ends."""
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        """Signal end-of-stream upstream and release the socket. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        was_open, self._open = self._open, False
        if self._keepalive_task:
            self._keepalive_task.cancel()
        if self._ws is not None:
            try:
                if was_open:
                    await self._ws.send(CLOSE_STREAM_MESSAGE)
                await self._ws.close()
            except (WebSocketException, OSError) as e:
                logger.debug("[%s] Deepgram close: %s", self._session_id, e)
        if self._reader_task:
            try:
                await asyncio.wait_for(self._reader_task, timeout=2.0)
            except asyncio.TimeoutError:
                self._reader_task.cancel()
        logger.info("[%s] Deepgram connection closed", self._session_id)

    async def _read_results(self) -> None:
        try:
            async for message in self._ws:
                event = parse_result(message)
                if event is not None:
                    self._events.put_nowait(event)
        except ConnectionClosed as e:
            if not self._closed:
                logger.warning("[%s] Deepgram connection dropped: %s", self._session_id, e)
        except Exception as e:
            logger.error("[%s] Deepgram reader error: %s", self._session_id, e)
        finally:
            self._open = False
            self._events.put_nowait(None)

    async def _keepalive(self) -> None:
        while self._open:
            await asyncio.sleep(self._keepalive_seconds)
            if not self._open:
                break
            if time.monotonic() - self._last_send_at < self._keepalive_seconds:
                continue
            try:
                await self._ws.send(KEEPALIVE_MESSAGE)
                self._last_send_at = time.monotonic()
            except (ConnectionClosed, OSError) as e:
                logger.warning("[%s] Deepgram keepalive failed: %s", self._session_id, e)
                break


class DeepgramClient:
    """
    Process-wide Deepgram configuration; hands out one channel per session.

    Args:
        api_key: Deepgram API key (sent as `Authorization: Token <key>`).
        url: Live listen endpoint.
        model: Deepgram model name (nova-2 by default).
        language: Spoken language.
        keepalive_seconds: Send KeepAlive after this long without audio (0 = off).
        connect: websockets-compatible connect coroutine (swapped in tests).
    """

    def __init__(
        self,
        api_key: str,
        url: str = "wss://api.deepgram.com/v1/listen",
        model: str = "nova-2",
        language: str = "en-US",
        keepalive_seconds: float = 5.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.model = model
        self.language = language
        self._api_key = api_key
        self._listen_url = build_listen_url(url, model, language)
        self._keepalive_seconds = keepalive_seconds
        self._connect = connect

    @property
    def listen_url(self) -> str:
        return self._listen_url

    async def open_channel(self, session_id: str = "-") -> DeepgramChannel:
        """Create and open a channel; check `is_open` for the outcome."""
        channel = DeepgramChannel(
            self._listen_url,
            {"Authorization": f"Token {self._api_key}"},
            connect=self._connect,
            keepalive_seconds=self._keepalive_seconds,
            session_id=session_id,
        )
        await channel.open()
        return channel
