"""
Per-connection relay session.

IDLE -> ACTIVE -> CLOSED. Owns the Deepgram channel, the rolling transcript
buffer, a single-slot pause timer and the ASL mode flag. Every handler runs on
the event loop, so buffer and timer need no lock.

Pause detection is a debounce: each transcript cancels the pending timer and
starts a new one. When the timer fires the buffer is consumed (always), and in
ASL mode the text is glossed in a background task so a slow gloss never holds
up audio or transcripts.
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from streaming.frames import ASL_GLOSS_TYPE, AudioPayload, ControlMessage, Frame
from streaming.transcription_channel import TranscriptEvent

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_SECONDS = 1.5


class SessionState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    CLOSED = "closed"


class RelaySession:
    """
    One client connection's relay state.

    Args:
        open_channel: Coroutine (session_id) -> channel with is_open/send/events/close.
        gloss_client: Object with `async generate_gloss(text) -> str`.
        send_text: Coroutine delivering a live transcript line to the client.
        send_json: Coroutine delivering a structured message to the client.
        pause_seconds: Quiet interval that ends an utterance.
        enrichment_enabled: Initial ASL mode.
        metrics: Optional metrics module (record_transcript_forwarded, record_gloss_result).
        session_id: Log correlation id (random if omitted).
    """

    def __init__(
        self,
        open_channel: Callable[[str], Awaitable[Any]],
        gloss_client: Any,
        send_text: Callable[[str], Awaitable[None]],
        send_json: Callable[[Dict[str, Any]], Awaitable[None]],
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
        enrichment_enabled: bool = False,
        metrics: Any = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self.state = SessionState.IDLE
        self.enrichment_enabled = enrichment_enabled
        self.transcript_buffer = ""
        self.pause_seconds = pause_seconds
        self.channel: Any = None
        self._open_channel = open_channel
        self._gloss_client = gloss_client
        self._send_text = send_text
        self._send_json = send_json
        self._metrics = metrics
        self._pause_task: Optional[asyncio.Task] = None
        self._gloss_tasks: Set[asyncio.Task] = set()

    @property
    def pause_pending(self) -> bool:
        return self._pause_task is not None and not self._pause_task.done()

    @property
    def gloss_in_flight(self) -> int:
        return len(self._gloss_tasks)

    async def start(self) -> bool:
        """Open the transcription channel. Returns False if it could not be opened."""
        if self.state is not SessionState.IDLE:
            return self.state is SessionState.ACTIVE
        self.channel = await self._open_channel(self.session_id)
        if not self.channel.is_open:
            await self.close()
            return False
        self.state = SessionState.ACTIVE
        return True

    async def handle_frame(self, frame: Frame) -> None:
        if isinstance(frame, ControlMessage):
            self.handle_control(frame)
        elif isinstance(frame, AudioPayload):
            await self.handle_audio(frame)

    def handle_control(self, message: ControlMessage) -> None:
        """Mode toggle; accepted in any state and never forwarded upstream."""
        self.enrichment_enabled = message.enabled
        logger.info("[%s] ASL mode set: %s", self.session_id, self.enrichment_enabled)

    async def handle_audio(self, payload: AudioPayload) -> None:
        if self.state is not SessionState.ACTIVE:
            return
        await self.channel.send(payload.data)

    async def handle_transcript(self, event: TranscriptEvent) -> None:
        """Forward recognized text immediately, buffer it and restart the pause timer."""
        if self.state is not SessionState.ACTIVE:
            return
        text = event.text.strip()
        if not text:
            return
        logger.debug("[%s] Transcript: %s", self.session_id, text)
        await self._send_text(text)
        if self._metrics:
            self._metrics.record_transcript_forwarded()
        self.transcript_buffer = f"{self.transcript_buffer} {text}" if self.transcript_buffer else text
        self._reset_pause_timer()

    async def run_results(self) -> None:
        """Consume the channel's event stream until it ends."""
        if self.channel is None:
            return
        async for event in self.channel.events():
            await self.handle_transcript(event)

    def flush_utterance(self) -> str:
        """
        Pause reached: consume the buffer and, in ASL mode, start a gloss request.

        Returns the consumed text (trimmed).
        """
        text = self.transcript_buffer.strip()
        self.transcript_buffer = ""
        logger.debug("[%s] Pause: ASL mode %s, buffer %r", self.session_id, self.enrichment_enabled, text)
        if self.enrichment_enabled and text and self.state is SessionState.ACTIVE:
            task = asyncio.create_task(self._deliver_gloss(text))
            self._gloss_tasks.add(task)
            task.add_done_callback(self._gloss_tasks.discard)
        return text

    async def close(self) -> None:
        """Terminal transition: cancel timer and gloss work, close the channel. Idempotent."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if self._pause_task is not None:
            self._pause_task.cancel()
            self._pause_task = None
        for task in list(self._gloss_tasks):
            task.cancel()
        if self.channel is not None:
            await self.channel.close()

    def _reset_pause_timer(self) -> None:
        if self._pause_task is not None:
            self._pause_task.cancel()
        self._pause_task = asyncio.create_task(self._pause_after(self.pause_seconds))

    async def _pause_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._pause_task = None
        self.flush_utterance()

    async def _deliver_gloss(self, text: str) -> None:
        logger.info("[%s] ASL request: %s", self.session_id, text)
        start = time.perf_counter()
        gloss = await self._gloss_client.generate_gloss(text)
        if self._metrics:
            self._metrics.record_gloss_result((time.perf_counter() - start) * 1000, bool(gloss))
        if self.state is not SessionState.ACTIVE:
            return
        if not gloss:
            logger.warning("[%s] Empty gloss returned", self.session_id)
            return
        logger.info("[%s] ASL gloss: %s", self.session_id, gloss)
        await self._send_json({"type": ASL_GLOSS_TYPE, "gloss": gloss})
