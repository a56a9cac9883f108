"""
WebSocket gateway for live transcription (/ and /ws/transcribe).

- One RelaySession per connection; its Deepgram channel is opened before any
  audio is forwarded.
- Binary frames are audio; text frames are `{"type": "aslMode", ...}` control
  messages, or audio if they do not decode as one.
- Server -> client: plain text = transcript line, `{"type": "aslGloss"}` =
  gloss, `{"type": "error"}` = upstream failure (followed by close).
- A dropped Deepgram channel is not reconnected: the client is told and
  disconnected.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import WebSocket, WebSocketDisconnect

from streaming.frames import ERROR_TYPE, classify_frame
from streaming.session import DEFAULT_PAUSE_SECONDS, RelaySession, SessionState

logger = logging.getLogger(__name__)

# RFC 6455 "internal error"
CLOSE_UPSTREAM_FAILURE = 1011


def build_ws_transcribe_handler(
    open_channel: Callable[[str], Awaitable[Any]],
    gloss_client: Any,
    pause_seconds: float = DEFAULT_PAUSE_SECONDS,
    asl_mode_default: bool = False,
    idle_timeout_seconds: float = 300.0,
    get_metrics: Any = None,
) -> Callable:
    """
    Build the async WebSocket handler for live transcription.

    Args:
        open_channel: Coroutine (session_id) -> opened transcription channel
            (DeepgramClient.open_channel).
        gloss_client: Shared gloss client (OllamaGlossClient).
        pause_seconds: Silence that ends an utterance.
        asl_mode_default: ASL mode of a new session before the client says otherwise.
        idle_timeout_seconds: Disconnect a client that sends nothing for this long.
        get_metrics: Optional metrics module (metrics.relay_metrics).

    Returns:
        Async function (websocket: WebSocket) -> None for use with FastAPI.
    """
    metrics = get_metrics

    async def handle_ws_transcribe(websocket: WebSocket) -> None:
        await websocket.accept()
        session_id = uuid.uuid4().hex[:8]
        logger.info("[%s] Client connected for transcription", session_id)
        if metrics:
            metrics.record_connection_open()

        async def send_text(text: str) -> None:
            try:
                await websocket.send_text(text)
            except (WebSocketDisconnect, RuntimeError):
                pass

        async def send_json(payload: Dict[str, Any]) -> None:
            try:
                await websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError):
                pass

        async def close_with_error(message: str) -> None:
            await send_json({"type": ERROR_TYPE, "message": message})
            try:
                await websocket.close(code=CLOSE_UPSTREAM_FAILURE)
            except RuntimeError:
                pass

        session = RelaySession(
            open_channel=open_channel,
            gloss_client=gloss_client,
            send_text=send_text,
            send_json=send_json,
            pause_seconds=pause_seconds,
            enrichment_enabled=asl_mode_default,
            metrics=metrics,
            session_id=session_id,
        )

        async def pump_results() -> None:
            await session.run_results()
            if session.state is SessionState.ACTIVE:
                logger.warning("[%s] Transcription channel ended; disconnecting client", session_id)
                if metrics:
                    metrics.record_channel_failure()
                await close_with_error("Transcription stream closed")

        pump_task = None
        try:
            if not await session.start():
                if metrics:
                    metrics.record_channel_failure()
                await close_with_error("Transcription service unavailable")
                return
            pump_task = asyncio.create_task(pump_results())

            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout_seconds)
                except asyncio.TimeoutError:
                    logger.info("[%s] Idle for %.0fs; closing", session_id, idle_timeout_seconds)
                    try:
                        await websocket.close()
                    except RuntimeError:
                        pass
                    break
                if data.get("type") == "websocket.disconnect":
                    break
                if data.get("type") != "websocket.receive":
                    continue
                frame = classify_frame(data)
                if frame is None:
                    continue
                await session.handle_frame(frame)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            # receive() after the socket was closed from our side
            logger.debug("[%s] Receive loop ended: %s", session_id, e)
        finally:
            await session.close()
            if pump_task is not None:
                pump_task.cancel()
                await asyncio.gather(pump_task, return_exceptions=True)
            if metrics:
                metrics.record_connection_close()
            logger.info("[%s] Client disconnected", session_id)

    return handle_ws_transcribe
