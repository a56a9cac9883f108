"""
Live transcription relay API.
Browser microphone (PCM16, 16 kHz) -> Deepgram live transcription -> client,
with optional ASL gloss of each paused utterance via a local Ollama model.
"""
import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

import config
import metrics.relay_metrics as relay_metrics
from streaming.gloss_client import OllamaGlossClient
from streaming.transcription_channel import DeepgramClient
from streaming.websocket_server import build_ws_transcribe_handler

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("relay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuses to start without a Deepgram key (raises ConfigError)
    api_key = config.require_deepgram_api_key()
    deepgram = DeepgramClient(
        api_key,
        url=config.DEEPGRAM_URL,
        model=config.DEEPGRAM_MODEL,
        language=config.DEEPGRAM_LANGUAGE,
        keepalive_seconds=config.DEEPGRAM_KEEPALIVE_SECONDS,
    )
    gloss_client = OllamaGlossClient(
        url=config.OLLAMA_URL,
        model=config.OLLAMA_MODEL,
        timeout=config.OLLAMA_TIMEOUT_SECONDS,
    )
    app.state.ws_transcribe_handler = build_ws_transcribe_handler(
        open_channel=deepgram.open_channel,
        gloss_client=gloss_client,
        pause_seconds=config.ASL_PAUSE_SECONDS,
        asl_mode_default=config.ASL_MODE_DEFAULT,
        idle_timeout_seconds=config.WS_IDLE_TIMEOUT_SECONDS,
        get_metrics=relay_metrics,
    )
    logger.info("WebSocket server ready on ws://%s:%s (Deepgram %s, Ollama %s)",
                config.HOST, config.PORT, config.DEEPGRAM_MODEL, config.OLLAMA_MODEL)
    yield


app = FastAPI(title="Live Transcription Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.get("/health")
def health_check():
    return {
        "status": "ok",
        "message": "Live transcription relay is running",
        "deepgram_model": config.DEEPGRAM_MODEL,
        "ollama_model": config.OLLAMA_MODEL,
        "asl_pause_seconds": config.ASL_PAUSE_SECONDS,
        "asl_mode_default": config.ASL_MODE_DEFAULT,
    }


@app.get("/metrics/relay", include_in_schema=False)
def metrics_relay():
    """JSON snapshot: connections, transcripts forwarded, gloss requests/failures/latency."""
    return relay_metrics.get_snapshot()


# ws://host:3001 is what the browser client connects to; /ws/transcribe is the explicit alias
@app.websocket("/")
@app.websocket("/ws/transcribe")
async def websocket_transcribe(websocket: WebSocket):
    await app.state.ws_transcribe_handler(websocket)


if __name__ == "__main__":
    try:
        config.require_deepgram_api_key()
    except config.ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)
    uvicorn.run(app, host=config.HOST, port=config.PORT)
