"""
Production configuration via environment variables.
Load with python-dotenv; no hardcoded secrets.
"""
import os

from dotenv import load_dotenv

# Load .env if present (in production the env is usually set by the orchestrator)
load_dotenv()


class ConfigError(RuntimeError):
    """Raised when a required setting is missing at startup."""


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


# ----- Server -----
PORT = int(os.environ.get("PORT", "3001"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ----- Deepgram (streaming transcription) -----
DEEPGRAM_URL = os.environ.get("DEEPGRAM_URL", "wss://api.deepgram.com/v1/listen")
DEEPGRAM_MODEL = os.environ.get("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_LANGUAGE = os.environ.get("DEEPGRAM_LANGUAGE", "en-US")
# Deepgram drops a stream after ~10 s without audio; KeepAlive below that
DEEPGRAM_KEEPALIVE_SECONDS = float(os.environ.get("DEEPGRAM_KEEPALIVE_SECONDS", "5"))


def require_deepgram_api_key() -> str:
    """Return the Deepgram key or fail startup."""
    key = os.environ.get("DEEPGRAM_API_KEY", "").strip()
    if not key:
        raise ConfigError("Missing DEEPGRAM_API_KEY (set it in the environment or .env)")
    return key


# ----- Ollama (ASL gloss generation) -----
OLLAMA_URL = os.environ.get("OLLAMA_URL", "http://localhost:11434/api/generate")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "phi3:latest")
OLLAMA_TIMEOUT_SECONDS = float(os.environ.get("OLLAMA_TIMEOUT_SECONDS", "30"))

# ----- Session behaviour -----
# Quiet interval after the last transcript before the buffer is flushed to gloss
ASL_PAUSE_SECONDS = float(os.environ.get("ASL_PAUSE_SECONDS", "1.5"))
ASL_MODE_DEFAULT = _flag("ASL_MODE_DEFAULT")
WS_IDLE_TIMEOUT_SECONDS = float(os.environ.get("WS_IDLE_TIMEOUT_SECONDS", "300"))

# ----- CORS (production: set to specific origins) -----
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")
def get_cors_origins() -> list:
    """Return list of allowed CORS origins from env."""
    if CORS_ORIGINS == "*":
        return ["*"]
    return [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
